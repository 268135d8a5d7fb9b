from types import SimpleNamespace
from typing import List

import pytest
import pytest_asyncio

from dal.chat_dal import ChatDAL
from dal.job_dal import JobDAL
from dal.summary_dal import SummaryDAL
from helpers import JWT_SECRET, FrameRecorder
from services.realtime.dispatcher import BroadcastDispatcher
from services.realtime.identity import IdentityVerifier, encode_token
from services.realtime.room_registry import RoomRegistry
from services.realtime.ws_session import RealtimeSessionHandler
from utils.database_init import AsyncDatabaseInitializer


@pytest.fixture
def db_initializer(tmp_path):
	return AsyncDatabaseInitializer(tmp_path)


@pytest.fixture
def chat_dal(db_initializer):
	return ChatDAL(db_initializer)


@pytest.fixture
def job_dal(db_initializer):
	return JobDAL(db_initializer)


@pytest.fixture
def summary_dal(db_initializer):
	return SummaryDAL(db_initializer)


@pytest.fixture
def dispatcher():
	return BroadcastDispatcher(RoomRegistry())


@pytest.fixture
def verifier(chat_dal):
	return IdentityVerifier(JWT_SECRET, chat_dal)


@pytest_asyncio.fixture
async def team(chat_dal):
	"""Three users of team `arcyn`, two of its channels, and a foreign channel."""
	alice = await chat_dal.create_user("alice", "arcyn")
	bob = await chat_dal.create_user("bob", "arcyn")
	carol = await chat_dal.create_user("carol", "arcyn")
	general = await chat_dal.create_channel("general", "arcyn")
	random = await chat_dal.create_channel("random", "arcyn")
	foreign = await chat_dal.create_channel("secret", "other-team")
	return SimpleNamespace(
		alice=alice,
		bob=bob,
		carol=carol,
		general=general,
		random=random,
		foreign=foreign,
	)


@pytest_asyncio.fixture
async def connect(chat_dal, verifier, dispatcher):
	"""Yield a coroutine that opens an authenticated session for a user."""
	handlers: List[RealtimeSessionHandler] = []

	async def _connect(user):
		recorder = FrameRecorder()
		handler = RealtimeSessionHandler(
			f"sid-{user.username}-{len(handlers)}",
			recorder.send_text,
			chat_dal,
			verifier,
			dispatcher,
		)
		assert await handler.authenticate(encode_token(user.id, JWT_SECRET))
		handlers.append(handler)
		return handler, recorder

	yield _connect

	for handler in handlers:
		await handler.close()
