"""Handle send-message events coming over the realtime websocket."""
from __future__ import annotations

from typing import Any, Dict

from dal.chat_dal import ChatDAL
from models.chat_models import ChannelRecord
from models.domain_events import MessageCreated
from models.session_models import SessionState
from services.realtime.dispatcher import BroadcastDispatcher
from services.realtime.room_registry import channel_room
from utils.errors import AuthorizationError


async def require_team_channel(chat_dal: ChatDAL, channel_id: str, team: str) -> ChannelRecord:
	"""Return the channel if it belongs to `team`, else raise AuthorizationError."""
	channel = await chat_dal.get_team_channel(channel_id, team)
	if channel is None:
		raise AuthorizationError("Channel not found")
	return channel


class MessageEventHandler:
	"""Persist a chat message and fan it out to the channel room."""

	def __init__(self, chat_dal: ChatDAL, dispatcher: BroadcastDispatcher) -> None:
		self.chat_dal = chat_dal
		self.dispatcher = dispatcher

	async def send(self, state: SessionState, payload: Dict[str, Any]) -> None:
		"""Store the message, then broadcast it to every member including the sender."""
		identity = state.identity
		content = (payload.get("content") or "").strip()
		channel_id = (payload.get("channelId") or "").strip()
		thread_id = (payload.get("threadId") or "").strip() or None
		if not content:
			raise ValueError("Message content is required.")
		if not channel_id:
			raise ValueError("channelId is required.")

		await require_team_channel(self.chat_dal, channel_id, identity.team)
		if thread_id is not None:
			thread = await self.chat_dal.get_thread(thread_id)
			if thread is None or thread.channel_id != channel_id:
				raise AuthorizationError("Thread not found")

		message = await self.chat_dal.create_message(
			content=content,
			user_id=identity.user_id,
			channel_id=channel_id,
			thread_id=thread_id,
		)
		self.dispatcher.broadcast(channel_room(channel_id), MessageCreated(message=message.to_payload()))
