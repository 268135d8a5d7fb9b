"""Dispatch realtime websocket events to the appropriate handlers."""
from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, Optional

import aiosqlite

from dal.chat_dal import ChatDAL
from models.domain_events import (
	ChannelJoined,
	ChannelLeft,
	ErrorEvent,
	PresenceOffline,
	PresenceOnline,
	TypingStarted,
	TypingStopped,
)
from models.session_models import SessionState, SessionStatus
from services.realtime.dispatcher import BroadcastDispatcher
from services.realtime.identity import IdentityVerifier
from services.realtime.room_registry import channel_room, team_room
from services.realtime.session_outbox import DEFAULT_MAX_FRAMES, SendText, SessionOutbox
from services.realtime.ws_messages import MessageEventHandler, require_team_channel
from services.realtime.ws_reactions import ReactionEventHandler
from utils.errors import AuthenticationError, AuthorizationError

LOGGER = logging.getLogger(__name__)

EventHandler = Callable[[Dict[str, Any]], Awaitable[None]]

# Generic error text per event when persistence fails.
_FAILURE_TEXT = {
	"join-room": "Failed to join channel",
	"send-message": "Failed to send message",
	"toggle-reaction": "Failed to add reaction",
}


class RealtimeSessionHandler:
	"""Own one connected client: authenticate once, then route its events.

	Inbound events are awaited one at a time by the caller's receive loop, so
	a session never processes two events concurrently.
	"""

	def __init__(
		self,
		session_id: str,
		send_text: SendText,
		chat_dal: ChatDAL,
		verifier: IdentityVerifier,
		dispatcher: BroadcastDispatcher,
		outbox_max_frames: int = DEFAULT_MAX_FRAMES,
		on_disconnect: Optional[Callable[[], None]] = None,
	) -> None:
		self.state = SessionState(session_id=session_id)
		self.chat_dal = chat_dal
		self.verifier = verifier
		self.dispatcher = dispatcher
		self.outbox = SessionOutbox(session_id, send_text, outbox_max_frames, self._drop_slow_client)
		self._on_disconnect = on_disconnect
		self.message_handler = MessageEventHandler(chat_dal, dispatcher)
		self.reaction_handler = ReactionEventHandler(chat_dal, dispatcher)
		self._handlers: Dict[str, EventHandler] = {
			"join-room": self._join_room,
			"leave-room": self._leave_room,
			"send-message": self._send_message,
			"toggle-reaction": self._toggle_reaction,
			"typing-start": self._typing_start,
			"typing-stop": self._typing_stop,
		}

	@property
	def session_id(self) -> str:
		return self.state.session_id

	async def authenticate(self, token: Optional[str]) -> bool:
		"""Make the single authentication attempt this session is allowed.

		On success the session joins its team room and the team is told it is
		online. On failure the session is closed and nothing is registered.
		"""
		if self.state.status is not SessionStatus.CONNECTING:
			raise RuntimeError("Session has already attempted authentication.")
		try:
			identity = await self.verifier.verify(token)
		except AuthenticationError as exc:
			LOGGER.info("Session %s failed authentication: %s", self.session_id, exc)
			self.state.status = SessionStatus.CLOSED
			return False

		self.state.identity = identity
		self.state.status = SessionStatus.AUTHENTICATED
		self.outbox.start()
		self.dispatcher.attach(self.outbox)
		room = team_room(identity.team)
		self.dispatcher.registry.join(self.session_id, room)
		self.state.joined_rooms.add(room)
		self.dispatcher.broadcast(
			room,
			PresenceOnline(user_id=identity.user_id, username=identity.username),
			exclude=self.session_id,
		)
		LOGGER.info("User %s connected (session %s)", identity.username, self.session_id)
		return True

	async def handle(self, frame: Dict[str, Any]) -> None:
		"""Process a single inbound event frame `{"type", "payload", "requestId"?}`."""
		if not self.state.authenticated:
			return
		event_type = frame.get("type")
		request_id = frame.get("requestId")
		payload = frame.get("payload")
		if payload is None:
			payload = {}
		handler = self._handlers.get(event_type) if isinstance(event_type, str) else None
		if handler is None:
			self.send_error("Unsupported event type.", request_id)
			return
		if not isinstance(payload, dict):
			self.send_error("Event payload must be an object.", request_id)
			return
		try:
			await handler(payload)
		except (AuthorizationError, ValueError) as exc:
			self.send_error(str(exc), request_id)
		except aiosqlite.Error as exc:
			LOGGER.error("Persistence error handling %s for session %s: %s", event_type, self.session_id, exc)
			self.send_error(_FAILURE_TEXT.get(event_type, "Request failed"), request_id)
		except Exception:
			LOGGER.exception("Unexpected error handling %s for session %s", event_type, self.session_id)
			self.send_error(_FAILURE_TEXT.get(event_type, "Request failed"), request_id)

	async def close(self) -> None:
		"""Enter the terminal state: leave every room, then announce the user offline."""
		previous = self.state.status
		if previous is SessionStatus.CLOSED:
			return
		self.state.status = SessionStatus.CLOSED
		self.dispatcher.registry.remove_session(self.session_id)
		self.state.joined_rooms.clear()
		self.dispatcher.detach(self.session_id)
		await self.outbox.close(flush=False)

		identity = self.state.identity
		if previous is SessionStatus.AUTHENTICATED and identity is not None:
			self.dispatcher.broadcast(
				team_room(identity.team),
				PresenceOffline(user_id=identity.user_id, username=identity.username),
			)
			LOGGER.info("User %s disconnected (session %s)", identity.username, self.session_id)

	def _drop_slow_client(self) -> None:
		"""Stop fan-out to a client whose outbox overflowed and ask the transport to hang up.

		The session stays authenticated until `close()` runs from the receive
		loop, which still announces the user offline.
		"""
		self.dispatcher.registry.remove_session(self.session_id)
		self.state.joined_rooms.clear()
		self.dispatcher.detach(self.session_id)
		if self._on_disconnect is not None:
			self._on_disconnect()

	async def _join_room(self, payload: Dict[str, Any]) -> None:
		channel_id = self._channel_id(payload)
		channel = await require_team_channel(self.chat_dal, channel_id, self.state.identity.team)
		room = channel_room(channel.id)
		if self.state.closed or self.outbox.closed:
			return
		self.dispatcher.registry.join(self.session_id, room)
		self.state.joined_rooms.add(room)
		self.dispatcher.send(self.session_id, ChannelJoined(channel_id=channel.id))

	async def _leave_room(self, payload: Dict[str, Any]) -> None:
		channel_id = self._channel_id(payload)
		room = channel_room(channel_id)
		self.dispatcher.registry.leave(self.session_id, room)
		self.state.joined_rooms.discard(room)
		self.dispatcher.send(self.session_id, ChannelLeft(channel_id=channel_id))

	async def _send_message(self, payload: Dict[str, Any]) -> None:
		await self.message_handler.send(self.state, payload)

	async def _toggle_reaction(self, payload: Dict[str, Any]) -> None:
		await self.reaction_handler.toggle(self.state, payload)

	async def _typing_start(self, payload: Dict[str, Any]) -> None:
		await self._typing(payload, TypingStarted)

	async def _typing_stop(self, payload: Dict[str, Any]) -> None:
		await self._typing(payload, TypingStopped)

	async def _typing(self, payload: Dict[str, Any], event_type) -> None:
		channel_id = self._channel_id(payload)
		room = channel_room(channel_id)
		identity = self.state.identity
		if room not in self.state.joined_rooms:
			await require_team_channel(self.chat_dal, channel_id, identity.team)
		self.dispatcher.broadcast(
			room,
			event_type(user_id=identity.user_id, username=identity.username, channel_id=channel_id),
			exclude=self.session_id,
		)

	@staticmethod
	def _channel_id(payload: Dict[str, Any]) -> str:
		channel_id = payload.get("channelId")
		if not isinstance(channel_id, str) or not channel_id.strip():
			raise ValueError("channelId is required.")
		return channel_id.strip()

	def send_error(self, detail: str, request_id: Any = None) -> None:
		self.dispatcher.send(self.session_id, ErrorEvent(message=detail, request_id=request_id))
