"""Handle toggle-reaction events coming over the realtime websocket."""
from __future__ import annotations

from typing import Any, Dict

from dal.chat_dal import ChatDAL
from models.domain_events import ReactionAdded, ReactionRemoved
from models.session_models import SessionState
from services.realtime.dispatcher import BroadcastDispatcher
from services.realtime.room_registry import channel_room
from utils.errors import AuthorizationError


class ReactionEventHandler:
	"""Add or remove one user's emoji reaction on a message."""

	def __init__(self, chat_dal: ChatDAL, dispatcher: BroadcastDispatcher) -> None:
		self.chat_dal = chat_dal
		self.dispatcher = dispatcher

	async def toggle(self, state: SessionState, payload: Dict[str, Any]) -> None:
		identity = state.identity
		message_id = (payload.get("messageId") or "").strip()
		emoji = (payload.get("emoji") or "").strip()
		if not message_id or not emoji:
			raise ValueError("messageId and emoji are required.")

		message = await self.chat_dal.get_message(message_id)
		if message is None or await self.chat_dal.get_team_channel(message.channel_id, identity.team) is None:
			raise AuthorizationError("Message not found")

		added, reaction = await self.chat_dal.toggle_reaction(identity.user_id, message_id, emoji)
		room = channel_room(message.channel_id)
		if added:
			self.dispatcher.broadcast(room, ReactionAdded(reaction=reaction.to_payload()))
		else:
			self.dispatcher.broadcast(
				room,
				ReactionRemoved(message_id=message_id, emoji=emoji, user_id=identity.user_id),
			)
