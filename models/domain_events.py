"""Outbound realtime events.

Every event a server may push to a client is one of the frozen dataclasses
below. `EVENT_TYPES` is the closed set of wire names.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Mapping, Optional


@dataclass(frozen=True)
class DomainEvent:
	"""Base for immutable notifications fanned out to rooms."""

	type: ClassVar[str] = ""

	def payload(self) -> Dict[str, Any]:
		raise NotImplementedError

	def to_frame(self) -> Dict[str, Any]:
		return {"type": self.type, "payload": self.payload()}


@dataclass(frozen=True)
class MessageCreated(DomainEvent):
	type: ClassVar[str] = "message-created"
	message: Mapping[str, Any]

	def payload(self) -> Dict[str, Any]:
		return dict(self.message)


@dataclass(frozen=True)
class ReactionAdded(DomainEvent):
	type: ClassVar[str] = "reaction-added"
	reaction: Mapping[str, Any]

	def payload(self) -> Dict[str, Any]:
		return dict(self.reaction)


@dataclass(frozen=True)
class ReactionRemoved(DomainEvent):
	type: ClassVar[str] = "reaction-removed"
	message_id: str
	emoji: str
	user_id: str

	def payload(self) -> Dict[str, Any]:
		return {"messageId": self.message_id, "emoji": self.emoji, "userId": self.user_id}


@dataclass(frozen=True)
class TypingStarted(DomainEvent):
	type: ClassVar[str] = "typing-start"
	user_id: str
	username: str
	channel_id: str

	def payload(self) -> Dict[str, Any]:
		return {"userId": self.user_id, "username": self.username, "channelId": self.channel_id}


@dataclass(frozen=True)
class TypingStopped(TypingStarted):
	type: ClassVar[str] = "typing-stop"


@dataclass(frozen=True)
class PresenceOnline(DomainEvent):
	type: ClassVar[str] = "presence-online"
	user_id: str
	username: str

	def payload(self) -> Dict[str, Any]:
		return {"userId": self.user_id, "username": self.username}


@dataclass(frozen=True)
class PresenceOffline(PresenceOnline):
	type: ClassVar[str] = "presence-offline"


@dataclass(frozen=True)
class SummaryReady(DomainEvent):
	type: ClassVar[str] = "summary-ready"
	job_id: str
	summary: Mapping[str, Any]

	def payload(self) -> Dict[str, Any]:
		return {"jobId": self.job_id, "summary": dict(self.summary)}


@dataclass(frozen=True)
class ChannelJoined(DomainEvent):
	type: ClassVar[str] = "channel-joined"
	channel_id: str

	def payload(self) -> Dict[str, Any]:
		return {"channelId": self.channel_id}


@dataclass(frozen=True)
class ChannelLeft(ChannelJoined):
	type: ClassVar[str] = "channel-left"


@dataclass(frozen=True)
class ErrorEvent(DomainEvent):
	type: ClassVar[str] = "error"
	message: str
	request_id: Optional[Any] = None

	def payload(self) -> Dict[str, Any]:
		body: Dict[str, Any] = {"message": self.message}
		if self.request_id is not None:
			body["requestId"] = self.request_id
		return body


EVENT_TYPES = frozenset(
	cls.type
	for cls in (
		MessageCreated,
		ReactionAdded,
		ReactionRemoved,
		TypingStarted,
		TypingStopped,
		PresenceOnline,
		PresenceOffline,
		SummaryReady,
		ChannelJoined,
		ChannelLeft,
		ErrorEvent,
	)
)
