from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class UserRecord:
    """Row of the users table. `team` is the team the user belongs to."""

    id: str
    username: str
    team: str
    email: Optional[str] = None
    avatar: Optional[str] = None

    def author_view(self) -> Dict[str, Any]:
        return {"id": self.id, "username": self.username, "avatar": self.avatar}


@dataclass
class ChannelRecord:
    id: str
    name: str
    team: str


@dataclass
class ThreadRecord:
    id: str
    channel_id: str
    title: Optional[str]
    created_at: float
    updated_at: float


@dataclass
class ReactionRecord:
    """A single (user, message, emoji) reaction; unique per triple."""

    id: str
    emoji: str
    user_id: str
    message_id: str
    created_at: float
    username: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "emoji": self.emoji,
            "userId": self.user_id,
            "messageId": self.message_id,
            "createdAt": self.created_at,
        }
        if self.username is not None:
            payload["user"] = {"id": self.user_id, "username": self.username}
        return payload


@dataclass
class MessageRecord:
    """A message row joined with its author and current reactions.

    Attributes:
        id: Primary key.
        content: Message text.
        user_id: Author id.
        channel_id: Channel the message was posted in.
        thread_id: Optional thread the message belongs to.
        created_at: Unix timestamp (seconds, float) when the row was inserted.
        author: Author fields exposed to clients (id, username, avatar).
        reactions: Reactions currently attached to the message.
    """

    id: str
    content: str
    user_id: str
    channel_id: str
    thread_id: Optional[str]
    created_at: float
    author: Dict[str, Any] = field(default_factory=dict)
    reactions: List[ReactionRecord] = field(default_factory=list)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "userId": self.user_id,
            "channelId": self.channel_id,
            "threadId": self.thread_id,
            "createdAt": self.created_at,
            "user": dict(self.author),
            "reactions": [reaction.to_payload() for reaction in self.reactions],
        }


@dataclass
class SummaryRecord:
    """Persisted AI summary for a thread. A thread keeps every summary generated."""

    id: str
    thread_id: str
    content: str
    created_at: float

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "threadId": self.thread_id,
            "content": self.content,
            "createdAt": self.created_at,
        }
