"""Session domain models for realtime workflows."""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field
from typing import Optional, Set


class SessionStatus(str, enum.Enum):
	"""Lifecycle of one websocket connection."""

	CONNECTING = "connecting"
	AUTHENTICATED = "authenticated"
	CLOSED = "closed"


@dataclass(frozen=True)
class Identity:
	"""Verified user identity produced at connect time."""

	user_id: str
	username: str
	team: str


@dataclass
class SessionState:
	"""In-memory tracking for a single connected client."""

	session_id: str
	status: SessionStatus = SessionStatus.CONNECTING
	identity: Optional[Identity] = None
	joined_rooms: Set[str] = field(default_factory=set)
	connected_at: float = field(default_factory=lambda: time.time())

	@property
	def authenticated(self) -> bool:
		return self.status is SessionStatus.AUTHENTICATED

	@property
	def closed(self) -> bool:
		return self.status is SessionStatus.CLOSED
