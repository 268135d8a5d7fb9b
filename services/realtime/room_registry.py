"""Room membership for connected sessions."""

from __future__ import annotations

from typing import Dict, FrozenSet, Protocol, Set


def team_room(team: str) -> str:
	"""Return the room key every session of `team` joins on connect."""
	return f"team:{team}"


def channel_room(channel_id: str) -> str:
	"""Return the room key for a channel."""
	return f"channel:{channel_id}"


class MembershipStore(Protocol):
	"""Storage backend for room membership.

	Implementations must apply each call as one step with no suspension
	point, so a broadcast snapshot never observes a half-applied change.
	"""

	def add(self, room: str, session_id: str) -> None: ...

	def discard(self, room: str, session_id: str) -> None: ...

	def members(self, room: str) -> FrozenSet[str]: ...

	def rooms_of(self, session_id: str) -> FrozenSet[str]: ...

	def drop_session(self, session_id: str) -> FrozenSet[str]: ...


class InMemoryMembershipStore:
	"""Single-process membership store keeping both room and session indexes."""

	def __init__(self) -> None:
		self._rooms: Dict[str, Set[str]] = {}
		self._sessions: Dict[str, Set[str]] = {}

	def add(self, room: str, session_id: str) -> None:
		self._rooms.setdefault(room, set()).add(session_id)
		self._sessions.setdefault(session_id, set()).add(room)

	def discard(self, room: str, session_id: str) -> None:
		members = self._rooms.get(room)
		if members is not None:
			members.discard(session_id)
			if not members:
				del self._rooms[room]
		rooms = self._sessions.get(session_id)
		if rooms is not None:
			rooms.discard(room)
			if not rooms:
				del self._sessions[session_id]

	def members(self, room: str) -> FrozenSet[str]:
		return frozenset(self._rooms.get(room, ()))

	def rooms_of(self, session_id: str) -> FrozenSet[str]:
		return frozenset(self._sessions.get(session_id, ()))

	def drop_session(self, session_id: str) -> FrozenSet[str]:
		rooms = self._sessions.pop(session_id, set())
		for room in rooms:
			members = self._rooms.get(room)
			if members is None:
				continue
			members.discard(session_id)
			if not members:
				del self._rooms[room]
		return frozenset(rooms)

	def room_count(self) -> int:
		return len(self._rooms)


class RoomRegistry:
	"""Track which sessions are joined to which rooms.

	Holds session ids only; the session handler owns the session itself and
	calls `remove_session` when the connection closes.
	"""

	def __init__(self, store: MembershipStore | None = None) -> None:
		self._store: MembershipStore = store if store is not None else InMemoryMembershipStore()

	def join(self, session_id: str, room: str) -> None:
		self._store.add(room, session_id)

	def leave(self, session_id: str, room: str) -> None:
		self._store.discard(room, session_id)

	def remove_session(self, session_id: str) -> FrozenSet[str]:
		"""Remove the session from every room and return the rooms it was in."""
		return self._store.drop_session(session_id)

	def members(self, room: str) -> FrozenSet[str]:
		"""Return a snapshot of the room's members at call time."""
		return self._store.members(room)

	def rooms_of(self, session_id: str) -> FrozenSet[str]:
		return self._store.rooms_of(session_id)

	def is_member(self, session_id: str, room: str) -> bool:
		return session_id in self._store.members(room)
