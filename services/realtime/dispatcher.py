"""Fan domain events out to the sessions joined to a room."""

from __future__ import annotations

import logging
from typing import Dict, Optional

from models.domain_events import DomainEvent
from services.realtime.room_registry import RoomRegistry
from services.realtime.session_outbox import SessionOutbox

LOGGER = logging.getLogger(__name__)


class BroadcastDispatcher:
	"""Deliver events to room members through their outboxes.

	`broadcast` and `send` never suspend: membership is snapshotted and every
	frame is queued in one step, so a join or leave on the same event loop
	cannot interleave with a fan-out in progress.
	"""

	def __init__(self, registry: RoomRegistry) -> None:
		self.registry = registry
		self._outboxes: Dict[str, SessionOutbox] = {}

	def attach(self, outbox: SessionOutbox) -> None:
		self._outboxes[outbox.session_id] = outbox

	def detach(self, session_id: str) -> Optional[SessionOutbox]:
		return self._outboxes.pop(session_id, None)

	def connected(self, session_id: str) -> bool:
		return session_id in self._outboxes

	def send(self, session_id: str, event: DomainEvent) -> bool:
		"""Queue an event for a single session; False if it is gone."""
		outbox = self._outboxes.get(session_id)
		if outbox is None:
			return False
		return outbox.put(event.to_frame())

	def broadcast(self, room: str, event: DomainEvent, exclude: Optional[str] = None) -> int:
		"""Queue `event` for every member of `room` except `exclude`.

		Returns:
			Number of sessions the event was queued for. Sessions that left or
			disconnected are skipped.
		"""
		frame = event.to_frame()
		delivered = 0
		for session_id in self.registry.members(room):
			if session_id == exclude:
				continue
			outbox = self._outboxes.get(session_id)
			if outbox is None or not outbox.put(frame):
				continue
			delivered += 1
		LOGGER.debug("Broadcast %s to %s (%d recipients)", event.type, room, delivered)
		return delivered
