"""Producer side of the summary job queue."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

from dal.job_dal import JobDAL
from models.job_models import JobPayload

LOGGER = logging.getLogger(__name__)


class JobQueue:
	"""Enqueue jobs durably and report their status."""

	def __init__(self, job_dal: JobDAL) -> None:
		self.job_dal = job_dal
		self._listeners: List[Callable[[], None]] = []

	def subscribe(self, listener: Callable[[], None]) -> None:
		"""Register a callback run after each enqueue, e.g. to wake an in-process worker."""
		self._listeners.append(listener)

	async def enqueue(self, payload: JobPayload) -> str:
		"""Store a new waiting job and return its id once it is durable."""
		job = await self.job_dal.enqueue(payload)
		LOGGER.info("Enqueued %s job %s", job.kind.value, job.id)
		for listener in self._listeners:
			listener()
		return job.id

	async def status(self, job_id: str, team: Optional[str] = None) -> Optional[Dict[str, Any]]:
		"""Return `{id, state, progress, result?, failedReason?}` or None if unknown.

		With `team`, jobs queued for another team are reported as unknown.
		"""
		job = await self.job_dal.get(job_id)
		if job is None:
			return None
		if team is not None and job.payload.team_name != team:
			return None
		return job.status_view()
