"""Background worker pool that processes queued summary jobs."""

from __future__ import annotations

import asyncio
import logging
import os
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional

from dal.job_dal import DEFAULT_MAX_ATTEMPTS, JobDAL
from dal.summary_dal import SummaryDAL
from models.domain_events import SummaryReady
from models.job_models import GenerateSummaryPayload, JobKind, JobRecord
from services.openai.summary_generator import ThreadSummarizer
from services.realtime.dispatcher import BroadcastDispatcher
from services.realtime.room_registry import channel_room
from utils.errors import LeaseLostError

LOGGER = logging.getLogger(__name__)

PROGRESS_STARTED = 10
PROGRESS_GENERATED = 80
PROGRESS_DONE = 100


class SummaryWorker:
	"""Claim jobs from the durable queue and run them with bounded concurrency.

	Each of the `concurrency` slots holds at most one active job, so at most
	that many jobs are active for this worker at once. Every state change is
	written conditionally on this worker still holding the job's lease, and
	the lease is renewed every third of `lease_seconds` while a job runs.
	"""

	def __init__(
		self,
		job_dal: JobDAL,
		summary_dal: SummaryDAL,
		summarizer: ThreadSummarizer,
		dispatcher: Optional[BroadcastDispatcher] = None,
		*,
		concurrency: int = 3,
		poll_seconds: float = 1.0,
		lease_seconds: float = 300.0,
		keep_completed: int = 10,
		keep_failed: int = 5,
		max_attempts: int = DEFAULT_MAX_ATTEMPTS,
		worker_id: Optional[str] = None,
	) -> None:
		if concurrency < 1:
			raise ValueError("concurrency must be at least 1")
		self.job_dal = job_dal
		self.summary_dal = summary_dal
		self.summarizer = summarizer
		self.dispatcher = dispatcher
		self.concurrency = concurrency
		self.poll_seconds = poll_seconds
		self.lease_seconds = lease_seconds
		self.keep_completed = keep_completed
		self.keep_failed = keep_failed
		self.max_attempts = max_attempts
		self.worker_id = worker_id or f"worker-{os.getpid()}-{uuid.uuid4().hex[:8]}"
		# Each handler completes its job under the lease and returns the stored result.
		self._handlers: Dict[JobKind, Callable[[JobRecord], Awaitable[Dict[str, Any]]]] = {
			JobKind.GENERATE_SUMMARY: self._generate_summary,
		}
		self._slots: List[asyncio.Task] = []
		self._wakeup = asyncio.Event()
		self._stopping = False

	def wake(self) -> None:
		"""Cut the idle sleep short, e.g. right after an enqueue."""
		self._wakeup.set()

	def start(self) -> None:
		if self._slots:
			return
		self._stopping = False
		self._slots = [
			asyncio.create_task(self._slot_loop(index), name=f"{self.worker_id}-slot-{index}")
			for index in range(self.concurrency)
		]
		LOGGER.info("Summary worker %s started with concurrency %d", self.worker_id, self.concurrency)

	async def stop(self) -> None:
		"""Cancel all slots. Jobs interrupted mid-flight become claimable after their lease expires."""
		self._stopping = True
		self._wakeup.set()
		for task in self._slots:
			task.cancel()
		if self._slots:
			await asyncio.gather(*self._slots, return_exceptions=True)
		self._slots = []
		LOGGER.info("Summary worker %s stopped", self.worker_id)

	async def run_once(self) -> Optional[JobRecord]:
		"""Claim and fully process one job; return it, or None if the queue was empty."""
		stalled = await self.job_dal.fail_stalled(self.max_attempts)
		if stalled:
			LOGGER.warning("Failed %d stalled jobs after %d attempts", stalled, self.max_attempts)
			await self._prune()
		job = await self.job_dal.claim(self.worker_id, self.lease_seconds, self.max_attempts)
		if job is None:
			return None
		await self.process(job)
		return job

	async def process(self, job: JobRecord) -> None:
		"""Run a claimed job to a terminal state. Never raises for job-level failures.

		The lease is renewed in the background while the handler runs, so a
		slow summarizer call does not let another slot reclaim the job.
		"""
		LOGGER.info("Processing %s job %s (attempt %d)", job.kind.value, job.id, job.attempts)
		handler = self._handlers.get(job.kind)
		heartbeat = asyncio.create_task(self._heartbeat(job), name=f"{self.worker_id}-lease-{job.id}")
		try:
			if handler is None:
				raise ValueError(f"Unknown job kind: {job.kind}")
			result = await handler(job)
		except LeaseLostError:
			LOGGER.warning("Job %s was reclaimed by another worker; abandoning it", job.id)
			return
		except Exception as exc:
			reason = str(exc) or exc.__class__.__name__
			LOGGER.error("Job %s (%s) failed: %s", job.id, job.kind.value, reason)
			try:
				await self.job_dal.fail(job.id, self.worker_id, reason)
			except LeaseLostError:
				LOGGER.warning("Job %s was reclaimed before its failure could be recorded", job.id)
			await self._prune()
			return
		finally:
			heartbeat.cancel()
			try:
				await heartbeat
			except asyncio.CancelledError:
				pass

		LOGGER.info("Job %s completed", job.id)
		self._announce(job, result)
		await self._prune()

	async def _generate_summary(self, job: JobRecord) -> Dict[str, Any]:
		payload: GenerateSummaryPayload = job.payload
		await self._progress(job, PROGRESS_STARTED)
		content = await self.summarizer.summarize(payload.messages, payload.channel_name, payload.team_name)
		await self._progress(job, PROGRESS_GENERATED)
		summary = self.summary_dal.new_record(payload.thread_id, content)
		result = {
			"summaryId": summary.id,
			"threadId": summary.thread_id,
			"content": summary.content,
			"createdAt": summary.created_at,
		}

		async def _store_summary(conn) -> None:
			await self.summary_dal.insert(conn, summary)

		# The summary row only exists if the job completes under our lease.
		await self.job_dal.complete(
			job.id,
			self.worker_id,
			result,
			progress=PROGRESS_DONE,
			in_transaction=_store_summary,
		)
		LOGGER.info("AI summary generated for thread %s", payload.thread_id)
		return result

	def _announce(self, job: JobRecord, result: Dict[str, Any]) -> None:
		if self.dispatcher is None or job.kind is not JobKind.GENERATE_SUMMARY:
			return
		payload: GenerateSummaryPayload = job.payload
		self.dispatcher.broadcast(
			channel_room(payload.channel_id),
			SummaryReady(
				job_id=job.id,
				summary={
					"id": result["summaryId"],
					"threadId": result["threadId"],
					"content": result["content"],
					"createdAt": result["createdAt"],
				},
			),
		)

	async def _progress(self, job: JobRecord, value: int) -> None:
		await self.job_dal.update_progress(job.id, self.worker_id, value, self.lease_seconds)

	async def _heartbeat(self, job: JobRecord) -> None:
		interval = max(self.lease_seconds / 3, 0.001)
		while True:
			await asyncio.sleep(interval)
			try:
				await self.job_dal.renew_lease(job.id, self.worker_id, self.lease_seconds)
			except LeaseLostError:
				LOGGER.warning("Lease on job %s lost; stopping renewal", job.id)
				return
			except Exception as exc:
				LOGGER.error("Renewing lease on job %s failed: %s", job.id, exc)

	async def _prune(self) -> None:
		try:
			removed = await self.job_dal.prune_terminal(self.keep_completed, self.keep_failed)
		except Exception as exc:
			LOGGER.error("Pruning finished jobs failed: %s", exc)
			return
		if removed:
			LOGGER.debug("Pruned %d finished jobs", removed)

	async def _slot_loop(self, index: int) -> None:
		while not self._stopping:
			try:
				job = await self.run_once()
			except asyncio.CancelledError:
				raise
			except Exception as exc:
				# Claim failures (e.g. database busy) must not kill the slot.
				LOGGER.error("Worker slot %d error: %s", index, exc)
				job = None
			if job is not None:
				continue
			try:
				await asyncio.wait_for(self._wakeup.wait(), timeout=self.poll_seconds)
			except asyncio.TimeoutError:
				pass
			self._wakeup.clear()
