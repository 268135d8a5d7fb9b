import asyncio
from unittest.mock import AsyncMock

import aiosqlite
import pytest

from dal.job_dal import STALLED_REASON
from helpers import FrameRecorder
from models.job_models import ConversationLine, GenerateSummaryPayload, JobState
from services.jobs.job_queue import JobQueue
from services.jobs.summary_worker import SummaryWorker
from services.realtime.room_registry import channel_room
from services.realtime.session_outbox import SessionOutbox
from utils.errors import SummarizationError


def _payload(thread_id, channel_id="c1", count=5):
	return GenerateSummaryPayload(
		thread_id=thread_id,
		channel_id=channel_id,
		channel_name="general",
		team_name="arcyn",
		messages=[
			ConversationLine(author="alice" if i % 2 else "bob", text=f"message {i}", timestamp=float(i))
			for i in range(count)
		],
	)


class RecordingSummarizer:
	"""Summarizer double that records progress seen mid-call and can block or fail."""

	def __init__(self, job_dal=None, fail=None, gate=None, delay=0.0):
		self.job_dal = job_dal
		self.fail = fail
		self.gate = gate
		self.delay = delay
		self.calls = []
		self.running = 0
		self.peak = 0

	async def summarize(self, messages, channel_name, team_name):
		self.calls.append((list(messages), channel_name, team_name))
		self.running += 1
		self.peak = max(self.peak, self.running)
		try:
			if self.gate is not None:
				await self.gate.wait()
			if self.delay:
				await asyncio.sleep(self.delay)
			if self.fail is not None:
				raise self.fail
			return f"summary of {len(messages)} messages"
		finally:
			self.running -= 1


@pytest.mark.asyncio
async def test_successful_job_completes_and_stores_summary(chat_dal, job_dal, summary_dal, team):
	thread = await chat_dal.create_thread(team.general.id)
	summarizer = RecordingSummarizer()
	worker = SummaryWorker(job_dal, summary_dal, summarizer, worker_id="w1")
	job_id = await JobQueue(job_dal).enqueue(_payload(thread.id, team.general.id))

	processed = await worker.run_once()

	assert processed.id == job_id
	stored = await job_dal.get(job_id)
	assert stored.state is JobState.COMPLETED
	assert stored.progress == 100
	summaries = await summary_dal.list_for_thread(thread.id)
	assert [s.content for s in summaries] == ["summary of 5 messages"]
	assert stored.result["summaryId"] == summaries[0].id
	assert stored.result["threadId"] == thread.id
	messages, channel_name, team_name = summarizer.calls[0]
	assert [m.text for m in messages] == [f"message {i}" for i in range(5)]
	assert (channel_name, team_name) == ("general", "arcyn")


@pytest.mark.asyncio
async def test_failed_summarizer_marks_job_failed_without_summary(chat_dal, job_dal, summary_dal, team):
	thread = await chat_dal.create_thread(team.general.id)
	summarizer = RecordingSummarizer(fail=SummarizationError("model unavailable"))
	worker = SummaryWorker(job_dal, summary_dal, summarizer, worker_id="w1")
	job = await job_dal.enqueue(_payload(thread.id, team.general.id))

	await worker.run_once()

	stored = await job_dal.get(job.id)
	assert stored.state is JobState.FAILED
	assert stored.failed_reason == "model unavailable"
	assert stored.result is None
	assert stored.progress == 10
	assert await summary_dal.list_for_thread(thread.id) == []
	assert stored.status_view()["failedReason"] == "model unavailable"


@pytest.mark.asyncio
async def test_job_progress_sequence_is_monotonic(chat_dal, job_dal, summary_dal, team, monkeypatch):
	thread = await chat_dal.create_thread(team.general.id)
	worker = SummaryWorker(job_dal, summary_dal, RecordingSummarizer(), worker_id="w1")
	job = await job_dal.enqueue(_payload(thread.id, team.general.id))
	seen = []
	original = job_dal.update_progress

	async def _spy(job_id, worker_id, progress, lease_seconds):
		await original(job_id, worker_id, progress, lease_seconds)
		seen.append((await job_dal.get(job_id)).progress)

	monkeypatch.setattr(job_dal, "update_progress", _spy)
	await worker.run_once()

	assert seen == [10, 80]
	assert (await job_dal.get(job.id)).progress == 100


@pytest.mark.asyncio
async def test_completion_pushes_summary_ready_to_channel_room(chat_dal, job_dal, summary_dal, dispatcher, team):
	thread = await chat_dal.create_thread(team.general.id)
	recorder = FrameRecorder()
	outbox = SessionOutbox("listener", recorder.send_text)
	outbox.start()
	dispatcher.attach(outbox)
	dispatcher.registry.join("listener", channel_room(team.general.id))
	worker = SummaryWorker(job_dal, summary_dal, RecordingSummarizer(), dispatcher, worker_id="w1")
	job = await job_dal.enqueue(_payload(thread.id, team.general.id))

	await worker.run_once()
	await outbox.flush()

	assert recorder.types == ["summary-ready"]
	payload = recorder.frames[0]["payload"]
	assert payload["jobId"] == job.id
	assert payload["summary"]["threadId"] == thread.id
	assert payload["summary"]["content"] == "summary of 5 messages"
	await outbox.close()


@pytest.mark.asyncio
async def test_pool_never_runs_more_than_concurrency_jobs(chat_dal, job_dal, summary_dal, team):
	thread = await chat_dal.create_thread(team.general.id)
	gate = asyncio.Event()
	summarizer = RecordingSummarizer(gate=gate)
	worker = SummaryWorker(job_dal, summary_dal, summarizer, concurrency=3, poll_seconds=0.01, worker_id="w1")
	for _ in range(5):
		await job_dal.enqueue(_payload(thread.id, team.general.id))

	worker.start()
	try:
		for _ in range(200):
			if len(await job_dal.list_by_state(JobState.ACTIVE)) == 3:
				break
			await asyncio.sleep(0.01)
		await asyncio.sleep(0.05)

		assert len(await job_dal.list_by_state(JobState.ACTIVE)) == 3
		assert len(await job_dal.list_by_state(JobState.WAITING)) == 2
		assert summarizer.running == 3

		gate.set()
		for _ in range(300):
			if len(await job_dal.list_by_state(JobState.COMPLETED)) == 5:
				break
			await asyncio.sleep(0.01)
	finally:
		await worker.stop()

	assert len(await job_dal.list_by_state(JobState.COMPLETED)) == 5
	assert summarizer.peak == 3
	assert len(await summary_dal.list_for_thread(thread.id)) == 5


@pytest.mark.asyncio
async def test_reclaimed_job_is_abandoned_by_the_stale_worker(chat_dal, job_dal, summary_dal, team):
	thread = await chat_dal.create_thread(team.general.id)
	job = await job_dal.enqueue(_payload(thread.id, team.general.id))
	stale = SummaryWorker(job_dal, summary_dal, RecordingSummarizer(), worker_id="stale", lease_seconds=0.01)
	claimed = await job_dal.claim("stale", lease_seconds=0.01)
	await asyncio.sleep(0.05)
	await job_dal.claim("fresh", lease_seconds=60)

	await stale.process(claimed)

	stored = await job_dal.get(job.id)
	assert stored.state is JobState.ACTIVE
	assert stored.locked_by == "fresh"
	assert await summary_dal.list_for_thread(thread.id) == []


@pytest.mark.asyncio
async def test_retention_prunes_old_finished_jobs(chat_dal, job_dal, summary_dal, team):
	thread = await chat_dal.create_thread(team.general.id)
	worker = SummaryWorker(
		job_dal,
		summary_dal,
		RecordingSummarizer(),
		worker_id="w1",
		keep_completed=2,
		keep_failed=1,
	)
	ids = [(await job_dal.enqueue(_payload(thread.id, team.general.id))).id for _ in range(4)]
	for _ in ids:
		await worker.run_once()

	remaining = [j.id for j in await job_dal.list_by_state(JobState.COMPLETED)]
	assert remaining == ids[-2:]
	assert len(await summary_dal.list_for_thread(thread.id)) == 4


@pytest.mark.asyncio
async def test_unexpected_summarizer_error_is_isolated(chat_dal, job_dal, summary_dal, team):
	thread = await chat_dal.create_thread(team.general.id)
	summarizer = AsyncMock()
	summarizer.summarize.side_effect = [RuntimeError(), "second works"]
	worker = SummaryWorker(job_dal, summary_dal, summarizer, worker_id="w1")
	first = await job_dal.enqueue(_payload(thread.id, team.general.id))
	second = await job_dal.enqueue(_payload(thread.id, team.general.id))

	await worker.run_once()
	await worker.run_once()

	assert (await job_dal.get(first.id)).failed_reason == "RuntimeError"
	assert (await job_dal.get(second.id)).state is JobState.COMPLETED


@pytest.mark.asyncio
async def test_slow_summary_keeps_its_lease_and_runs_once(chat_dal, job_dal, summary_dal, team):
	thread = await chat_dal.create_thread(team.general.id)
	summarizer = RecordingSummarizer(delay=0.8)
	worker = SummaryWorker(
		job_dal,
		summary_dal,
		summarizer,
		concurrency=3,
		poll_seconds=0.01,
		lease_seconds=0.2,
		worker_id="w1",
	)
	job = await job_dal.enqueue(_payload(thread.id, team.general.id))

	worker.start()
	try:
		for _ in range(300):
			if (await job_dal.get(job.id)).state.terminal:
				break
			await asyncio.sleep(0.01)
	finally:
		await worker.stop()

	stored = await job_dal.get(job.id)
	assert stored.state is JobState.COMPLETED
	assert stored.attempts == 1
	assert len(summarizer.calls) == 1
	assert summarizer.peak == 1
	assert len(await summary_dal.list_for_thread(thread.id)) == 1


@pytest.mark.asyncio
async def test_summary_is_not_kept_when_completion_fails(chat_dal, job_dal, summary_dal, team, monkeypatch):
	thread = await chat_dal.create_thread(team.general.id)
	worker = SummaryWorker(job_dal, summary_dal, RecordingSummarizer(), worker_id="w1")
	job = await job_dal.enqueue(_payload(thread.id, team.general.id))
	monkeypatch.setattr(summary_dal, "insert", AsyncMock(side_effect=aiosqlite.OperationalError("disk I/O error")))

	await worker.run_once()

	stored = await job_dal.get(job.id)
	assert stored.state is JobState.FAILED
	assert stored.failed_reason == "disk I/O error"
	assert stored.result is None
	assert await summary_dal.list_for_thread(thread.id) == []


@pytest.mark.asyncio
async def test_job_that_keeps_stalling_is_failed(chat_dal, job_dal, summary_dal, team):
	thread = await chat_dal.create_thread(team.general.id)
	summarizer = RecordingSummarizer()
	worker = SummaryWorker(job_dal, summary_dal, summarizer, worker_id="w1", max_attempts=2)
	job = await job_dal.enqueue(_payload(thread.id, team.general.id))
	for crashed in ("crashed-1", "crashed-2"):
		assert (await job_dal.claim(crashed, lease_seconds=0.01)).id == job.id
		await asyncio.sleep(0.05)

	assert await worker.run_once() is None

	stored = await job_dal.get(job.id)
	assert stored.state is JobState.FAILED
	assert stored.failed_reason == STALLED_REASON
	assert stored.attempts == 2
	assert summarizer.calls == []
