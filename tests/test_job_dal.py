import asyncio

import pytest

from models.job_models import ConversationLine, GenerateSummaryPayload, JobKind, JobState
from utils.errors import LeaseLostError


def _payload(thread_id="t1"):
	return GenerateSummaryPayload(
		thread_id=thread_id,
		channel_id="c1",
		channel_name="general",
		team_name="arcyn",
		messages=[ConversationLine(author="alice", text="hi", timestamp=1.0)],
	)


@pytest.mark.asyncio
async def test_enqueue_is_durable_and_typed(db_initializer, job_dal):
	from dal.job_dal import JobDAL
	from utils.database_init import AsyncDatabaseInitializer

	job = await job_dal.enqueue(_payload())

	reopened = JobDAL(AsyncDatabaseInitializer(db_initializer.db_dir))
	stored = await reopened.get(job.id)
	assert stored.state is JobState.WAITING
	assert stored.kind is JobKind.GENERATE_SUMMARY
	assert stored.payload == _payload()
	assert stored.status_view() == {"id": job.id, "state": "waiting", "progress": 0}


@pytest.mark.asyncio
async def test_claim_takes_oldest_waiting_job_once(job_dal):
	first = await job_dal.enqueue(_payload("t1"))
	second = await job_dal.enqueue(_payload("t2"))

	claimed = await job_dal.claim("w1", lease_seconds=60)
	again = await job_dal.claim("w2", lease_seconds=60)
	empty = await job_dal.claim("w3", lease_seconds=60)

	assert claimed.id == first.id and claimed.state is JobState.ACTIVE
	assert claimed.locked_by == "w1" and claimed.attempts == 1
	assert again.id == second.id
	assert empty is None


@pytest.mark.asyncio
async def test_expired_lease_is_reclaimed_without_revisiting_waiting(job_dal):
	job = await job_dal.enqueue(_payload())
	await job_dal.claim("crashed", lease_seconds=0.01)
	await asyncio.sleep(0.05)

	reclaimed = await job_dal.claim("w2", lease_seconds=60)

	assert reclaimed.id == job.id
	assert reclaimed.state is JobState.ACTIVE
	assert reclaimed.locked_by == "w2"
	assert reclaimed.attempts == 2
	with pytest.raises(LeaseLostError):
		await job_dal.update_progress(job.id, "crashed", 50, lease_seconds=60)


@pytest.mark.asyncio
async def test_progress_never_decreases(job_dal):
	job = await job_dal.enqueue(_payload())
	await job_dal.claim("w1", lease_seconds=60)

	await job_dal.update_progress(job.id, "w1", 80, lease_seconds=60)
	await job_dal.update_progress(job.id, "w1", 10, lease_seconds=60)

	assert (await job_dal.get(job.id)).progress == 80


@pytest.mark.asyncio
async def test_terminal_states_are_final(job_dal):
	job = await job_dal.enqueue(_payload())
	await job_dal.claim("w1", lease_seconds=60)
	await job_dal.complete(job.id, "w1", {"summaryId": "s1"})

	with pytest.raises(LeaseLostError):
		await job_dal.fail(job.id, "w1", "late failure")
	with pytest.raises(LeaseLostError):
		await job_dal.complete(job.id, "w1", {"summaryId": "s2"})

	stored = await job_dal.get(job.id)
	assert stored.state is JobState.COMPLETED
	assert stored.result == {"summaryId": "s1"}
	assert stored.failed_reason is None
	assert await job_dal.claim("w2", lease_seconds=60) is None


@pytest.mark.asyncio
async def test_waiting_job_cannot_be_completed(job_dal):
	job = await job_dal.enqueue(_payload())
	with pytest.raises(LeaseLostError):
		await job_dal.complete(job.id, "w1", {})
	assert (await job_dal.get(job.id)).state is JobState.WAITING


@pytest.mark.asyncio
async def test_prune_keeps_newest_terminal_jobs_and_all_pending(job_dal):
	completed, failed = [], []
	for index in range(4):
		job = await job_dal.enqueue(_payload(f"c{index}"))
		await job_dal.claim("w1", lease_seconds=60)
		await job_dal.complete(job.id, "w1", {})
		completed.append(job.id)
	for index in range(3):
		job = await job_dal.enqueue(_payload(f"f{index}"))
		await job_dal.claim("w1", lease_seconds=60)
		await job_dal.fail(job.id, "w1", "boom")
		failed.append(job.id)
	active = await job_dal.enqueue(_payload("a"))
	await job_dal.claim("w1", lease_seconds=60)
	waiting = await job_dal.enqueue(_payload("w"))

	removed = await job_dal.prune_terminal(keep_completed=2, keep_failed=1)

	assert removed == 4
	assert [j.id for j in await job_dal.list_by_state(JobState.COMPLETED)] == completed[-2:]
	assert [j.id for j in await job_dal.list_by_state(JobState.FAILED)] == failed[-1:]
	assert (await job_dal.get(active.id)).state is JobState.ACTIVE
	assert (await job_dal.get(waiting.id)).state is JobState.WAITING
	assert await job_dal.get(completed[0]) is None


@pytest.mark.asyncio
async def test_expired_job_past_attempt_limit_is_not_reclaimed(job_dal):
	job = await job_dal.enqueue(_payload())
	await job_dal.claim("crashed-1", lease_seconds=0.01, max_attempts=2)
	await asyncio.sleep(0.05)
	await job_dal.claim("crashed-2", lease_seconds=0.01, max_attempts=2)
	await asyncio.sleep(0.05)

	assert await job_dal.claim("w3", lease_seconds=60, max_attempts=2) is None
	assert (await job_dal.get(job.id)).locked_by == "crashed-2"


@pytest.mark.asyncio
async def test_fail_stalled_only_touches_expired_jobs_over_the_limit(job_dal):
	from dal.job_dal import STALLED_REASON

	stalled = await job_dal.enqueue(_payload("stalled"))
	await job_dal.claim("crashed", lease_seconds=0.01)
	live = await job_dal.enqueue(_payload("live"))
	assert (await job_dal.claim("w1", lease_seconds=60, max_attempts=1)).id == live.id
	waiting = await job_dal.enqueue(_payload("waiting"))
	await asyncio.sleep(0.05)

	assert await job_dal.fail_stalled(max_attempts=1) == 1

	failed = await job_dal.get(stalled.id)
	assert failed.state is JobState.FAILED
	assert failed.failed_reason == STALLED_REASON
	assert failed.locked_by is None
	assert (await job_dal.get(live.id)).state is JobState.ACTIVE
	assert (await job_dal.get(waiting.id)).state is JobState.WAITING
	assert await job_dal.fail_stalled(max_attempts=1) == 0


@pytest.mark.asyncio
async def test_lease_renewal_requires_holding_the_job(job_dal):
	job = await job_dal.enqueue(_payload())
	await job_dal.claim("w1", lease_seconds=0.05)

	await job_dal.renew_lease(job.id, "w1", lease_seconds=60)
	await asyncio.sleep(0.1)

	assert await job_dal.claim("w2", lease_seconds=60) is None
	with pytest.raises(LeaseLostError):
		await job_dal.renew_lease(job.id, "w2", lease_seconds=60)
	assert (await job_dal.get(job.id)).progress == 0
