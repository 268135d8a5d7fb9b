"""Thread summary requests and job status lookups."""

from __future__ import annotations

from typing import Any, Dict

from fastapi import HTTPException, Request

from dal.chat_dal import ChatDAL
from dal.summary_dal import SummaryDAL
from models.chat_models import ChannelRecord, ThreadRecord
from models.job_models import ConversationLine, GenerateSummaryPayload
from models.session_models import Identity
from services.jobs.job_queue import JobQueue


async def _require_team_thread(chat_dal: ChatDAL, thread_id: str, identity: Identity) -> tuple[ThreadRecord, ChannelRecord]:
	thread = await chat_dal.get_thread(thread_id)
	channel = await chat_dal.get_team_channel(thread.channel_id, identity.team) if thread else None
	if thread is None or channel is None:
		raise HTTPException(status_code=404, detail="Thread not found")
	return thread, channel


async def request_summary(request: Request, identity: Identity, thread_id: str) -> Dict[str, Any]:
	"""Queue a summary job for a thread the caller's team owns and return its id."""
	chat_dal = ChatDAL(request.app.state.db_initializer)
	thread, channel = await _require_team_thread(chat_dal, thread_id, identity)

	messages = await chat_dal.list_thread_messages(thread.id)
	if not messages:
		raise HTTPException(status_code=400, detail="Cannot summarize empty thread")

	payload = GenerateSummaryPayload(
		thread_id=thread.id,
		channel_id=channel.id,
		channel_name=channel.name,
		team_name=channel.team,
		messages=[
			ConversationLine(
				author=message.author.get("username") or message.user_id,
				text=message.content,
				timestamp=message.created_at,
			)
			for message in messages
		],
	)
	queue: JobQueue = request.app.state.job_queue
	job_id = await queue.enqueue(payload)
	return {"message": "Summary generation started", "jobId": job_id}


async def get_job_status(request: Request, identity: Identity, job_id: str) -> Dict[str, Any]:
	"""Report a job queued by the caller's team; other teams' jobs look unknown."""
	queue: JobQueue = request.app.state.job_queue
	status = await queue.status(job_id, team=identity.team)
	if status is None:
		raise HTTPException(status_code=404, detail="Job not found")
	return status


async def get_latest_summary(request: Request, identity: Identity, thread_id: str) -> Dict[str, Any]:
	chat_dal = ChatDAL(request.app.state.db_initializer)
	thread, _ = await _require_team_thread(chat_dal, thread_id, identity)
	summary = await SummaryDAL(request.app.state.db_initializer).latest_for_thread(thread.id)
	if summary is None:
		raise HTTPException(status_code=404, detail="No summary available for this thread")
	return {"summary": summary.to_payload()}


async def list_summaries(request: Request, identity: Identity, thread_id: str) -> Dict[str, Any]:
	"""Return every summary of the thread, newest first."""
	chat_dal = ChatDAL(request.app.state.db_initializer)
	thread, _ = await _require_team_thread(chat_dal, thread_id, identity)
	summaries = await SummaryDAL(request.app.state.db_initializer).list_for_thread(thread.id)
	return {"summaries": [summary.to_payload() for summary in summaries]}
