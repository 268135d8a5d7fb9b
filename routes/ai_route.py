"""FastAPI routes for thread summaries and summary job status."""

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import BaseModel, Field

from controllers.summary_controller import get_job_status, get_latest_summary, list_summaries, request_summary
from models.session_models import Identity
from utils.errors import AuthenticationError

router = APIRouter(prefix="/ai", tags=["ai"])


class SummarizePayload(BaseModel):
	thread_id: str = Field(..., alias="threadId", min_length=1)


async def require_identity(request: Request, authorization: str | None = Header(None)) -> Identity:
	"""Resolve the bearer token to an identity or reject with 401."""
	verifier = getattr(request.app.state, "identity_verifier", None)
	if verifier is None:
		raise HTTPException(status_code=500, detail="Identity verifier not initialized.")
	token = None
	if authorization and authorization.lower().startswith("bearer "):
		token = authorization[7:]
	try:
		return await verifier.verify(token)
	except AuthenticationError as exc:
		raise HTTPException(status_code=401, detail=str(exc)) from exc


@router.post("/summarize")
async def summarize_route(request: Request, payload: SummarizePayload, identity: Identity = Depends(require_identity)):
	try:
		return await request_summary(request, identity, payload.thread_id)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.get("/job/{job_id}")
async def job_status_route(request: Request, job_id: str, identity: Identity = Depends(require_identity)):
	try:
		return await get_job_status(request, identity, job_id)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.get("/summary/{thread_id}")
async def latest_summary_route(request: Request, thread_id: str, identity: Identity = Depends(require_identity)):
	try:
		return await get_latest_summary(request, identity, thread_id)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.get("/summaries/{thread_id}")
async def summaries_route(request: Request, thread_id: str, identity: Identity = Depends(require_identity)):
	try:
		return await list_summaries(request, identity, thread_id)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))
