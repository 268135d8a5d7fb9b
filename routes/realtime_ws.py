"""WebSocket endpoint for realtime chat fan-out."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional, Set
from uuid import uuid4

from fastapi import APIRouter, WebSocket
from starlette.websockets import WebSocketDisconnect

from dal.chat_dal import ChatDAL
from services.realtime.ws_session import RealtimeSessionHandler

router = APIRouter()

LOGGER = logging.getLogger(__name__)

AUTH_FAILED_CLOSE_CODE = 4401
# "Try again later": the client could not keep up with its frames.
SLOW_CONSUMER_CLOSE_CODE = 1013

_closing: Set[asyncio.Task] = set()


async def _hang_up(websocket: WebSocket, code: int) -> None:
	try:
		await websocket.close(code=code)
	except Exception as exc:
		LOGGER.debug("Closing websocket failed: %s", exc)


def _schedule_hang_up(websocket: WebSocket, code: int) -> None:
	task = asyncio.create_task(_hang_up(websocket, code))
	_closing.add(task)
	task.add_done_callback(_closing.discard)


async def _await_auth_token(websocket: WebSocket, timeout: float) -> Optional[str]:
	"""Read the first frame and return its token if it is an authenticate frame."""
	try:
		raw = await asyncio.wait_for(websocket.receive_text(), timeout=timeout)
		frame: Any = json.loads(raw)
	except (asyncio.TimeoutError, ValueError):
		return None
	if not isinstance(frame, dict) or frame.get("type") != "authenticate":
		return None
	payload = frame.get("payload") or {}
	token = payload.get("token") if isinstance(payload, dict) else None
	return token if isinstance(token, str) else None


@router.websocket("/ws")
async def realtime_socket(websocket: WebSocket):
	"""Authenticate once, then relay chat events until the client goes away."""
	await websocket.accept()
	state = websocket.app.state
	handler = RealtimeSessionHandler(
		uuid4().hex,
		websocket.send_text,
		ChatDAL(state.db_initializer),
		state.identity_verifier,
		state.dispatcher,
		outbox_max_frames=state.config.outbox_max_frames,
		on_disconnect=lambda: _schedule_hang_up(websocket, SLOW_CONSUMER_CLOSE_CODE),
	)

	try:
		token = websocket.query_params.get("token")
		if not token:
			token = await _await_auth_token(websocket, state.config.auth_timeout_seconds)
	except WebSocketDisconnect:
		await handler.close()
		return

	if not await handler.authenticate(token):
		try:
			await websocket.send_text(json.dumps({"type": "error", "payload": {"message": "Authentication error"}}))
			await websocket.close(code=AUTH_FAILED_CLOSE_CODE)
		except Exception:
			pass
		return

	try:
		while True:
			try:
				raw = await websocket.receive_text()
			except WebSocketDisconnect:
				break
			try:
				frame = json.loads(raw)
			except ValueError:
				handler.send_error("Payload must be JSON")
				continue
			if not isinstance(frame, dict):
				handler.send_error("Payload must be a JSON object")
				continue
			await handler.handle(frame)
	except Exception as exc:
		LOGGER.warning("Realtime session %s ended abnormally: %s", handler.session_id, exc)
	finally:
		await handler.close()
	try:
		await websocket.close()
	except Exception:
		pass
