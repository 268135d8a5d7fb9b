import asyncio
import json
from types import SimpleNamespace
from typing import Any, Dict, List
from unittest.mock import AsyncMock

JWT_SECRET = "test-secret"


class FrameRecorder:
	"""Stand-in for `websocket.send_text` that keeps decoded frames."""

	def __init__(self) -> None:
		self.frames: List[Dict[str, Any]] = []

	async def send_text(self, text: str) -> None:
		self.frames.append(json.loads(text))

	def of_type(self, event_type: str) -> List[Dict[str, Any]]:
		return [frame for frame in self.frames if frame["type"] == event_type]

	@property
	def types(self) -> List[str]:
		return [frame["type"] for frame in self.frames]


def fake_openai_client(text: str = "## Summary\n- decided to ship") -> SimpleNamespace:
	response = SimpleNamespace(output=[], output_text=text, usage=None)
	return SimpleNamespace(responses=SimpleNamespace(create=AsyncMock(return_value=response)))


async def flush(*handlers) -> None:
	"""Wait until every frame queued for the given sessions has been written."""
	for handler in handlers:
		await handler.outbox.flush()


class StuckSocket:
	"""`send_text` that never completes, like a client that stopped reading."""

	def __init__(self) -> None:
		self.started = asyncio.Event()
		self.cancelled = False

	async def send_text(self, text: str) -> None:
		self.started.set()
		try:
			await asyncio.Event().wait()
		except asyncio.CancelledError:
			self.cancelled = True
			raise
