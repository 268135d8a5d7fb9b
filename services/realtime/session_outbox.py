"""Per-connection FIFO of outbound frames."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

LOGGER = logging.getLogger(__name__)

SendText = Callable[[str], Awaitable[None]]

DEFAULT_MAX_FRAMES = 256

_CLOSE = object()


class SessionOutbox:
	"""Queue frames for one session and write them in order from a single task.

	Producers never await the socket, so a slow client only delays its own
	frames. At most `max_frames` frames wait at once; a client that falls
	further behind is cut off and `on_overflow` is called so the connection
	can be torn down. After `close()` or an overflow further frames are dropped.
	"""

	def __init__(
		self,
		session_id: str,
		send_text: SendText,
		max_frames: int = DEFAULT_MAX_FRAMES,
		on_overflow: Optional[Callable[[], None]] = None,
	) -> None:
		self.session_id = session_id
		self._send_text = send_text
		# One extra slot so the close marker always fits.
		self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_frames + 1)
		self._max_frames = max_frames
		self._on_overflow = on_overflow
		self._task: Optional[asyncio.Task] = None
		self._closed = False
		self.overflowed = False

	@property
	def closed(self) -> bool:
		return self._closed

	def start(self) -> None:
		if self._task is None:
			self._task = asyncio.create_task(self._drain(), name=f"outbox-{self.session_id}")

	def put(self, frame: Dict[str, Any]) -> bool:
		"""Queue a frame; return False when the outbox is closed or just overflowed."""
		if self._closed:
			return False
		if self._queue.qsize() >= self._max_frames:
			self._overflow()
			return False
		self._queue.put_nowait(frame)
		return True

	async def close(self, flush: bool = True) -> None:
		"""Stop accepting frames; optionally wait for queued frames to be written."""
		if self._closed:
			return
		self._closed = True
		if self._task is None:
			return
		if flush:
			self._queue.put_nowait(_CLOSE)
			try:
				await self._task
			except Exception as exc:
				LOGGER.debug("Outbox for %s ended with error: %s", self.session_id, exc)
		else:
			self._task.cancel()
			try:
				await self._task
			except asyncio.CancelledError:
				pass

	async def flush(self) -> None:
		"""Wait until every frame queued so far has been written or dropped."""
		if self._closed or self._task is None or self._task.done():
			return
		await self._queue.join()

	def _overflow(self) -> None:
		LOGGER.warning(
			"Session %s fell %d frames behind; disconnecting it", self.session_id, self._max_frames
		)
		self._closed = True
		self.overflowed = True
		if self._task is not None:
			self._task.cancel()
		if self._on_overflow is not None:
			self._on_overflow()

	async def _drain(self) -> None:
		broken = False
		while True:
			frame = await self._queue.get()
			try:
				if frame is _CLOSE:
					return
				if not broken:
					await self._send_text(json.dumps(frame))
			except Exception as exc:
				# Socket is gone; the receive loop will observe the disconnect.
				LOGGER.info("Dropping frames for session %s: %s", self.session_id, exc)
				broken = True
				self._closed = True
			finally:
				self._queue.task_done()
