"""Job queue records and typed payloads."""

from __future__ import annotations

import enum
import json
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Union


class JobState(str, enum.Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED)


class JobKind(str, enum.Enum):
    GENERATE_SUMMARY = "generate-summary"


@dataclass(frozen=True)
class ConversationLine:
    """One message handed to the summarizer."""

    author: str
    text: str
    timestamp: float


@dataclass(frozen=True)
class GenerateSummaryPayload:
    """Input for a `generate-summary` job.

    Attributes:
        thread_id: Thread the summary is written for.
        channel_id: Channel owning the thread; the finished summary is pushed to its room.
        channel_name: Label passed to the summarizer.
        team_name: Label passed to the summarizer.
        messages: Thread messages in creation order.
    """

    thread_id: str
    channel_id: str
    channel_name: str
    team_name: str
    messages: List[ConversationLine] = field(default_factory=list)

    kind = JobKind.GENERATE_SUMMARY

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GenerateSummaryPayload":
        return cls(
            thread_id=data["thread_id"],
            channel_id=data["channel_id"],
            channel_name=data.get("channel_name", ""),
            team_name=data.get("team_name", ""),
            messages=[
                ConversationLine(
                    author=item["author"],
                    text=item["text"],
                    timestamp=float(item["timestamp"]),
                )
                for item in data.get("messages", [])
            ],
        )


JobPayload = Union[GenerateSummaryPayload]

_PAYLOAD_TYPES = {
    JobKind.GENERATE_SUMMARY: GenerateSummaryPayload,
}


def decode_payload(kind: JobKind, raw: str) -> JobPayload:
    """Rebuild the typed payload stored for a job of `kind`."""
    payload_type = _PAYLOAD_TYPES.get(kind)
    if payload_type is None:
        raise ValueError(f"Unsupported job kind: {kind}")
    return payload_type.from_dict(json.loads(raw))


@dataclass
class JobRecord:
    """Row of the jobs table."""

    id: str
    kind: JobKind
    payload: JobPayload
    state: JobState = JobState.WAITING
    progress: int = 0
    result: Optional[Dict[str, Any]] = None
    failed_reason: Optional[str] = None
    attempts: int = 0
    locked_by: Optional[str] = None
    locked_until: Optional[float] = None
    created_at: Optional[float] = None
    updated_at: Optional[float] = None
    finished_at: Optional[float] = None

    def status_view(self) -> Dict[str, Any]:
        """Client-facing job status."""
        view: Dict[str, Any] = {
            "id": self.id,
            "state": self.state.value,
            "progress": self.progress,
        }
        if self.result is not None:
            view["result"] = self.result
        if self.failed_reason is not None:
            view["failedReason"] = self.failed_reason
        return view
