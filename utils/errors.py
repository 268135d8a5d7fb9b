"""Exception types shared by the realtime and job layers."""

from __future__ import annotations


class AuthenticationError(RuntimeError):
    """Credential missing, malformed, expired, or bound to no known user."""


class AuthorizationError(PermissionError):
    """Authenticated identity may not act on the requested resource."""


class SummarizationError(RuntimeError):
    """The language model call failed or returned unusable output."""


class LeaseLostError(RuntimeError):
    """A worker no longer owns the job it was processing."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Lease lost for job {job_id}")
        self.job_id = job_id
