"""Environment-driven settings for the chat server and summary worker."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}") from exc


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be a number, got {raw!r}") from exc


@dataclass
class AppConfig:
    """Runtime settings. Call `load_dotenv()` before `from_env()` to honour a .env file."""

    jwt_secret: Optional[str] = None
    openai_api_key: Optional[str] = None

    # Summarization
    summary_model: str = "gpt-4o-mini"
    summary_max_tokens: int = 1000

    # Worker pool
    run_worker: bool = True
    worker_concurrency: int = 3
    worker_poll_seconds: float = 1.0
    job_lease_seconds: float = 300.0
    keep_completed_jobs: int = 10
    keep_failed_jobs: int = 5
    job_max_attempts: int = 2

    # Realtime
    auth_timeout_seconds: float = 10.0
    outbox_max_frames: int = 256

    @classmethod
    def from_env(cls) -> "AppConfig":
        cfg = cls(
            jwt_secret=os.getenv("JWT_SECRET"),
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            summary_model=os.getenv("SUMMARY_MODEL") or cls.summary_model,
            summary_max_tokens=_env_int("SUMMARY_MAX_TOKENS", cls.summary_max_tokens),
            run_worker=_env_bool("RUN_WORKER", cls.run_worker),
            worker_concurrency=_env_int("WORKER_CONCURRENCY", cls.worker_concurrency),
            worker_poll_seconds=_env_float("WORKER_POLL_SECONDS", cls.worker_poll_seconds),
            job_lease_seconds=_env_float("JOB_LEASE_SECONDS", cls.job_lease_seconds),
            keep_completed_jobs=_env_int("KEEP_COMPLETED_JOBS", cls.keep_completed_jobs),
            keep_failed_jobs=_env_int("KEEP_FAILED_JOBS", cls.keep_failed_jobs),
            job_max_attempts=_env_int("JOB_MAX_ATTEMPTS", cls.job_max_attempts),
            auth_timeout_seconds=_env_float("AUTH_TIMEOUT_SECONDS", cls.auth_timeout_seconds),
            outbox_max_frames=_env_int("OUTBOX_MAX_FRAMES", cls.outbox_max_frames),
        )
        if cfg.worker_concurrency < 1:
            raise RuntimeError("WORKER_CONCURRENCY must be at least 1")
        if cfg.job_max_attempts < 1:
            raise RuntimeError("JOB_MAX_ATTEMPTS must be at least 1")
        if cfg.outbox_max_frames < 1:
            raise RuntimeError("OUTBOX_MAX_FRAMES must be at least 1")
        return cfg

    def require_jwt_secret(self) -> str:
        if not self.jwt_secret:
            raise RuntimeError("JWT_SECRET environment variable is not set")
        return self.jwt_secret
