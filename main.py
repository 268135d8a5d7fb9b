import inspect
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from openai import AsyncOpenAI

from dal.chat_dal import ChatDAL
from dal.job_dal import JobDAL
from dal.summary_dal import SummaryDAL
from routes.ai_route import router as ai_router
from routes.realtime_ws import router as realtime_router
from services.jobs.job_queue import JobQueue
from services.jobs.summary_worker import SummaryWorker
from services.openai.summary_generator import ThreadSummarizer
from services.realtime.dispatcher import BroadcastDispatcher
from services.realtime.identity import IdentityVerifier
from services.realtime.room_registry import RoomRegistry
from utils.app_config import AppConfig
from utils.database_init import AsyncDatabaseInitializer

load_dotenv()  # Load environment variables from .env file if present

LOGGER = logging.getLogger(__name__)


def build_openai_client(config: AppConfig) -> AsyncOpenAI:
    if not config.openai_api_key:
        raise RuntimeError("OPENAI_API_KEY environment variable is not set")
    try:
        return AsyncOpenAI(api_key=config.openai_api_key)
    except Exception as exc:
        raise RuntimeError("Failed to initialize OpenAI Async client") from exc


async def _close_client(client: Any) -> None:
    """Close the OpenAI client if it exposes a close/aclose method."""
    aclose = getattr(client, "aclose", None) or getattr(client, "close", None)
    if aclose is None:
        return
    try:
        if inspect.iscoroutinefunction(aclose):
            await aclose()
        else:
            result = aclose()
            if inspect.isawaitable(result):
                await result
    except Exception as exc:
        LOGGER.warning("Error closing OpenAI client: %s", exc)


def create_app(
    config: Optional[AppConfig] = None,
    db_dir: Optional[Path | str] = None,
    openai_client: Optional[Any] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application instance.

    `config`, `db_dir` and `openai_client` default to values built from the
    environment; tests pass their own.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Lifespan manager to initialize:
          - the SQLite database at DATABASE_DIR/app.db (existing rows are kept)
          - the room registry and broadcast dispatcher
          - the job queue and, when enabled, the in-process summary worker
        and attach them to `app.state`.
        """
        cfg = config or AppConfig.from_env()
        app.state.config = cfg

        db_initializer = AsyncDatabaseInitializer(db_dir)
        await db_initializer.ensure_database()
        app.state.db_initializer = db_initializer

        app.state.identity_verifier = IdentityVerifier(cfg.require_jwt_secret(), ChatDAL(db_initializer))
        app.state.dispatcher = BroadcastDispatcher(RoomRegistry())

        job_dal = JobDAL(db_initializer)
        app.state.job_queue = JobQueue(job_dal)
        app.state.worker = None

        client = openai_client
        owns_client = False
        if cfg.run_worker:
            if client is None:
                client = build_openai_client(cfg)
                owns_client = True
            worker = SummaryWorker(
                job_dal,
                SummaryDAL(db_initializer),
                ThreadSummarizer(client, model=cfg.summary_model, max_tokens=cfg.summary_max_tokens),
                app.state.dispatcher,
                concurrency=cfg.worker_concurrency,
                poll_seconds=cfg.worker_poll_seconds,
                lease_seconds=cfg.job_lease_seconds,
                keep_completed=cfg.keep_completed_jobs,
                keep_failed=cfg.keep_failed_jobs,
                max_attempts=cfg.job_max_attempts,
            )
            app.state.job_queue.subscribe(worker.wake)
            worker.start()
            app.state.worker = worker
        app.state.openai_client = client

        try:
            yield
        finally:
            if app.state.worker is not None:
                await app.state.worker.stop()
            if owns_client:
                await _close_client(client)

    app = FastAPI(lifespan=lifespan)

    @app.get("/health")
    async def health(request: Request):
        """
        Simple health check that reports which shared services are running.
        """
        state = request.app.state
        return {
            "ok": True,
            "db_initialized": hasattr(state, "db_initializer"),
            "worker_running": getattr(state, "worker", None) is not None,
        }

    # Register application routers
    app.include_router(realtime_router)
    app.include_router(ai_router)

    return app


app = create_app()
