"""Run the summary worker pool as its own process.

Run: set `DATABASE_DIR` and `OPENAI_API_KEY` (a `.env` file works) and run
`python worker.py`. Summaries are delivered to clients by job-status
polling; realtime push is only available when the worker runs inside the
web process (`RUN_WORKER=true`).
"""
import asyncio
import logging
import signal

from dotenv import load_dotenv

from dal.job_dal import JobDAL
from dal.summary_dal import SummaryDAL
from main import _close_client, build_openai_client
from services.jobs.summary_worker import SummaryWorker
from services.openai.summary_generator import ThreadSummarizer
from utils.app_config import AppConfig
from utils.database_init import AsyncDatabaseInitializer


async def main() -> None:
    """Start the pool and run until SIGINT/SIGTERM."""
    load_dotenv()
    config = AppConfig.from_env()
    db_initializer = AsyncDatabaseInitializer()
    await db_initializer.ensure_database()
    client = build_openai_client(config)

    worker = SummaryWorker(
        JobDAL(db_initializer),
        SummaryDAL(db_initializer),
        ThreadSummarizer(client, model=config.summary_model, max_tokens=config.summary_max_tokens),
        concurrency=config.worker_concurrency,
        poll_seconds=config.worker_poll_seconds,
        lease_seconds=config.job_lease_seconds,
        keep_completed=config.keep_completed_jobs,
        keep_failed=config.keep_failed_jobs,
        max_attempts=config.job_max_attempts,
    )

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass

    worker.start()
    logging.info("Summary worker listening for jobs")
    try:
        await stop.wait()
    finally:
        logging.info("Shutting down worker gracefully")
        await worker.stop()
        await _close_client(client)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    asyncio.run(main())
