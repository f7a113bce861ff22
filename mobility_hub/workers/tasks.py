"""
Celery Tasks

Worker side of the transactional outbox plus the periodic housekeeping:
idle-session reset, dedup/outbox retention and operational metrics.
"""
from __future__ import annotations

import asyncio
from contextlib import contextmanager

from mobility_hub.core.logging import get_logger, set_correlation_id
from mobility_hub.db.database import get_task_session, get_task_session_factory
from mobility_hub.domain.services.maintenance_service import MaintenanceService
from mobility_hub.domain.services.outbox_service import deliver_messages
from mobility_hub.workers.celery_app import celery_app

logger = get_logger(__name__)


@contextmanager
def get_event_loop():
    """
    Context manager for proper event loop handling in Celery tasks.
    Creates a new event loop and ensures proper cleanup to prevent resource leaks.
    """
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        yield loop
    finally:
        try:
            # Cancel all pending tasks
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            # Wait for tasks to be cancelled
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        finally:
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()


def run_async(coro):
    """Helper to run async code in sync Celery task with proper cleanup"""
    # Set correlation ID for task tracking
    set_correlation_id()

    with get_event_loop() as loop:
        return loop.run_until_complete(coro)


@celery_app.task(name="mobility_hub.workers.tasks.process_outbox_messages")
def process_outbox_messages(limit: int = 50):
    """
    Deliver due outbox rows. Rows already claimed by a request's background
    task are skipped by the conditional claim.
    """

    async def _process():
        async with get_task_session_factory() as session_factory:
            stats = await deliver_messages(session_factory, limit=limit)
        if stats["sent"] or stats["failed"]:
            logger.info("Outbox sweep finished", extra_data=stats)
        return stats

    return run_async(_process())


@celery_app.task(name="mobility_hub.workers.tasks.reset_idle_sessions")
def reset_idle_sessions():
    """Return abandoned conversations to the main menu"""

    async def _reset():
        async with get_task_session() as db:
            reset = await MaintenanceService(db).reset_idle_sessions()
        return {"reset": reset}

    return run_async(_reset())


@celery_app.task(name="mobility_hub.workers.tasks.release_stalled_commands")
def release_stalled_commands():
    """Free sessions whose background command was lost"""

    async def _release():
        async with get_task_session() as db:
            released = await MaintenanceService(db).release_stalled_commands()
        return {"released": released}

    return run_async(_release())


@celery_app.task(name="mobility_hub.workers.tasks.purge_dedup_records")
def purge_dedup_records():

    async def _purge():
        async with get_task_session() as db:
            deleted = await MaintenanceService(db).purge_dedup()
        logger.info("Purged dedup records", extra_data={"deleted": deleted})
        return {"deleted": deleted}

    return run_async(_purge())


@celery_app.task(name="mobility_hub.workers.tasks.cleanup_old_outbox_messages")
def cleanup_old_outbox_messages():
    """Delete sent/failed outbox rows past OUTBOX_RETENTION_DAYS"""

    async def _cleanup():
        async with get_task_session() as db:
            deleted = await MaintenanceService(db).cleanup_outbox()
        logger.info("Cleaned up old outbox messages", extra_data={"deleted": deleted})
        return {"deleted": deleted}

    return run_async(_cleanup())


@celery_app.task(name="mobility_hub.workers.tasks.emit_operational_metrics")
def emit_operational_metrics():

    async def _collect():
        async with get_task_session() as db:
            metrics = await MaintenanceService(db).collect_metrics()
        logger.info("Operational metrics", extra_data=metrics)
        return metrics

    return run_async(_collect())
