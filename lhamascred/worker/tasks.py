"""Celery tasks: batch dispatch and the stale-batch sweep."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict

from lhamascred.core.config import get_settings
from lhamascred.batches.progress import stale_batch_update
from lhamascred.worker.celery_app import celery_app
from lhamascred.worker.mongo_clients import get_pymongo_db

logger = logging.getLogger(__name__)


def _run_async(coro):
    """Run async function in sync Celery task."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


async def _dispatch(batch_id: str) -> Dict[str, int]:
    # Motor clients are bound to the loop they were created on, so the
    # connection lives and dies inside this coroutine.
    from lhamascred.core.database import Database
    from lhamascred.batches.dispatcher import BatchDispatcher

    await Database.connect()
    try:
        return await BatchDispatcher().dispatch(batch_id)
    finally:
        await Database.disconnect()


@celery_app.task(name="lhamascred.worker.tasks.dispatch_batch", acks_late=True)
def dispatch_batch(batch_id: str) -> Dict[str, Any]:
    """
    Send the provider requests of a queued batch.

    Only batch_id travels through SQS; a redelivered message finds the batch
    no longer `queued` and does nothing.
    """
    logger.info(f"Dispatching batch {batch_id}")
    try:
        stats = _run_async(_dispatch(batch_id))
    except Exception as e:
        logger.error(f"Failed to dispatch batch {batch_id}: {e}")
        raise
    return {"batch_id": batch_id, **stats}


@celery_app.task(name="lhamascred.worker.tasks.expire_stale_batches", acks_late=True)
def expire_stale_batches() -> Dict[str, Any]:
    """Hourly sweep of batches stuck in queued/processing."""
    hours = int(get_settings().BATCH_STALE_AFTER_HOURS)
    query, update = stale_batch_update(datetime.utcnow(), hours)
    result = get_pymongo_db()["batches"].update_many(query, update)
    if result.modified_count:
        logger.warning(f"Expired {result.modified_count} stale batch(es) older than {hours}h")
    return {"expired": result.modified_count}
