"""
Batch progress rules.

Pure functions over batch documents; the store applies the returned changes
with a compare-and-swap on the document's `version`.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple

COUNTED_OUTCOMES = ("success", "error")


def is_terminal(batch: Dict[str, Any]) -> bool:
    """
    A batch that no longer accepts progress increments: completed, or every
    CPF already accounted for (covers a terminal `error`).
    """
    if batch.get("status") == "completed":
        return True
    return int(batch.get("processed_cpfs") or 0) >= int(batch.get("total_cpfs") or 0)


def completion_message(total: int, success: int, error: int) -> str:
    if error == 0:
        return f"All {total} CPFs processed successfully."
    if success == 0:
        return f"All {total} CPFs processed; every query failed."
    return f"All {total} CPFs processed: {success} succeeded, {error} failed."


def advance(
    batch: Dict[str, Any],
    response_id: str,
    outcome: str,
    now: datetime,
) -> Optional[Dict[str, Any]]:
    """
    Changes that count one settled item towards the batch, or None.

    None means the callback must be ignored: the batch is terminal or this
    item was already counted. Reaching total_cpfs completes the batch
    regardless of how many items errored.
    """
    if outcome not in COUNTED_OUTCOMES:
        raise ValueError(f"Only settled outcomes are counted, got {outcome!r}")

    if is_terminal(batch):
        return None
    if response_id in (batch.get("counted_items") or ()):
        return None

    total = int(batch["total_cpfs"])
    processed = int(batch.get("processed_cpfs") or 0) + 1
    success = int(batch.get("success_count") or 0)
    error = int(batch.get("error_count") or 0)
    if outcome == "success":
        success += 1
    else:
        error += 1

    changes: Dict[str, Any] = {
        "processed_cpfs": processed,
        "success_count": success,
        "error_count": error,
        "updated_at": now,
    }

    if processed >= total:
        changes["status"] = "completed"
        changes["completed_at"] = now
        changes["message"] = completion_message(total, success, error)
    elif batch.get("status") == "queued":
        changes["status"] = "processing"

    return changes


def summarize(batch: Dict[str, Any]) -> Dict[str, Any]:
    total = int(batch.get("total_cpfs") or 0)
    processed = int(batch.get("processed_cpfs") or 0)
    success = int(batch.get("success_count") or 0)
    error = int(batch.get("error_count") or 0)
    accounted = processed >= total
    return {
        "all_accounted_for": accounted,
        "all_succeeded": accounted and error == 0 and success >= total,
        "pending": max(0, total - processed),
        "success_count": success,
        "error_count": error,
    }


def stale_batch_update(now: datetime, older_than_hours: int) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """
    Filter and update that flag batches stuck in queued/processing.

    Expired batches are marked `error` but keep counting late callbacks, so
    they can still complete if the provider eventually answers.
    """
    cutoff = now - timedelta(hours=older_than_hours)
    query = {
        "status": {"$in": ["queued", "processing"]},
        "created_at": {"$lt": cutoff},
    }
    update = {
        "$set": {
            "status": "error",
            "message": f"No provider answer for every CPF within {older_than_hours}h; batch expired.",
            "expired_at": now,
            "updated_at": now,
        },
        "$inc": {"version": 1},
    }
    return query, update
