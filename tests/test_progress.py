# tests/test_progress.py
from datetime import datetime, timedelta

import pytest

from lhamascred.batches.progress import advance, is_terminal, stale_batch_update, summarize

NOW = datetime(2024, 5, 1, 12, 0, 0)


def _batch(**overrides):
    batch = {
        "batch_id": "batch-fgts-v8-1-abc",
        "status": "processing",
        "total_cpfs": 3,
        "processed_cpfs": 0,
        "success_count": 0,
        "error_count": 0,
        "counted_items": [],
    }
    batch.update(overrides)
    return batch


def test_success_increments_processed_and_success():
    changes = advance(_batch(), "x1", "success", NOW)
    assert changes["processed_cpfs"] == 1
    assert changes["success_count"] == 1
    assert changes["error_count"] == 0
    assert "status" not in changes


def test_queued_batch_moves_to_processing():
    changes = advance(_batch(status="queued"), "x1", "error", NOW)
    assert changes["status"] == "processing"
    assert changes["error_count"] == 1


def test_last_item_completes_even_when_all_failed():
    batch = _batch(processed_cpfs=2, error_count=2, counted_items=["x1", "x2"])
    changes = advance(batch, "x3", "error", NOW)
    assert changes["status"] == "completed"
    assert changes["completed_at"] == NOW
    assert changes["processed_cpfs"] == 3
    assert "every query failed" in changes["message"]


def test_already_counted_item_is_ignored():
    batch = _batch(processed_cpfs=1, success_count=1, counted_items=["x1"])
    assert advance(batch, "x1", "success", NOW) is None


def test_terminal_batch_is_never_incremented():
    done = _batch(status="completed", processed_cpfs=3, success_count=3)
    assert advance(done, "x9", "success", NOW) is None
    failed = _batch(status="error", processed_cpfs=3, error_count=3)
    assert is_terminal(failed)
    assert advance(failed, "x9", "success", NOW) is None


def test_expired_batch_keeps_counting_late_answers():
    expired = _batch(status="error", processed_cpfs=2, success_count=2, counted_items=["x1", "x2"])
    changes = advance(expired, "x3", "success", NOW)
    assert changes["status"] == "completed"


def test_received_is_not_a_countable_outcome():
    with pytest.raises(ValueError):
        advance(_batch(), "x1", "received", NOW)


def test_summary_separates_accounted_from_succeeded():
    summary = summarize(_batch(status="completed", processed_cpfs=3, success_count=1, error_count=2))
    assert summary["all_accounted_for"] is True
    assert summary["all_succeeded"] is False
    assert summary["pending"] == 0

    summary = summarize(_batch(processed_cpfs=1, success_count=1))
    assert summary["all_accounted_for"] is False
    assert summary["pending"] == 2


def test_stale_update_targets_old_open_batches():
    query, update = stale_batch_update(NOW, 24)
    assert query["status"] == {"$in": ["queued", "processing"]}
    assert query["created_at"] == {"$lt": NOW - timedelta(hours=24)}
    assert update["$set"]["status"] == "error"
    assert update["$set"]["expired_at"] == NOW
    assert update["$inc"] == {"version": 1}
