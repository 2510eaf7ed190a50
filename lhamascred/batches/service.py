"""Batch store: persistence, access scoping and the progress transaction."""

from __future__ import annotations

import asyncio
import logging
import random
from datetime import datetime
from typing import Any, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ReturnDocument

from lhamascred.core.config import get_settings
from lhamascred.core.database import Database
from lhamascred.core.exceptions import NotFoundException
from lhamascred.batches.models import BatchJobResponse, BatchSummary
from lhamascred.batches.progress import advance, stale_batch_update, summarize

settings = get_settings()
logger = logging.getLogger(__name__)

# Fields kept out of API responses.
INTERNAL_FIELDS = ("_id", "counted_items", "cpfs_data", "version")


class BatchTransactionConflict(RuntimeError):
    """The progress transaction kept losing the compare-and-swap race."""


def _now() -> datetime:
    return datetime.utcnow()


def _version_filter(batch: Dict[str, Any]) -> Any:
    """Match the batch only while its `version` is the one that was read."""
    if "version" in batch:
        return batch["version"]
    return {"$exists": False}


class BatchService:
    @staticmethod
    def _collection():
        return Database.get_collection("batches")

    @staticmethod
    def _responses():
        return Database.get_collection("webhook_responses")

    # ==================== Serialization ====================

    @staticmethod
    def to_response(doc: Dict[str, Any]) -> BatchJobResponse:
        data = {k: v for k, v in doc.items() if k not in INTERNAL_FIELDS}
        data["summary"] = BatchSummary(**summarize(doc))
        return BatchJobResponse(**data)

    # ==================== CRUD ====================

    @classmethod
    async def create(cls, doc: Dict[str, Any]) -> Dict[str, Any]:
        doc.setdefault("processed_cpfs", 0)
        doc.setdefault("success_count", 0)
        doc.setdefault("error_count", 0)
        doc.setdefault("counted_items", [])
        doc.setdefault("version", 0)
        await cls._collection().insert_one(doc)
        doc.pop("_id", None)
        return doc

    @classmethod
    async def get_batch_doc(cls, batch_id: str) -> Dict[str, Any]:
        doc = await cls._collection().find_one({"batch_id": batch_id})
        if not doc:
            raise NotFoundException("Batch not found")
        return doc

    @classmethod
    async def _team_member_ids(cls, team_id: Optional[str]) -> List[str]:
        if not team_id:
            return []
        cursor = Database.get_collection("users").find({"team_id": team_id}, {"_id": 1})
        members = await cursor.to_list(length=None)
        return [str(m["_id"]) for m in members]

    @classmethod
    async def _owner_team(cls, user_id: str) -> Optional[str]:
        try:
            oid = ObjectId(user_id)
        except (InvalidId, TypeError):
            return None
        owner = await Database.get_collection("users").find_one({"_id": oid}, {"team_id": 1})
        return (owner or {}).get("team_id")

    @classmethod
    async def ensure_access(cls, doc: Dict[str, Any], user: dict) -> None:
        """Owners and admins always; managers for batches of their team."""
        if user.get("role") == "admin" or doc.get("user_id") == user["id"]:
            return
        if user.get("role") == "manager" and user.get("team_id"):
            if await cls._owner_team(doc.get("user_id")) == user["team_id"]:
                return
        # Same answer as a missing batch, so ids cannot be probed.
        raise NotFoundException("Batch not found")

    @classmethod
    async def get_for_user(cls, batch_id: str, user: dict) -> Dict[str, Any]:
        doc = await cls.get_batch_doc(batch_id)
        await cls.ensure_access(doc, user)
        return doc

    @classmethod
    async def list_for_user(
        cls,
        user: dict,
        *,
        status: Optional[str] = None,
        provider: Optional[str] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> List[Dict[str, Any]]:
        """Newest first. Users see their own, managers their team, admins all."""
        query: Dict[str, Any] = {}
        role = user.get("role") or "user"
        if role == "manager":
            member_ids = await cls._team_member_ids(user.get("team_id"))
            query["user_id"] = {"$in": sorted(set(member_ids) | {user["id"]})}
        elif role != "admin":
            query["user_id"] = user["id"]

        if status:
            query["status"] = status
        if provider:
            query["provider"] = provider

        cursor = (
            cls._collection()
            .find(query)
            .sort("created_at", -1)
            .skip(max(0, skip))
            .limit(limit)
        )
        return await cursor.to_list(length=limit)

    @classmethod
    async def delete_for_user(cls, batch_id: str, user: dict) -> int:
        """Delete a batch and its items. Returns the number of items removed."""
        doc = await cls.get_for_user(batch_id, user)

        result = await cls._collection().delete_one({"batch_id": doc["batch_id"]})
        if result.deleted_count == 0:
            # Deleted concurrently between the read and the delete.
            raise NotFoundException("Batch not found")

        items = await cls._responses().delete_many({"batch_id": batch_id})
        logger.info(f"Batch {batch_id} deleted by {user['email']} ({items.deleted_count} items)")
        return items.deleted_count

    @classmethod
    async def list_items(cls, batch_id: str) -> List[Dict[str, Any]]:
        cursor = cls._responses().find({"batch_id": batch_id}).sort([("created_at", 1), ("_id", 1)])
        return await cursor.to_list(length=None)

    # ==================== State transitions ====================

    @classmethod
    async def mark_processing(cls, batch_id: str, message: str) -> Optional[Dict[str, Any]]:
        """queued -> processing. Returns None if the batch was not queued."""
        return await cls._collection().find_one_and_update(
            {"batch_id": batch_id, "status": "queued"},
            {
                "$set": {"status": "processing", "message": message, "updated_at": _now()},
                "$inc": {"version": 1},
            },
            return_document=ReturnDocument.AFTER,
        )

    @classmethod
    async def set_message(cls, batch_id: str, message: str) -> None:
        """Update the status message of a batch still in flight."""
        await cls._collection().update_one(
            {"batch_id": batch_id, "status": {"$in": ["queued", "processing"]}},
            {"$set": {"message": message, "updated_at": _now()}, "$inc": {"version": 1}},
        )

    @classmethod
    async def fail_batch(cls, batch_id: str, message: str) -> None:
        """
        Terminal failure before any item was sent (credentials, auth, enqueue).

        Every unsettled item becomes an error and the batch is closed as
        `error` with all CPFs accounted for, so late callbacks are ignored.
        """
        now = _now()
        pending = await cls._responses().find(
            {"batch_id": batch_id, "status": "received"}, {"response_id": 1}
        ).to_list(length=None)
        pending_ids = [p["response_id"] for p in pending]

        if pending_ids:
            await cls._responses().update_many(
                {"response_id": {"$in": pending_ids}},
                {"$set": {
                    "status": "error",
                    "message": message,
                    "response_body": {"errorMessage": message},
                    "updated_at": now,
                }},
            )

        batch = await cls._collection().find_one({"batch_id": batch_id})
        if not batch:
            logger.warning(f"fail_batch: batch {batch_id} no longer exists")
            return
        if batch.get("status") == "completed":
            return

        counted = set(batch.get("counted_items") or [])
        newly_counted = [rid for rid in pending_ids if rid not in counted]
        total = int(batch["total_cpfs"])
        error_count = total - int(batch.get("success_count") or 0)

        await cls._collection().update_one(
            {"batch_id": batch_id, "status": {"$ne": "completed"}},
            {
                "$set": {
                    "status": "error",
                    "message": message,
                    "processed_cpfs": total,
                    "error_count": error_count,
                    "completed_at": now,
                    "updated_at": now,
                },
                "$push": {"counted_items": {"$each": newly_counted}},
                "$inc": {"version": 1},
            },
        )
        logger.error(f"Batch {batch_id} failed: {message}")

    @classmethod
    async def record_item_outcome(
        cls,
        batch_id: str,
        response_id: str,
        outcome: str,
    ) -> Optional[Dict[str, Any]]:
        """
        Count one settled item towards its batch.

        Read, compute the changes, then write only if `version` is unchanged;
        on a lost race re-read and try again. Returns the batch after the call
        (unchanged for ignored callbacks) or None if the batch is gone.
        """
        collection = cls._collection()
        max_attempts = max(1, int(settings.BATCH_TXN_MAX_ATTEMPTS))

        for attempt in range(1, max_attempts + 1):
            batch = await collection.find_one({"batch_id": batch_id})
            if not batch:
                logger.warning(f"Item {response_id} references missing batch {batch_id}")
                return None

            changes = advance(batch, response_id, outcome, _now())
            if changes is None:
                logger.debug(f"Batch {batch_id}: callback for {response_id} ignored (terminal or already counted)")
                return batch

            updated = await collection.find_one_and_update(
                {"batch_id": batch_id, "version": _version_filter(batch)},
                {
                    "$set": changes,
                    "$inc": {"version": 1},
                    "$push": {"counted_items": response_id},
                },
                return_document=ReturnDocument.AFTER,
            )
            if updated is not None:
                if changes.get("status") == "completed":
                    logger.info(
                        f"Batch {batch_id} completed: {updated['success_count']} success, "
                        f"{updated['error_count']} error"
                    )
                return updated

            logger.debug(f"Batch {batch_id}: version conflict on attempt {attempt}, retrying")
            await asyncio.sleep(random.uniform(0, 0.01 * attempt))

        logger.error(f"Batch {batch_id}: gave up counting {response_id} after {max_attempts} attempts")
        raise BatchTransactionConflict(f"Could not update batch {batch_id}")

    @classmethod
    async def close_as_completed(cls, batch_id: str, message: str) -> Optional[Dict[str, Any]]:
        """
        Close a batch whose items all have a successful answer already.

        Items not counted yet are counted here, so the batch ends with every
        CPF accounted for. Written with the same version check as
        `record_item_outcome`.
        """
        collection = cls._collection()
        max_attempts = max(1, int(settings.BATCH_TXN_MAX_ATTEMPTS))

        for attempt in range(1, max_attempts + 1):
            batch = await collection.find_one({"batch_id": batch_id})
            if not batch:
                logger.warning(f"close_as_completed: batch {batch_id} no longer exists")
                return None
            if batch.get("status") == "completed":
                return batch

            items = await cls._responses().find(
                {"batch_id": batch_id}, {"response_id": 1, "status": 1}
            ).to_list(length=None)
            counted = set(batch.get("counted_items") or [])
            newly_counted = [i["response_id"] for i in items if i["response_id"] not in counted]
            total = int(batch["total_cpfs"])
            success = min(total, sum(1 for i in items if i.get("status") == "success"))
            now = _now()

            updated = await collection.find_one_and_update(
                {"batch_id": batch_id, "version": _version_filter(batch)},
                {
                    "$set": {
                        "status": "completed",
                        "message": message,
                        "processed_cpfs": total,
                        "success_count": success,
                        "error_count": total - success,
                        "completed_at": now,
                        "updated_at": now,
                    },
                    "$push": {"counted_items": {"$each": newly_counted}},
                    "$inc": {"version": 1},
                },
                return_document=ReturnDocument.AFTER,
            )
            if updated is not None:
                logger.info(f"Batch {batch_id} closed as completed ({len(newly_counted)} item(s) counted on close)")
                return updated

            logger.debug(f"Batch {batch_id}: version conflict closing batch on attempt {attempt}, retrying")
            await asyncio.sleep(random.uniform(0, 0.01 * attempt))

        raise BatchTransactionConflict(f"Could not close batch {batch_id}")

    @classmethod
    async def mark_replaced(cls, batch_id: str, new_batch_id: str) -> None:
        await cls._collection().update_one(
            {"batch_id": batch_id},
            {
                "$set": {
                    "replaced_by": new_batch_id,
                    "message": f"Replaced by reprocessing batch {new_batch_id}",
                    "updated_at": _now(),
                },
                "$inc": {"version": 1},
            },
        )

    @classmethod
    async def expire_stale(cls, older_than_hours: Optional[int] = None) -> int:
        hours = int(settings.BATCH_STALE_AFTER_HOURS if older_than_hours is None else older_than_hours)
        query, update = stale_batch_update(_now(), hours)
        result = await cls._collection().update_many(query, update)
        if result.modified_count:
            logger.warning(f"Expired {result.modified_count} stale batch(es) older than {hours}h")
        return result.modified_count
