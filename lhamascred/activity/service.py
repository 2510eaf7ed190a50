"""Activity log: who queried what, with which provider."""

import logging
from datetime import datetime
from typing import List, Optional

from lhamascred.core.database import Database

logger = logging.getLogger(__name__)


class ActivityService:
    @staticmethod
    def _collection():
        return Database.get_collection("activity_logs")

    @classmethod
    async def log(
        cls,
        *,
        user_id: str,
        user_email: str,
        action: str,
        provider: Optional[str] = None,
        details: Optional[str] = None,
        document_number: Optional[str] = None,
    ) -> None:
        """
        Record an activity entry.

        Failures are logged and swallowed: an audit write must never abort the
        operation being audited.
        """
        doc = {
            "user_id": user_id,
            "user_email": user_email,
            "action": action,
            "provider": provider,
            "details": details,
            "document_number": document_number,
            "created_at": datetime.utcnow(),
        }
        try:
            await cls._collection().insert_one(doc)
        except Exception as e:
            logger.error(f"Failed to write activity log '{action}' for user {user_id}: {e}")

    @classmethod
    async def list_logs(
        cls,
        *,
        email: Optional[str] = None,
        provider: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[dict]:
        query: dict = {}
        if email:
            query["user_email"] = email.lower()
        if provider:
            query["provider"] = provider
        if date_from or date_to:
            query["created_at"] = {}
            if date_from:
                query["created_at"]["$gte"] = date_from
            if date_to:
                query["created_at"]["$lte"] = date_to

        cursor = (
            cls._collection()
            .find(query)
            .sort("created_at", -1)
            .skip(max(0, skip))
            .limit(limit)
        )
        docs = await cursor.to_list(length=limit)
        for doc in docs:
            doc["id"] = str(doc.pop("_id"))
        return docs
