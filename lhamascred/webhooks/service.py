"""Webhook receiver: stores provider answers and advances batch progress."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from lhamascred.core.database import Database
from lhamascred.batches.service import BatchService
from lhamascred.providers.base import ProviderItem
from lhamascred.webhooks.classifier import Classification, classify

logger = logging.getLogger(__name__)

# Payload keys that carry the correlation id, in order of preference.
CORRELATION_FIELDS = ("balanceId", "id")

UNKNOWN_ID_MESSAGE = "Unknown correlation id; payload stored for review."
NO_RESULT_MESSAGE = "Provider returned no definitive result."


class MissingCorrelationId(ValueError):
    """Non-empty callback without a correlation id."""


@dataclass(frozen=True)
class WebhookAck:
    message: str
    response_id: Optional[str] = None
    item_status: Optional[str] = None


def _now() -> datetime:
    return datetime.utcnow()


def extract_correlation_id(payload: Dict[str, Any]) -> Optional[str]:
    for field in CORRELATION_FIELDS:
        value = payload.get(field)
        if value is not None and str(value).strip():
            return str(value).strip()
    return None


class WebhookService:
    @staticmethod
    def _collection():
        return Database.get_collection("webhook_responses")

    @classmethod
    async def create_placeholders(
        cls,
        batch_id: str,
        provider: str,
        items: Iterable[ProviderItem],
    ) -> int:
        """One `received` item per CPF, keyed by its correlation id."""
        now = _now()
        docs = [
            {
                "response_id": item.response_id,
                "batch_id": batch_id,
                "provider": provider,
                "cpf": item.cpf,
                "request": {
                    "name": item.name,
                    "birth_date": item.birth_date,
                    "phone_ddd": item.phone_ddd,
                    "phone_number": item.phone_number,
                },
                "response_body": {},
                "status": "received",
                "message": None,
                "created_at": now,
                "updated_at": now,
            }
            for item in items
        ]
        if docs:
            await cls._collection().insert_many(docs)
        return len(docs)

    @classmethod
    async def pending_items(cls, batch_id: str) -> list:
        cursor = cls._collection().find({"batch_id": batch_id, "status": "received"}).sort("created_at", 1)
        docs = await cursor.to_list(length=None)
        return [
            ProviderItem(
                response_id=d["response_id"],
                cpf=d["cpf"],
                name=(d.get("request") or {}).get("name"),
                birth_date=(d.get("request") or {}).get("birth_date"),
                phone_ddd=(d.get("request") or {}).get("phone_ddd"),
                phone_number=(d.get("request") or {}).get("phone_number"),
            )
            for d in docs
        ]

    @classmethod
    async def mark_sent(cls, response_id: str) -> None:
        await cls._collection().update_one(
            {"response_id": response_id},
            {"$set": {"sent_at": _now(), "updated_at": _now()}},
        )

    @classmethod
    async def _store_unknown(cls, response_id: str, payload: Dict[str, Any]) -> None:
        now = _now()
        await cls._collection().update_one(
            {"response_id": response_id},
            {
                "$set": {
                    "response_body": payload,
                    "status": "error",
                    "message": UNKNOWN_ID_MESSAGE,
                    "updated_at": now,
                },
                "$setOnInsert": {
                    "response_id": response_id,
                    "batch_id": None,
                    "created_at": now,
                },
            },
            upsert=True,
        )

    @classmethod
    async def record_result(
        cls,
        item: Dict[str, Any],
        payload: Dict[str, Any],
        *,
        final: bool = False,
    ) -> Classification:
        """
        Store a provider answer on its item and count it if it settles the item.

        `final` is set for synchronous provider answers: nothing else will
        arrive for that item, so an unclassifiable answer becomes an error.
        """
        classification = classify(payload)
        if final and not classification.settled:
            classification = Classification("error", NO_RESULT_MESSAGE)

        update: Dict[str, Any] = {"response_body": payload, "updated_at": _now()}
        # A later intermediate payload never reopens a settled item.
        if classification.settled or item.get("status") == "received":
            update["status"] = classification.status
            update["message"] = classification.message
            outcome = classification.status
        else:
            outcome = item["status"]

        await cls._collection().update_one(
            {"response_id": item["response_id"]},
            {"$set": update},
        )

        # Counting is idempotent per item, so a replay also repairs a count
        # that failed after the item was stored.
        batch_id = item.get("batch_id")
        if batch_id and outcome != "received":
            await BatchService.record_item_outcome(batch_id, item["response_id"], outcome)

        return classification

    @classmethod
    async def record_provider_answer(
        cls,
        response_id: str,
        payload: Dict[str, Any],
    ) -> Classification:
        """Synchronous answer (or dispatch failure) for a dispatched item."""
        item = await cls._collection().find_one({"response_id": response_id})
        if not item:
            logger.warning(f"Dispatched item {response_id} vanished before its answer was stored")
            await cls._store_unknown(response_id, payload)
            return Classification("error", UNKNOWN_ID_MESSAGE)
        return await cls.record_result(item, payload, final=True)

    @classmethod
    async def handle_callback(cls, payload: Dict[str, Any]) -> WebhookAck:
        """Process one non-empty provider callback."""
        response_id = extract_correlation_id(payload)
        if not response_id:
            raise MissingCorrelationId("Callback body has no correlation id (balanceId).")

        item = await cls._collection().find_one({"response_id": response_id})
        if not item:
            logger.warning(f"Webhook for unknown correlation id {response_id}; storing as error")
            await cls._store_unknown(response_id, payload)
            return WebhookAck(
                message="Webhook received; unknown id stored for review.",
                response_id=response_id,
                item_status="error",
            )

        classification = await cls.record_result(item, payload)
        logger.info(
            f"Webhook {response_id} (batch {item.get('batch_id') or '-'}) classified as {classification.status}"
        )
        return WebhookAck(
            message="Webhook received and processed successfully.",
            response_id=response_id,
            item_status=classification.status,
        )
