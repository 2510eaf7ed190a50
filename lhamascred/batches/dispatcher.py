"""
Provider dispatcher.

submit() registers a batch and one placeholder item per CPF; dispatch() sends
the items to the provider (normally from the Celery worker).
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx

from lhamascred.activity.service import ActivityService
from lhamascred.auth.service import AuthService, configured_providers
from lhamascred.core.config import get_settings
from lhamascred.core.exceptions import BadRequestException, ConflictException, NotFoundException
from lhamascred.batches.cpf import normalize_cpf
from lhamascred.batches.models import CpfRecord
from lhamascred.batches.service import BatchService
from lhamascred.providers import PROVIDERS, ProviderError, ProviderItem
from lhamascred.webhooks.service import WebhookService

settings = get_settings()
logger = logging.getLogger(__name__)

PROVIDER_LABELS = {"v8": "V8DIGITAL", "facta": "FACTA", "c6": "C6"}

IN_FLIGHT_STATUSES = ("queued", "processing")


def new_batch_id(batch_type: str, provider: str) -> str:
    return f"batch-{batch_type}-{provider}-{int(time.time() * 1000)}-{secrets.token_hex(3)}"


def new_correlation_id() -> str:
    return uuid.uuid4().hex


def normalize_records(records: Sequence[CpfRecord]) -> Tuple[List[ProviderItem], List[str]]:
    """Items with fresh correlation ids, plus the raw values that are not CPFs."""
    items: List[ProviderItem] = []
    invalid: List[str] = []
    for record in records:
        cpf = normalize_cpf(record.cpf)
        if not cpf:
            invalid.append(str(record.cpf))
            continue
        items.append(ProviderItem(
            response_id=new_correlation_id(),
            cpf=cpf,
            name=(record.name or "").strip() or None,
            birth_date=(record.birth_date or "").strip() or None,
            phone_ddd=(record.phone_ddd or "").strip() or None,
            phone_number=(record.phone_number or "").strip() or None,
        ))
    return items, invalid


class BatchDispatcher:
    """
    Creates batches and sends their items to the selected provider.

    `transport` is handed to httpx so tests can stub provider HTTP.
    """

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.transport = transport

    # ==================== Submission ====================

    async def submit(
        self,
        *,
        user: dict,
        provider: str,
        records: Sequence[CpfRecord],
        file_name: str,
        v8_provider: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Validate the CPFs and register a queued batch with its items."""
        client_cls = PROVIDERS.get(provider)
        if client_cls is None:
            raise BadRequestException(f"Unsupported provider: {provider}")
        if provider == "v8" and not v8_provider:
            raise BadRequestException("V8 batches require v8_provider (qi, cartos or bms).")

        items, invalid = normalize_records(records)
        if invalid:
            preview = ", ".join(invalid[:5])
            raise BadRequestException(f"{len(invalid)} invalid CPF(s): {preview}")
        if not items:
            raise BadRequestException("The batch has no CPFs.")
        if len(items) > settings.BATCH_MAX_CPFS:
            raise BadRequestException(f"A batch can have at most {settings.BATCH_MAX_CPFS} CPFs.")

        credentials = await AuthService.get_provider_credentials(user["id"])
        if provider not in configured_providers(credentials):
            raise BadRequestException(
                f"{PROVIDER_LABELS[provider]} credentials are not configured. "
                "Set them in your account settings before submitting a batch."
            )

        now = datetime.utcnow()
        batch_id = new_batch_id(client_cls.batch_type, provider)
        doc = {
            "batch_id": batch_id,
            "type": client_cls.batch_type,
            "provider": provider,
            "v8_provider": v8_provider if provider == "v8" else None,
            "file_name": file_name,
            "status": "queued",
            "message": "Waiting to be dispatched.",
            "cpfs": [item.cpf for item in items],
            "cpfs_data": [
                {
                    "cpf": item.cpf,
                    "name": item.name,
                    "birth_date": item.birth_date,
                    "phone_ddd": item.phone_ddd,
                    "phone_number": item.phone_number,
                }
                for item in items
            ],
            "total_cpfs": len(items),
            "user_id": user["id"],
            "user_email": user["email"],
            "created_at": now,
            "updated_at": now,
            "completed_at": None,
        }

        batch = await BatchService.create(doc)
        await WebhookService.create_placeholders(batch_id, provider, items)

        await ActivityService.log(
            user_id=user["id"],
            user_email=user["email"],
            action=f"Batch {client_cls.batch_type.upper()} query (spreadsheet)",
            provider=provider,
            details=f"File: {file_name} ({len(items)} CPFs)",
        )
        logger.info(f"Batch {batch_id} created by {user['email']}: {len(items)} CPFs via {provider}")
        return batch

    # ==================== Dispatch ====================

    async def dispatch(self, batch_id: str) -> Dict[str, int]:
        """
        Send every pending item of a queued batch.

        Safe under task redelivery: only a `queued` batch is dispatched.
        Per-item failures are recorded on the item and counted as errors;
        failures before anything is sent close the whole batch as `error`.
        """
        stats = {"sent": 0, "completed": 0, "failed": 0}

        batch = await BatchService.mark_processing(batch_id, "Sending requests to the provider...")
        if batch is None:
            existing = await BatchService.get_batch_doc(batch_id)
            logger.info(f"Batch {batch_id} is {existing.get('status')}; dispatch skipped")
            return stats

        provider_name = batch["provider"]
        try:
            credentials = await AuthService.get_provider_credentials(batch["user_id"])
        except NotFoundException:
            await BatchService.fail_batch(batch_id, "Batch owner no longer exists.")
            return stats

        items = await WebhookService.pending_items(batch_id)
        timeout = httpx.Timeout(settings.PROVIDER_TIMEOUT_SECONDS)

        async with httpx.AsyncClient(timeout=timeout, transport=self.transport) as client:
            provider = PROVIDERS[provider_name](credentials, client, v8_provider=batch.get("v8_provider"))
            try:
                token = await provider.authenticate()
            except ProviderError as e:
                await BatchService.fail_batch(batch_id, e.message)
                return stats

            semaphore = asyncio.Semaphore(max(1, int(settings.DISPATCH_CONCURRENCY)))
            unrecorded: List[Tuple[ProviderItem, Dict[str, Any]]] = []

            async def record(item: ProviderItem, payload: Dict[str, Any]) -> bool:
                try:
                    await WebhookService.record_provider_answer(item.response_id, payload)
                except Exception:
                    logger.exception(f"[Batch {batch_id}] Could not record the answer for item {item.response_id}")
                    unrecorded.append((item, payload))
                    return False
                return True

            async def send(item: ProviderItem) -> str:
                async with semaphore:
                    try:
                        submission = await provider.submit(token, item)
                    except ProviderError as e:
                        logger.warning(f"[Batch {batch_id}] CPF item {item.response_id} not sent: {e.message}")
                        await record(item, {"errorMessage": e.message})
                        return "failed"
                    except Exception as e:
                        logger.exception(f"[Batch {batch_id}] Unexpected error sending item {item.response_id}")
                        await record(item, {"errorMessage": f"Unexpected error: {type(e).__name__}"})
                        return "failed"

                    if submission.deferred:
                        try:
                            await WebhookService.mark_sent(item.response_id)
                        except Exception:
                            logger.exception(f"[Batch {batch_id}] Could not mark item {item.response_id} as sent")
                        return "sent"
                    if not await record(item, submission.payload or {}):
                        return "failed"
                    return "completed"

            for outcome in await asyncio.gather(*(send(item) for item in items)):
                stats[outcome] += 1

        # One more pass once the concurrent sends no longer compete for the batch.
        for item, payload in unrecorded:
            try:
                await WebhookService.record_provider_answer(item.response_id, payload)
            except Exception:
                logger.exception(
                    f"[Batch {batch_id}] Answer for item {item.response_id} still unrecorded; "
                    "it stays pending until the stale sweep"
                )

        if stats["sent"]:
            await BatchService.set_message(
                batch_id,
                f"{stats['sent']} request(s) sent. Waiting for provider callbacks.",
            )
        logger.info(f"[Batch {batch_id}] dispatch finished: {stats}")
        return stats

    # ==================== Reprocessing ====================

    async def reprocess(self, batch_id: str, user: dict) -> Tuple[Optional[Dict[str, Any]], str]:
        """
        New batch for the items of `batch_id` without a successful answer.

        Returns (new batch or None, message). When nothing is left the
        original batch is closed as completed instead. Only batches that are
        no longer in flight (finished, failed or expired) can be reprocessed.
        """
        original = await BatchService.get_for_user(batch_id, user)
        if original.get("status") in IN_FLIGHT_STATUSES:
            raise ConflictException(
                "Batch is still being processed; reprocess it once it finishes or expires."
            )

        items = await BatchService.list_items(batch_id)
        if items:
            pending = [
                {**(item.get("request") or {}), "cpf": item["cpf"]}
                for item in items
                if item.get("status") != "success"
            ]
        else:
            pending = original.get("cpfs_data") or [{"cpf": cpf} for cpf in original.get("cpfs") or []]

        if not pending:
            await BatchService.close_as_completed(
                batch_id, "Closed after reprocessing check: no CPF left without a result."
            )
            return None, "Every CPF already had a successful result. Batch closed."

        owner = {"id": original["user_id"], "email": original["user_email"]}
        file_name = original.get("file_name") or "lote.xlsx"
        stem = file_name[:-5] if file_name.lower().endswith(".xlsx") else file_name

        new_batch = await self.submit(
            user=owner,
            provider=original["provider"],
            records=[CpfRecord(**row) for row in pending],
            file_name=f"{stem} (Reprocessado).xlsx",
            v8_provider=original.get("v8_provider"),
        )
        await BatchService.mark_replaced(batch_id, new_batch["batch_id"])
        await ActivityService.log(
            user_id=user["id"],
            user_email=user["email"],
            action="Batch reprocessing",
            provider=original["provider"],
            details=f"Reprocessing {original.get('file_name')} (ID: {batch_id}) as {new_batch['batch_id']}",
        )
        return new_batch, f"New reprocessing batch created with {len(pending)} CPFs."
