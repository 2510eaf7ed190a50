"""Batch API endpoints."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Path, Query, UploadFile
from fastapi.responses import Response

from lhamascred.core.dependencies import get_current_user
from lhamascred.core.exceptions import BadRequestException
from lhamascred.activity.service import ActivityService
from lhamascred.batches.dispatcher import BatchDispatcher
from lhamascred.batches.models import (
    BatchCreateRequest,
    BatchEnvelope,
    BatchItemsResponse,
    BatchListResponse,
    BatchStatus,
    Provider,
    StatusMessage,
    V8SubProvider,
    WebhookResponseItem,
)
from lhamascred.batches.report import build_report
from lhamascred.batches.service import BatchService
from lhamascred.batches.spreadsheet import parse_cpf_workbook

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/batches", tags=["Batches"])

DISPATCH_TASK = "lhamascred.worker.tasks.dispatch_batch"
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def get_dispatcher() -> BatchDispatcher:
    return BatchDispatcher()


def _get_celery():
    try:
        from lhamascred.worker.celery_app import celery_app, DEFAULT_QUEUE

        return celery_app, DEFAULT_QUEUE
    except Exception as e:
        raise BadRequestException("Batch dispatch is not available (Celery not configured).") from e


async def _enqueue_dispatch(batch_id: str) -> None:
    """Hand the batch to the worker; a batch that cannot be enqueued is failed."""
    try:
        celery_app, default_queue = _get_celery()
        celery_app.send_task(DISPATCH_TASK, args=[batch_id], queue=default_queue)
    except Exception as e:
        logger.error(f"Failed to enqueue dispatch of {batch_id}: {type(e).__name__}: {e}")
        await BatchService.fail_batch(batch_id, f"Failed to enqueue batch: {type(e).__name__}")
        raise BadRequestException("Failed to enqueue batch. Check worker/broker configuration.")


async def _submit_and_enqueue(dispatcher: BatchDispatcher, user: dict, **kwargs) -> BatchEnvelope:
    batch = await dispatcher.submit(user=user, **kwargs)
    await _enqueue_dispatch(batch["batch_id"])
    return BatchEnvelope(
        message=f"Batch with {batch['total_cpfs']} CPFs created and queued for processing.",
        batch=BatchService.to_response(batch),
    )


@router.post("", response_model=BatchEnvelope, status_code=201)
async def create_batch(
    body: BatchCreateRequest,
    current_user: dict = Depends(get_current_user),
    dispatcher: BatchDispatcher = Depends(get_dispatcher),
):
    """
    Create a batch from a JSON list of CPFs.

    The batch starts `queued`; the worker sends the provider requests and
    webhook callbacks (or synchronous answers) fill in the results.
    """
    return await _submit_and_enqueue(
        dispatcher,
        current_user,
        provider=body.provider,
        records=body.cpfs,
        file_name=body.file_name,
        v8_provider=body.v8_provider,
    )


@router.post("/upload", response_model=BatchEnvelope, status_code=201)
async def upload_batch(
    file: UploadFile = File(...),
    provider: Provider = Form(...),
    v8_provider: Optional[V8SubProvider] = Form(None),
    current_user: dict = Depends(get_current_user),
    dispatcher: BatchDispatcher = Depends(get_dispatcher),
):
    """Create a batch from an uploaded .xlsx spreadsheet with a `cpf` column."""
    if not (file.filename or "").lower().endswith(".xlsx"):
        raise BadRequestException("Only .xlsx spreadsheets are accepted.")

    records = parse_cpf_workbook(await file.read())
    return await _submit_and_enqueue(
        dispatcher,
        current_user,
        provider=provider,
        records=records,
        file_name=file.filename,
        v8_provider=v8_provider,
    )


@router.get("", response_model=BatchListResponse)
async def list_batches(
    status: Optional[BatchStatus] = Query(None),
    provider: Optional[Provider] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    current_user: dict = Depends(get_current_user),
):
    """Batches visible to the caller, newest first."""
    docs = await BatchService.list_for_user(
        current_user, status=status, provider=provider, skip=skip, limit=limit
    )
    batches = [BatchService.to_response(d) for d in docs]
    return BatchListResponse(batches=batches, count=len(batches))


@router.get("/{batch_id}", response_model=BatchEnvelope)
async def get_batch(
    batch_id: str = Path(..., description="Batch ID"),
    current_user: dict = Depends(get_current_user),
):
    doc = await BatchService.get_for_user(batch_id, current_user)
    return BatchEnvelope(message=doc.get("message"), batch=BatchService.to_response(doc))


@router.get("/{batch_id}/items", response_model=BatchItemsResponse)
async def get_batch_items(
    batch_id: str = Path(..., description="Batch ID"),
    current_user: dict = Depends(get_current_user),
):
    """Per-CPF results of a batch."""
    await BatchService.get_for_user(batch_id, current_user)
    items = await BatchService.list_items(batch_id)
    return BatchItemsResponse(
        batch_id=batch_id,
        items=[WebhookResponseItem(**{k: v for k, v in i.items() if k != "_id"}) for i in items],
    )


@router.delete("/{batch_id}", response_model=StatusMessage)
async def delete_batch(
    batch_id: str = Path(..., description="Batch ID"),
    current_user: dict = Depends(get_current_user),
):
    await BatchService.delete_for_user(batch_id, current_user)
    return StatusMessage(message="Batch deleted.")


@router.post("/{batch_id}/reprocess", response_model=BatchEnvelope)
async def reprocess_batch(
    batch_id: str = Path(..., description="Batch ID"),
    current_user: dict = Depends(get_current_user),
    dispatcher: BatchDispatcher = Depends(get_dispatcher),
):
    """
    Resubmit the CPFs of a batch that have no successful result.

    Returns the new batch, or no batch when every CPF already succeeded (the
    original is then closed as completed).
    A batch still queued or processing answers 409.
    """
    new_batch, message = await dispatcher.reprocess(batch_id, current_user)
    if new_batch is None:
        return BatchEnvelope(message=message)

    await _enqueue_dispatch(new_batch["batch_id"])
    return BatchEnvelope(message=message, batch=BatchService.to_response(new_batch))


@router.get("/{batch_id}/report")
async def download_report(
    batch_id: str = Path(..., description="Batch ID"),
    current_user: dict = Depends(get_current_user),
):
    """Excel file with one row per CPF (one per offer for C6)."""
    doc = await BatchService.get_for_user(batch_id, current_user)
    items = await BatchService.list_items(batch_id)
    file_name, content = build_report(doc, items)

    await ActivityService.log(
        user_id=current_user["id"],
        user_email=current_user["email"],
        action="Batch report download",
        provider=doc["provider"],
        details=f"File: {file_name}",
    )
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{file_name}"'},
    )
