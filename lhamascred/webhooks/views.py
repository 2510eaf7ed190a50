"""Provider webhook endpoint (balance callbacks)."""

import hmac
import json
import logging

from fastapi import APIRouter, Header, Request
from fastapi.responses import JSONResponse

from lhamascred.core.config import get_settings
from lhamascred.batches.service import BatchTransactionConflict
from lhamascred.webhooks.service import MissingCorrelationId, WebhookService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhook", tags=["Webhooks"])

PROBE_MESSAGE = "Webhook test successful. Endpoint is active."


def _envelope(status: str, message: str, status_code: int = 200, **extra) -> JSONResponse:
    return JSONResponse({"status": status, "message": message, **extra}, status_code=status_code)


def _secret_ok(provided: str) -> bool:
    expected = (get_settings().WEBHOOK_SECRET or "").strip()
    if not expected:
        return True
    return hmac.compare_digest(expected, (provided or "").strip())


@router.get("/balance")
async def balance_webhook_liveness():
    """Liveness probe used by providers when registering the URL."""
    return {"status": "success", "message": PROBE_MESSAGE}


@router.post("/balance")
async def balance_webhook(
    request: Request,
    x_webhook_token: str = Header(default="", alias="X-Webhook-Token"),
):
    """
    Receive an asynchronous provider answer.

    - Empty body or `{}`: validation probe, 200 without side effects.
    - No `balanceId`: 400.
    - Unknown `balanceId`: payload stored as an error item, 200.
    - Otherwise the item is updated and its batch progress advanced; 200 means
      "received and stored", not "the query succeeded".
    """
    if not _secret_ok(x_webhook_token):
        logger.warning("Webhook rejected: bad X-Webhook-Token")
        return _envelope("error", "Invalid webhook token.", 403)

    raw = await request.body()
    if not raw.strip():
        logger.info("Webhook validation probe (empty body)")
        return _envelope("success", PROBE_MESSAGE)

    try:
        payload = json.loads(raw)
    except ValueError:
        logger.error(f"Webhook body is not valid JSON ({len(raw)} bytes)")
        return _envelope("error", "Internal error processing webhook.", 500)

    if payload == {}:
        logger.info("Webhook validation probe (empty object)")
        return _envelope("success", PROBE_MESSAGE)
    if not isinstance(payload, dict):
        return _envelope("error", "Webhook body must be a JSON object.", 400)

    try:
        ack = await WebhookService.handle_callback(payload)
    except MissingCorrelationId as e:
        logger.warning(f"Webhook rejected: {e}")
        return _envelope("error", str(e), 400)
    except BatchTransactionConflict:
        # The item is stored; a provider retry replays the count safely.
        return _envelope("error", "Internal error processing webhook.", 500)
    except Exception:
        logger.exception("Unexpected error processing webhook")
        return _envelope("error", "Internal error processing webhook.", 500)

    return _envelope("success", ack.message)
