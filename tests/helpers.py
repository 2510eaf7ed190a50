"""Shared helpers for tests that drive batches end to end."""

import json
from typing import Dict, List

from lhamascred.core.database import Database


async def create_batch(user: Dict, cpfs: List[str], provider: str = "v8", v8_provider: str = "qi") -> Dict:
    """Registered batch plus a cpf -> correlation id map for its items."""
    from lhamascred.batches.dispatcher import BatchDispatcher
    from lhamascred.batches.models import CpfRecord
    from lhamascred.batches.service import BatchService

    batch = await BatchDispatcher().submit(
        user=user,
        provider=provider,
        records=[CpfRecord(cpf=c) for c in cpfs],
        file_name="clientes.xlsx",
        v8_provider=v8_provider if provider == "v8" else None,
    )
    items = await BatchService.list_items(batch["batch_id"])
    batch["ids"] = {i["cpf"]: i["response_id"] for i in items}
    return batch


async def get_batch(batch_id: str) -> Dict:
    return await Database.get_collection("batches").find_one({"batch_id": batch_id})


async def get_item(response_id: str) -> Dict:
    return await Database.get_collection("webhook_responses").find_one({"response_id": response_id})


def v8_transport(rejected_cpfs=()) -> "httpx.MockTransport":
    """V8 stub: issues a token and accepts every balance request except `rejected_cpfs`."""
    import httpx

    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.path == "/oauth/token":
            return httpx.Response(200, json={"access_token": "v8-token", "expires_in": 3600})
        if request.url.path == "/fgts/balance":
            body = json.loads(request.content)
            if body["documentNumber"] in rejected_cpfs:
                return httpx.Response(422, json={"message": "CPF invalido"})
            return httpx.Response(201, json={"id": body["balanceId"]})
        return httpx.Response(404)

    transport = httpx.MockTransport(handler)
    transport.requests = requests
    return transport


async def dispatch_v8(user: Dict, cpfs: List[str], rejected_cpfs=()) -> Dict:
    from lhamascred.batches.dispatcher import BatchDispatcher

    batch = await create_batch(user, cpfs, provider="v8")
    transport = v8_transport(rejected_cpfs)
    batch["stats"] = await BatchDispatcher(transport=transport).dispatch(batch["batch_id"])
    batch["transport"] = transport
    return batch


async def expire_batch(batch_id: str) -> None:
    """Put a batch in the state the stale sweep leaves it in."""
    from datetime import datetime

    await Database.get_collection("batches").update_one(
        {"batch_id": batch_id},
        {"$set": {"status": "error", "expired_at": datetime.utcnow()}, "$inc": {"version": 1}},
    )
