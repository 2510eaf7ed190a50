# tests/test_dispatcher.py
import json

import httpx
import pytest

from lhamascred.core.exceptions import BadRequestException, ConflictException
from lhamascred.batches.dispatcher import BatchDispatcher
from lhamascred.batches.models import CpfRecord
from lhamascred.batches.service import BatchService
from lhamascred.webhooks.service import WebhookService
from helpers import create_batch, dispatch_v8, expire_batch, get_batch, get_item, v8_transport

pytestmark = pytest.mark.asyncio


def facta_transport(balances):
    """Facta stub answering synchronously from a cpf -> response body map."""

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/gera-token":
            assert request.headers["Authorization"].startswith("Basic ")
            return httpx.Response(200, json={"erro": False, "token": "facta-token"})
        if request.url.path == "/fgts/saldo":
            answer = balances[request.url.params["cpf"]]
            if isinstance(answer, int):
                return httpx.Response(answer, text="upstream down")
            return httpx.Response(200, json=answer)
        return httpx.Response(404)

    return httpx.MockTransport(handler)


def c6_transport(statuses, offers=None, link="https://c6.test/consent/abc"):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/auth/token":
            return httpx.Response(200, json={"access_token": "c6-token"})
        body = json.loads(request.content)
        if request.url.path.endswith("/authorization/status"):
            return httpx.Response(200, json={"status": statuses[body["cpf"]]})
        if request.url.path.endswith("/offers"):
            return httpx.Response(200, json={"ofertas": (offers or {}).get(body["cpf"], [])})
        if request.url.path.endswith("/authorization"):
            return httpx.Response(200, json={"link": link})
        return httpx.Response(404)

    return httpx.MockTransport(handler)


async def test_v8_requests_carry_correlation_id_and_webhook(user):
    batch = await dispatch_v8(user, ["11111111111"])
    sent = [r for r in batch["transport"].requests if r.url.path == "/fgts/balance"]

    assert len(sent) == 1
    body = json.loads(sent[0].content)
    assert body["balanceId"] == batch["ids"]["11111111111"]
    assert body["provider"] == "QI_TECH"
    assert body["webhookUrl"] == "https://testserver/api/webhook/balance"
    assert sent[0].headers["Authorization"] == "Bearer v8-token"

    item = await get_item(body["balanceId"])
    assert item["status"] == "received"
    assert item["sent_at"] is not None


async def test_v8_rejected_item_is_counted_as_error(user):
    batch = await dispatch_v8(user, ["11111111111", "22222222222"], rejected_cpfs={"22222222222"})

    assert batch["stats"] == {"sent": 1, "completed": 0, "failed": 1}
    failed = await get_item(batch["ids"]["22222222222"])
    assert failed["status"] == "error"
    assert "CPF invalido" in failed["message"]

    doc = await get_batch(batch["batch_id"])
    assert (doc["processed_cpfs"], doc["error_count"], doc["status"]) == (1, 1, "processing")
    assert "1 request(s) sent" in doc["message"]


async def test_auth_failure_closes_the_batch(user):
    batch = await create_batch(user, ["11111111111", "22222222222"])

    def handler(request):
        return httpx.Response(401, json={"error_description": "bad credentials"})

    stats = await BatchDispatcher(transport=httpx.MockTransport(handler)).dispatch(batch["batch_id"])

    assert stats == {"sent": 0, "completed": 0, "failed": 0}
    doc = await get_batch(batch["batch_id"])
    assert (doc["status"], doc["processed_cpfs"], doc["error_count"]) == ("error", 2, 2)
    assert "bad credentials" in doc["message"]
    for rid in batch["ids"].values():
        assert (await get_item(rid))["status"] == "error"


async def test_redelivered_dispatch_does_nothing(user):
    batch = await dispatch_v8(user, ["11111111111"])
    transport = v8_transport()

    stats = await BatchDispatcher(transport=transport).dispatch(batch["batch_id"])

    assert stats == {"sent": 0, "completed": 0, "failed": 0}
    assert transport.requests == []


async def test_facta_answers_are_recorded_immediately(user):
    batch = await create_batch(user, ["11111111111", "22222222222", "33333333333"], provider="facta")
    transport = facta_transport({
        "11111111111": {"erro": False, "saldo_total": "1500.75", "data_saldo": "01/05/2024",
                        "dataRepasse_1": "01/06/2024", "valor_1": "300.10"},
        "22222222222": {"erro": True, "mensagem": "Cliente sem autorizacao"},
        "33333333333": 503,
    })

    stats = await BatchDispatcher(transport=transport).dispatch(batch["batch_id"])

    assert stats == {"sent": 0, "completed": 2, "failed": 1}
    ok = await get_item(batch["ids"]["11111111111"])
    assert ok["status"] == "success"
    assert ok["response_body"]["balance"] == "1500.75"
    no_auth = await get_item(batch["ids"]["22222222222"])
    assert (no_auth["status"], no_auth["message"]) == ("error", "Cliente sem autorizacao")

    doc = await get_batch(batch["batch_id"])
    assert (doc["status"], doc["processed_cpfs"]) == ("completed", 3)
    assert (doc["success_count"], doc["error_count"]) == (1, 2)


async def test_c6_authorization_flows(user):
    records = [
        CpfRecord(cpf="11111111111"),
        CpfRecord(cpf="22222222222", nome="Joao", data_nascimento="1990-01-01",
                  telefone_ddd="11", telefone_numero="999990000"),
        CpfRecord(cpf="33333333333"),
    ]
    batch = await BatchDispatcher().submit(user=user, provider="c6", records=records, file_name="clt.xlsx")
    assert batch["type"] == "clt"
    ids = {i["cpf"]: i["response_id"] for i in await BatchService.list_items(batch["batch_id"])}

    transport = c6_transport(
        {"11111111111": "AUTORIZADO", "22222222222": "NAO_AUTORIZADO", "33333333333": "NAO_AUTORIZADO"},
        offers={"11111111111": [{"id_oferta": "of-1", "valor_financiado": 5000}]},
    )
    await BatchDispatcher(transport=transport).dispatch(batch["batch_id"])

    authorized = await get_item(ids["11111111111"])
    assert authorized["status"] == "success"
    assert authorized["response_body"]["offers"][0]["id_oferta"] == "of-1"

    linked = await get_item(ids["22222222222"])
    assert linked["status"] == "success"
    assert linked["response_body"]["authorizationLink"] == "https://c6.test/consent/abc"

    missing_data = await get_item(ids["33333333333"])
    assert missing_data["status"] == "error"

    doc = await get_batch(batch["batch_id"])
    assert (doc["status"], doc["success_count"], doc["error_count"]) == ("completed", 2, 1)


async def test_submit_rejects_invalid_cpfs(user):
    with pytest.raises(BadRequestException) as exc:
        await create_batch(user, ["11111111111", "not-a-cpf"])
    assert exc.value.status_code == 400


async def test_submit_requires_v8_sub_provider(user):
    with pytest.raises(BadRequestException):
        await create_batch(user, ["11111111111"], provider="v8", v8_provider=None)


async def test_submit_requires_configured_credentials(make_user):
    newcomer = await make_user("novo@example.com", credentials={"facta_username": "only-user"})
    with pytest.raises(BadRequestException) as exc:
        await create_batch(newcomer, ["11111111111"], provider="facta")
    assert "FACTA" in exc.value.detail


async def test_answer_that_cannot_be_recorded_does_not_abort_dispatch(user, monkeypatch):
    batch = await create_batch(user, ["11111111111", "22222222222", "33333333333"], provider="facta")
    broken = batch["ids"]["22222222222"]
    record = WebhookService.record_provider_answer

    async def flaky_record(response_id, payload):
        if response_id == broken:
            raise RuntimeError("write failed")
        return await record(response_id, payload)

    monkeypatch.setattr(WebhookService, "record_provider_answer", flaky_record)
    transport = facta_transport({cpf: {"erro": False, "saldo_total": "10.00"} for cpf in batch["ids"]})

    stats = await BatchDispatcher(transport=transport).dispatch(batch["batch_id"])

    assert stats == {"sent": 0, "completed": 2, "failed": 1}
    assert (await get_item(batch["ids"]["11111111111"]))["status"] == "success"
    assert (await get_item(batch["ids"]["33333333333"]))["status"] == "success"
    assert (await get_item(broken))["status"] == "received"
    doc = await get_batch(batch["batch_id"])
    assert (doc["status"], doc["processed_cpfs"], doc["success_count"]) == ("processing", 2, 2)


async def test_unrecorded_answer_is_retried_after_the_sends(user, monkeypatch):
    batch = await create_batch(user, ["11111111111", "22222222222"], provider="facta")
    broken = batch["ids"]["22222222222"]
    record = WebhookService.record_provider_answer
    failures = []

    async def record_failing_once(response_id, payload):
        if response_id == broken and not failures:
            failures.append(response_id)
            raise RuntimeError("write failed")
        return await record(response_id, payload)

    monkeypatch.setattr(WebhookService, "record_provider_answer", record_failing_once)
    transport = facta_transport({cpf: {"erro": False, "saldo_total": "10.00"} for cpf in batch["ids"]})

    await BatchDispatcher(transport=transport).dispatch(batch["batch_id"])

    assert failures == [broken]
    assert (await get_item(broken))["status"] == "success"
    doc = await get_batch(batch["batch_id"])
    assert (doc["status"], doc["processed_cpfs"], doc["success_count"]) == ("completed", 2, 2)


async def test_reprocess_resubmits_only_unsuccessful_cpfs(user):
    batch = await dispatch_v8(user, ["11111111111", "22222222222", "33333333333"])
    await WebhookService.handle_callback({"balanceId": batch["ids"]["11111111111"], "balance": 10})
    await WebhookService.handle_callback({"balanceId": batch["ids"]["22222222222"], "errorMessage": "timeout"})
    await expire_batch(batch["batch_id"])

    new_batch, message = await BatchDispatcher().reprocess(batch["batch_id"], user)

    assert new_batch["cpfs"] == ["22222222222", "33333333333"]
    assert new_batch["status"] == "queued"
    assert new_batch["v8_provider"] == "qi"
    assert new_batch["file_name"] == "clientes (Reprocessado).xlsx"
    assert "2 CPFs" in message
    assert (await get_batch(batch["batch_id"]))["replaced_by"] == new_batch["batch_id"]


async def test_reprocess_rejects_a_batch_still_in_flight(user):
    batch = await dispatch_v8(user, ["11111111111", "22222222222"])

    with pytest.raises(ConflictException) as exc:
        await BatchDispatcher().reprocess(batch["batch_id"], user)

    assert exc.value.status_code == 409
    doc = await get_batch(batch["batch_id"])
    assert doc["status"] == "processing"
    assert doc.get("replaced_by") is None


async def test_reprocess_closes_a_fully_successful_batch(user):
    batch = await dispatch_v8(user, ["11111111111"])
    await WebhookService.handle_callback({"balanceId": batch["ids"]["11111111111"], "balance": 10})

    new_batch, _ = await BatchDispatcher().reprocess(batch["batch_id"], user)

    assert new_batch is None
    doc = await get_batch(batch["batch_id"])
    assert doc["status"] == "completed"
    assert doc["processed_cpfs"] == doc["total_cpfs"] == 1


async def test_reprocess_checks_each_item_of_a_repeated_cpf(user):
    batch = await dispatch_v8(user, ["11111111111", "11111111111"])
    first, second = [item["response_id"] for item in await BatchService.list_items(batch["batch_id"])]
    await WebhookService.handle_callback({"balanceId": first, "balance": 10})
    await expire_batch(batch["batch_id"])

    new_batch, _ = await BatchDispatcher().reprocess(batch["batch_id"], user)

    assert new_batch is not None
    assert new_batch["cpfs"] == ["11111111111"]
    assert (await get_item(second))["status"] == "received"
    doc = await get_batch(batch["batch_id"])
    assert (doc["status"], doc["processed_cpfs"]) == ("error", 1)


async def test_reprocess_close_accounts_for_every_cpf(user, db):
    batch = await dispatch_v8(user, ["11111111111", "11111111111", "22222222222"])
    items = await BatchService.list_items(batch["batch_id"])
    await WebhookService.handle_callback({"balanceId": items[0]["response_id"], "balance": 10})
    # Answers stored on the items but never counted towards the batch.
    await db["webhook_responses"].update_many(
        {"response_id": {"$in": [items[1]["response_id"], items[2]["response_id"]]}},
        {"$set": {"status": "success"}},
    )
    await expire_batch(batch["batch_id"])

    new_batch, message = await BatchDispatcher().reprocess(batch["batch_id"], user)

    assert new_batch is None
    assert "Batch closed" in message
    doc = await get_batch(batch["batch_id"])
    assert doc["status"] == "completed"
    assert (doc["processed_cpfs"], doc["success_count"], doc["error_count"]) == (3, 3, 0)
    assert sorted(doc["counted_items"]) == sorted(i["response_id"] for i in items)
    assert doc["completed_at"] is not None

    # Nothing is counted twice afterwards.
    await WebhookService.handle_callback({"balanceId": items[2]["response_id"], "balance": 5})
    assert (await get_batch(batch["batch_id"]))["processed_cpfs"] == 3
