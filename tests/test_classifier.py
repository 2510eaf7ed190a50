# tests/test_classifier.py
from lhamascred.webhooks.classifier import classify
from lhamascred.webhooks.service import extract_correlation_id


def test_balance_is_success():
    result = classify({"balanceId": "x1", "balance": 500})
    assert result.status == "success"
    assert result.settled


def test_zero_balance_is_still_success():
    assert classify({"balance": 0}).status == "success"


def test_error_message_is_error():
    result = classify({"balanceId": "x2", "errorMessage": "timeout"})
    assert result.status == "error"
    assert result.message == "timeout"


def test_error_wins_over_success_fields():
    result = classify({"balance": 100, "error": "CPF sem saldo"})
    assert result.status == "error"
    assert result.message == "CPF sem saldo"


def test_nested_error_object_uses_its_message():
    assert classify({"error": {"code": 42, "message": "bloqueado"}}).message == "bloqueado"


def test_blank_or_false_error_fields_are_ignored():
    assert classify({"error": False, "errorMessage": "  ", "balance": 1}).status == "success"


def test_c6_shapes_are_success():
    assert classify({"authorizationStatus": "AUTORIZADO", "offers": []}).status == "success"
    assert classify({"authorizationLink": "https://c6/link"}).status == "success"


def test_intermediate_payload_stays_received():
    result = classify({"balanceId": "x3", "status": "PENDING"})
    assert result.status == "received"
    assert not result.settled


def test_correlation_id_prefers_balance_id():
    assert extract_correlation_id({"balanceId": " abc ", "id": "zzz"}) == "abc"
    assert extract_correlation_id({"id": 77}) == "77"
    assert extract_correlation_id({"balance": 1}) is None
