"""Classification of provider payloads."""

from dataclasses import dataclass
from typing import Any, Dict, Literal

ItemStatus = Literal["received", "success", "error"]

# Checked in order; an error signal wins over a success signal.
ERROR_FIELDS = ("errorMessage", "error", "message")
SUCCESS_FIELDS = ("balance", "offers", "authorizationLink", "authorizationStatus")


@dataclass(frozen=True)
class Classification:
    status: ItemStatus
    message: str

    @property
    def settled(self) -> bool:
        return self.status != "received"


def _present(value: Any) -> bool:
    if value is None or value is False:
        return False
    if isinstance(value, str) and not value.strip():
        return False
    return True


def classify(payload: Dict[str, Any]) -> Classification:
    """
    Error field -> error, non-null success field -> success, anything else
    stays `received` (an intermediate or unrecognized answer).
    """
    for field in ERROR_FIELDS:
        value = payload.get(field)
        if _present(value):
            if isinstance(value, dict):
                value = value.get("message") or value
            return Classification("error", str(value)[:500])

    for field in SUCCESS_FIELDS:
        if payload.get(field) is not None:
            return Classification("success", "Success")

    return Classification("received", "Payload received without a final result.")
