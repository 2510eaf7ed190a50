"""Shared pieces for the credit-bureau provider clients."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from lhamascred.core.config import get_settings

logger = logging.getLogger(__name__)

# Fields a user must fill in (per provider) before submitting batches.
PROVIDER_CREDENTIAL_FIELDS: Dict[str, tuple] = {
    "v8": ("v8_username", "v8_password", "v8_audience", "v8_client_id"),
    "facta": ("facta_username", "facta_password"),
    "c6": ("c6_username", "c6_password"),
}


class ProviderError(Exception):
    """A provider call failed (network, auth or a rejected request)."""

    def __init__(self, message: str, *, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


@dataclass(frozen=True)
class ProviderItem:
    """One CPF to query, with the correlation id it was registered under."""

    response_id: str
    cpf: str
    name: Optional[str] = None
    birth_date: Optional[str] = None
    phone_ddd: Optional[str] = None
    phone_number: Optional[str] = None


@dataclass(frozen=True)
class Submission:
    """
    Outcome of sending one item.

    deferred=True means the provider accepted the request and will answer
    through the balance webhook; otherwise payload holds the final answer.
    """

    deferred: bool
    payload: Optional[Dict[str, Any]] = None

    @classmethod
    def accepted(cls) -> "Submission":
        return cls(deferred=True)

    @classmethod
    def completed(cls, payload: Dict[str, Any]) -> "Submission":
        return cls(deferred=False, payload=payload)


class ProviderClient:
    """
    Base class for provider clients.

    Subclasses implement authenticate() and submit(). One client instance is
    used for a single dispatch run and shares the caller's httpx client.
    """

    name: str = ""
    batch_type: str = ""

    def __init__(self, credentials: Dict[str, str], client: httpx.AsyncClient, **options: Any):
        self.credentials = credentials or {}
        self.client = client
        self.options = options
        self.settings = get_settings()

    def missing_credentials(self) -> List[str]:
        return [
            field
            for field in PROVIDER_CREDENTIAL_FIELDS.get(self.name, ())
            if not (self.credentials.get(field) or "").strip()
        ]

    def require_credentials(self) -> None:
        missing = self.missing_credentials()
        if missing:
            raise ProviderError(
                f"{self.name.upper()} credentials incomplete. Missing: {', '.join(missing)}. "
                "Configure them in your account settings."
            )

    async def authenticate(self) -> str:
        raise NotImplementedError

    async def submit(self, token: str, item: ProviderItem) -> Submission:
        raise NotImplementedError

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request, turning transport errors into ProviderError."""
        try:
            return await self.client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.warning(f"[{self.name}] {method} {url} failed: {type(e).__name__}: {e}")
            raise ProviderError(f"Communication error with {self.name.upper()}: {type(e).__name__}") from e

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return {"raw": response.text[:1000]}

    @staticmethod
    def _error_text(data: Any) -> str:
        if isinstance(data, dict):
            for key in ("error_description", "message", "mensagem", "error", "raw"):
                if data.get(key):
                    return str(data[key])
        return str(data)[:500]
