"""Facta FGTS balance client (synchronous answers)."""

import logging
from typing import Any, Dict

import httpx

from lhamascred.providers.base import ProviderClient, ProviderError, ProviderItem, Submission

logger = logging.getLogger(__name__)


class FactaClient(ProviderClient):
    name = "facta"
    batch_type = "fgts"

    @property
    def base_url(self) -> str:
        return self.settings.FACTA_API_URL.rstrip("/")

    async def authenticate(self) -> str:
        self.require_credentials()
        response = await self._request(
            "GET",
            f"{self.base_url}/gera-token",
            auth=httpx.BasicAuth(self.credentials["facta_username"], self.credentials["facta_password"]),
        )
        data = self._json(response)
        if not isinstance(data, dict) or data.get("erro") or not data.get("token"):
            detail = self._error_text(data)
            logger.error(f"[FACTA AUTH] Token generation failed: {detail}")
            raise ProviderError(f"Facta token generation failed: {detail}", status_code=response.status_code)
        return data["token"]

    @staticmethod
    def normalize(data: Any) -> Dict[str, Any]:
        """
        Map a Facta balance answer to the payload shape the classifier reads.

        Facta signals failure with `erro: true` and a `mensagem`; on success the
        balance fields may come at the top level or under `retorno`.
        """
        if not isinstance(data, dict):
            return {"errorMessage": "Unexpected Facta response.", "raw": data}

        if data.get("erro"):
            return {
                "errorMessage": data.get("mensagem") or data.get("msg") or "Facta returned an error.",
                "raw": data,
            }

        body = data.get("retorno") if isinstance(data.get("retorno"), dict) else data
        payload = {k: v for k, v in body.items() if k != "erro"}
        payload["balance"] = body.get("saldo_total")
        if "msg" not in payload and data.get("mensagem"):
            payload["msg"] = data["mensagem"]
        return payload

    async def submit(self, token: str, item: ProviderItem) -> Submission:
        response = await self._request(
            "GET",
            f"{self.base_url}/fgts/saldo",
            params={"cpf": item.cpf},
            headers={"Authorization": f"Bearer {token}"},
        )
        if response.status_code >= 500:
            raise ProviderError(
                f"Facta balance query failed ({response.status_code})",
                status_code=response.status_code,
            )
        return Submission.completed(self.normalize(self._json(response)))
