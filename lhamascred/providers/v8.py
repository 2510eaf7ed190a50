"""V8 Digital FGTS balance client (answers arrive through the balance webhook)."""

import logging

from lhamascred.providers.base import ProviderClient, ProviderError, ProviderItem, Submission

logger = logging.getLogger(__name__)

# Form value -> value the V8 API expects in "provider".
V8_SUB_PROVIDERS = {
    "cartos": "CARTOS",
    "bms": "BMS",
    "qi": "QI_TECH",
}


class V8Client(ProviderClient):
    name = "v8"
    batch_type = "fgts"

    @property
    def sub_provider(self) -> str:
        sub = (self.options.get("v8_provider") or "").lower()
        if sub not in V8_SUB_PROVIDERS:
            raise ProviderError(f"Invalid V8 sub-provider: {sub or '<empty>'}")
        return V8_SUB_PROVIDERS[sub]

    async def authenticate(self) -> str:
        self.require_credentials()
        response = await self._request(
            "POST",
            self.settings.V8_AUTH_URL,
            data={
                "grant_type": "password",
                "username": self.credentials["v8_username"],
                "password": self.credentials["v8_password"],
                "audience": self.credentials["v8_audience"],
                "scope": "offline_access",
                "client_id": self.credentials["v8_client_id"],
            },
        )
        data = self._json(response)
        if response.status_code >= 400 or not isinstance(data, dict) or not data.get("access_token"):
            detail = self._error_text(data)
            logger.error(f"[V8 AUTH] Authentication failed: {detail}")
            raise ProviderError(f"V8 authentication failed: {detail}", status_code=response.status_code)
        return data["access_token"]

    async def submit(self, token: str, item: ProviderItem) -> Submission:
        body = {
            "documentNumber": item.cpf,
            "provider": self.sub_provider,
            "balanceId": item.response_id,
            "webhookUrl": self.settings.WEBHOOK_PUBLIC_URL,
        }
        response = await self._request(
            "POST",
            f"{self.settings.V8_API_URL.rstrip('/')}/fgts/balance",
            json=body,
            headers={"Authorization": f"Bearer {token}"},
        )
        if response.status_code >= 400:
            detail = self._error_text(self._json(response))
            raise ProviderError(
                f"V8 balance request rejected ({response.status_code}): {detail}",
                status_code=response.status_code,
            )
        return Submission.accepted()
