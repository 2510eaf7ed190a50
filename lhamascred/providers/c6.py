"""C6 Bank CLT (payroll loan) client: authorization check, offers, consent link."""

import logging
from typing import Any, Dict, List

from lhamascred.providers.base import ProviderClient, ProviderError, ProviderItem, Submission

logger = logging.getLogger(__name__)

AUTHORIZED = "AUTORIZADO"
NOT_AUTHORIZED = "NAO_AUTORIZADO"


class C6Client(ProviderClient):
    name = "c6"
    batch_type = "clt"

    def _url(self, path: str) -> str:
        return f"{self.settings.C6_API_URL.rstrip('/')}/{path.lstrip('/')}"

    async def authenticate(self) -> str:
        self.require_credentials()
        response = await self._request(
            "POST",
            self.settings.C6_AUTH_URL,
            data={
                "username": self.credentials["c6_username"],
                "password": self.credentials["c6_password"],
            },
        )
        data = self._json(response)
        if response.status_code >= 400 or not isinstance(data, dict) or not data.get("access_token"):
            detail = self._error_text(data)
            logger.error(f"[C6 AUTH] Authentication failed: {detail}")
            raise ProviderError(f"C6 authentication failed: {detail}", status_code=response.status_code)
        return data["access_token"]

    async def _post(self, token: str, path: str, body: Dict[str, Any]) -> Any:
        response = await self._request(
            "POST",
            self._url(path),
            json=body,
            headers={"Authorization": f"Bearer {token}"},
        )
        data = self._json(response)
        if response.status_code >= 400:
            raise ProviderError(
                f"C6 request to {path} failed ({response.status_code}): {self._error_text(data)}",
                status_code=response.status_code,
            )
        return data

    @staticmethod
    def _offers(data: Any) -> List[Dict[str, Any]]:
        if isinstance(data, list):
            return data
        if isinstance(data, dict):
            for key in ("ofertas", "offers", "dados"):
                if isinstance(data.get(key), list):
                    return data[key]
        return []

    async def submit(self, token: str, item: ProviderItem) -> Submission:
        status_data = await self._post(token, self.settings.C6_AUTHORIZATION_STATUS_PATH, {"cpf": item.cpf})
        if not isinstance(status_data, dict) or not status_data.get("status"):
            return Submission.completed({"errorMessage": "C6 returned no authorization status.", "raw": status_data})

        authorization = str(status_data["status"]).upper()

        if authorization == AUTHORIZED:
            try:
                offers = self._offers(await self._post(token, self.settings.C6_OFFERS_PATH, {"cpf": item.cpf}))
            except ProviderError as e:
                return Submission.completed({
                    "authorizationStatus": authorization,
                    "offers": [],
                    "detail": f"Authorized, but fetching offers failed: {e.message}",
                })
            return Submission.completed({
                "authorizationStatus": authorization,
                "offers": offers,
                "detail": f"{len(offers)} offer(s) found." if offers else "No offers found.",
            })

        if authorization == NOT_AUTHORIZED:
            if not (item.name and item.birth_date and item.phone_ddd and item.phone_number):
                return Submission.completed({
                    "authorizationStatus": authorization,
                    "errorMessage": "Insufficient data to generate an authorization link.",
                })
            link_data = await self._post(token, self.settings.C6_AUTHORIZATION_LINK_PATH, {
                "cpf": item.cpf,
                "nome": item.name,
                "data_nascimento": item.birth_date,
                "telefone": {"codigo_area": item.phone_ddd, "numero": item.phone_number},
            })
            link = link_data.get("link") if isinstance(link_data, dict) else None
            if not link:
                return Submission.completed({
                    "authorizationStatus": authorization,
                    "errorMessage": "C6 did not return an authorization link.",
                })
            return Submission.completed({
                "authorizationStatus": authorization,
                "authorizationLink": link,
                "detail": "Authorization link generated.",
            })

        # e.g. AGUARDANDO_AUTORIZACAO
        return Submission.completed({
            "authorizationStatus": authorization,
            "detail": status_data.get("observacao") or "",
        })
