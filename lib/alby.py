from __future__ import annotations

from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx

DEFAULT_ALBY_URL = "https://api.getalby.com"


class AlbyError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def unavailable(self) -> bool:
        return self.status_code is None or self.status_code >= 500


class AlbyClient:
    def __init__(
        self,
        access_token: str,
        base_url: str = DEFAULT_ALBY_URL,
        timeout: float = 20,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._access_token = access_token
        self._transport = transport

    async def create_invoice(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", "/invoices", json=payload)

    async def decode_invoice(self, bolt11: str) -> Dict[str, Any]:
        return await self._request("GET", f"/decode/bolt11/{quote(bolt11.strip(), safe='')}")

    async def get_invoice(self, payment_hash: str) -> Dict[str, Any]:
        return await self._request("GET", f"/invoices/{quote(payment_hash.strip(), safe='')}")

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._access_token}",
            "Accept": "application/json",
        }

    async def _request(
        self, method: str, path: str, json: Dict[str, Any] | None = None
    ) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.request(
                    method, url, headers=self._headers(), json=json
                )
        except httpx.HTTPError as exc:
            raise AlbyError(f"alby request failed: {exc}") from exc

        try:
            body = response.json()
        except ValueError as exc:
            if response.status_code >= 400:
                raise AlbyError(
                    f"alby returned {response.status_code}: {response.text[:200]}",
                    status_code=response.status_code,
                ) from exc
            raise AlbyError("alby returned non-json response") from exc

        if isinstance(body, dict) and body.get("error"):
            raise AlbyError(
                str(body.get("message") or body["error"]),
                status_code=response.status_code,
            )

        if response.status_code >= 400:
            raise AlbyError(
                f"alby returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

        if not isinstance(body, dict):
            raise AlbyError("alby returned unexpected payload")
        return body
