from __future__ import annotations

import json
import os
from typing import Any, Dict, List, Optional

import httpx
import pytest

os.environ.setdefault("ALBY_ACCESS_TOKEN", "test-token")
os.environ["LNGPT_SUPABASE_PROJECT_URL"] = ""
os.environ["LNGPT_SUPABASE_PW"] = ""

from lib.alby import AlbyClient  # noqa: E402

PAYMENT_HASH = "ab" * 32
BOLT11 = "lnbc210n1pjtestinvoice"


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeAlbyApi:
    """In-process stand-in for the Alby invoice endpoints."""

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.created: List[Dict[str, Any]] = []
        self.invoice: Dict[str, Any] = {}
        self.decoded: Dict[str, Any] = {}
        self.error: Optional[tuple[int, Dict[str, Any]]] = None
        self.route_errors: Dict[str, tuple[int, Dict[str, Any]]] = {}

    def settle(self, expires_at: str = "2099-01-01T00:00:00Z") -> None:
        self.invoice.update(state="SETTLED", settled=True, expires_at=expires_at)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            status_code, body = self.error
            return httpx.Response(status_code, json=body)

        path = request.url.path
        if request.method == "POST" and path == "/invoices":
            body = json.loads(request.content)
            self.created.append(body)
            self.invoice = {
                "payment_hash": PAYMENT_HASH,
                "payment_request": BOLT11,
                "amount": body["amount"],
                "description": body.get("description"),
                "state": "CREATED",
                "settled": False,
                "expires_at": "2099-01-01T00:00:00Z",
                "type": "incoming",
            }
            self.decoded = {
                "payment_hash": PAYMENT_HASH,
                "description": body.get("description"),
                "amount": body["amount"],
                "currency": "bc",
            }
            return httpx.Response(201, json=self.invoice)
        if request.method == "GET" and path.startswith("/decode/bolt11/"):
            if "decode" in self.route_errors:
                status_code, body = self.route_errors["decode"]
                return httpx.Response(status_code, json=body)
            return httpx.Response(200, json=self.decoded)
        if request.method == "GET" and path.startswith("/invoices/"):
            if "lookup" in self.route_errors:
                status_code, body = self.route_errors["lookup"]
                return httpx.Response(status_code, json=body)
            return httpx.Response(200, json=self.invoice)
        return httpx.Response(404, json={"error": True, "message": "not found"})


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def alby_api() -> FakeAlbyApi:
    return FakeAlbyApi()


@pytest.fixture
def alby_client(alby_api: FakeAlbyApi) -> AlbyClient:
    return AlbyClient(
        access_token="test-token",
        transport=httpx.MockTransport(alby_api.handler),
    )
