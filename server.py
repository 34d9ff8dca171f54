from __future__ import annotations

import asyncio
import hashlib
import os
import time
from pathlib import Path
from typing import Any, Dict, Optional, Union

import asyncpg
import yaml
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from lib.alby import DEFAULT_ALBY_URL, AlbyClient, AlbyError
from lib.invoice_models import CreateInvoiceArgs
from lib.invoice_store import MemoryInvoiceStore, SupabaseInvoiceStore
from lib.invoice_utility import (
    BlankInvoiceDescription,
    InvalidInvoice,
    InvoiceError,
    InvoiceExpired,
    InvoiceNotFound,
    InvoiceNotPaid,
    InvoiceNotVerified,
    InvoiceSchemaError,
    InvoiceTimedOut,
    InvoiceUtility,
)


BASE_DIR = Path(__file__).resolve().parent
CONFIG_PATH = BASE_DIR / "config.yaml"

load_dotenv(BASE_DIR / ".env.secrets")
load_dotenv(BASE_DIR / ".env")

with CONFIG_PATH.open("r", encoding="utf-8") as f:
    CONFIG = yaml.safe_load(f)


class ChatPayment(BaseModel):
    """Payload carried in the description of a pay-per-message invoice."""

    conversation_id: str = Field(min_length=1, max_length=128)
    message_sha256: str = Field(pattern=r"^[0-9a-f]{64}$")
    model: str = Field(min_length=1, max_length=64)
    amount_sats: int = Field(gt=0)


def _build_error(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": code, "message": message}},
    )


def _resolve_model_price(model_name: str) -> Optional[int]:
    pricing = CONFIG.get("pricing", {})
    models = pricing.get("models", {})
    price = models.get(model_name)
    if price is None:
        price = models.get("_default")
    if price is None:
        price = pricing.get("price_per_message_sats")
    if price is None:
        return None
    return int(price)


def _invoice_error_response(exc: InvoiceError) -> JSONResponse:
    if isinstance(exc, (InvoiceSchemaError, BlankInvoiceDescription)):
        return _build_error(400, "invalid_payload", str(exc))
    if isinstance(exc, InvalidInvoice):
        return _build_error(400, "invalid_invoice", str(exc))
    if isinstance(exc, InvoiceNotPaid):
        return _build_error(402, "invoice_not_paid", str(exc))
    if isinstance(exc, InvoiceNotFound):
        return _build_error(404, "invoice_not_found", str(exc))
    if isinstance(exc, InvoiceNotVerified):
        return _build_error(403, "invoice_not_verified", str(exc))
    if isinstance(exc, InvoiceExpired):
        return _build_error(410, "invoice_expired", str(exc))
    if isinstance(exc, InvoiceTimedOut):
        return _build_error(410, "invoice_timed_out", str(exc))
    return _build_error(400, "invalid_invoice", str(exc))


def _alby_error_response(exc: AlbyError, action: str) -> JSONResponse:
    if exc.unavailable:
        print(f"Alby invoice {action} failed: {exc}")
        return _build_error(503, "alby_unavailable", str(exc))
    return _build_error(400, "alby_rejected", str(exc))


STORE_ERRORS = (RuntimeError, OSError, asyncpg.PostgresError, asyncpg.InterfaceError)


async def _read_json_object(request: Request) -> Optional[Dict[str, Any]]:
    try:
        payload = await request.json()
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None
    return payload


ALBY_ACCESS_TOKEN = os.getenv("ALBY_ACCESS_TOKEN", "").strip()
if not ALBY_ACCESS_TOKEN:
    raise RuntimeError("Missing environment variable ALBY_ACCESS_TOKEN")

alby_config = CONFIG.get("alby", {})
alby_client = AlbyClient(
    access_token=ALBY_ACCESS_TOKEN,
    base_url=os.getenv("ALBY_URL", alby_config.get("url", DEFAULT_ALBY_URL)),
    timeout=float(alby_config.get("timeout_seconds", 20)),
)

invoice_config = CONFIG.get("invoices", {})
REMEMBER_INVOICES = bool(invoice_config.get("remember", True))
INVOICE_EXPIRY_SECONDS = int(invoice_config.get("expiry_seconds", 600))
VERIFICATION_TIMEOUT_SECONDS = int(invoice_config.get("verification_timeout_seconds", 600))
CLEANUP_INTERVAL_SECONDS = int(invoice_config.get("cleanup_interval_seconds", 300))

supabase_store = SupabaseInvoiceStore.from_env()
invoice_store: Union[MemoryInvoiceStore, SupabaseInvoiceStore]
if supabase_store.enabled:
    invoice_store = supabase_store
else:
    invoice_store = MemoryInvoiceStore(
        retention_seconds=max(
            int(invoice_config.get("retention_seconds", 3600)),
            VERIFICATION_TIMEOUT_SECONDS,
        ),
        cleanup_interval_seconds=CLEANUP_INTERVAL_SECONDS,
    )
    if REMEMBER_INVOICES:
        print(
            "WARNING: Supabase credentials are not set. Tracking invoices in memory; "
            "tracked payment hashes will not survive restarts."
        )

invoice_utility: InvoiceUtility[ChatPayment] = InvoiceUtility(
    schema=ChatPayment,
    client=alby_client,
    store=invoice_store,
    remember_invoices=REMEMBER_INVOICES,
    verification_timeout_seconds=VERIFICATION_TIMEOUT_SECONDS,
)

app = FastAPI(title="lngpt")

_cleanup_task: Optional[asyncio.Task[None]] = None


async def _cleanup_worker(store: MemoryInvoiceStore) -> None:
    while True:
        await asyncio.sleep(CLEANUP_INTERVAL_SECONDS)
        store.cleanup()


@app.on_event("startup")
async def startup() -> None:
    global _cleanup_task
    await supabase_store.startup()
    if isinstance(invoice_store, MemoryInvoiceStore):
        _cleanup_task = asyncio.create_task(_cleanup_worker(invoice_store))


@app.on_event("shutdown")
async def shutdown() -> None:
    if _cleanup_task is not None:
        _cleanup_task.cancel()
        try:
            await _cleanup_task
        except asyncio.CancelledError:
            pass
    await supabase_store.shutdown()


@app.get("/health")
async def health() -> Response:
    return JSONResponse(
        status_code=200,
        content={
            "status": "ok",
            "timestamp": int(time.time()),
            "invoices": {
                "remember": REMEMBER_INVOICES,
                "store": "supabase" if invoice_store is supabase_store else "memory",
                **invoice_store.stats(),
            },
        },
    )


@app.get("/api/pricing")
async def pricing() -> Dict[str, Any]:
    models = {
        name: int(price)
        for name, price in CONFIG.get("pricing", {}).get("models", {}).items()
        if name != "_default"
    }
    return {
        "price_per_message_sats": _resolve_model_price("_default"),
        "models": models,
        "expires_in": INVOICE_EXPIRY_SECONDS,
    }


@app.post("/api/invoice")
async def create_message_invoice(request: Request) -> Response:
    payload = await _read_json_object(request)
    if payload is None:
        return _build_error(400, "invalid_request", "Request body must be a JSON object")

    conversation_id = payload.get("conversation_id")
    if not isinstance(conversation_id, str) or not conversation_id.strip():
        return _build_error(400, "invalid_request", "conversation_id must be a non-empty string")

    message = payload.get("message")
    if not isinstance(message, str) or not message.strip():
        return _build_error(400, "invalid_request", "message must be a non-empty string")

    raw_model = payload.get("model")
    if raw_model is not None and not isinstance(raw_model, str):
        return _build_error(400, "invalid_request", "model must be a string")
    model_name = raw_model.strip() if raw_model and raw_model.strip() else "default"

    amount_sats = _resolve_model_price(model_name)
    if amount_sats is None or amount_sats <= 0:
        return _build_error(400, "model_not_supported", f"Model '{model_name}' is not available")

    chat_payment = {
        "conversation_id": conversation_id.strip(),
        "message_sha256": hashlib.sha256(message.encode("utf-8")).hexdigest(),
        "model": model_name,
        "amount_sats": amount_sats,
    }

    try:
        invoice = await invoice_utility.register_invoice_with_schema(
            CreateInvoiceArgs(amount=amount_sats, expiry=INVOICE_EXPIRY_SECONDS),
            chat_payment,
        )
    except InvoiceError as exc:
        return _invoice_error_response(exc)
    except AlbyError as exc:
        return _alby_error_response(exc, "creation")
    except STORE_ERRORS as exc:
        print(f"WARNING: invoice store failed: {exc}")
        return _build_error(503, "store_unavailable", str(exc))

    response = JSONResponse(
        status_code=402,
        content={
            "status": "payment_required",
            "invoice": invoice.payment_request,
            "payment_hash": invoice.payment_hash,
            "amount_sats": amount_sats,
            "expires_in": INVOICE_EXPIRY_SECONDS,
            "verify_url": "/api/invoice/verify",
        },
    )
    response.headers["X-Lightning-Invoice"] = invoice.payment_request
    response.headers["X-Payment-Hash"] = invoice.payment_hash
    response.headers["X-Price-Sats"] = str(amount_sats)
    return response


@app.post("/api/invoice/verify")
async def verify_message_invoice(request: Request) -> Response:
    payload = await _read_json_object(request)
    if payload is None:
        return _build_error(400, "invalid_request", "Request body must be a JSON object")

    bolt11 = payload.get("invoice")
    if not isinstance(bolt11, str) or not bolt11.strip():
        return _build_error(400, "invalid_request", "invoice must be a non-empty string")

    try:
        verified = await invoice_utility.verify_invoice_with_schema(bolt11.strip())
    except InvoiceError as exc:
        return _invoice_error_response(exc)
    except AlbyError as exc:
        return _alby_error_response(exc, "verification")
    except STORE_ERRORS as exc:
        print(f"WARNING: invoice store failed: {exc}")
        return _build_error(503, "store_unavailable", str(exc))

    return JSONResponse(
        status_code=200,
        content={
            "status": "paid",
            "payment_hash": verified.invoice.payment_hash,
            "payment": verified.data.model_dump(),
        },
    )
