"""
Lightning invoice lifecycle on top of the Alby API.

Application data is validated against a pydantic schema, serialized to
JSON and base64-encoded into the invoice description. Verification
decodes the invoice through the API, checks settlement and expiry, and
validates the description against the same schema.

With ``remember_invoices`` enabled, every created invoice's payment hash
is tracked with its registration time and can be verified exactly once
within ``verification_timeout_seconds``.
"""

from __future__ import annotations

import base64
import binascii
import json
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Optional, Protocol, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

from lib.alby import AlbyClient, AlbyError
from lib.invoice_models import CreateInvoiceArgs, DecodedInvoice, Invoice
from lib.invoice_store import TrackedInvoice

SchemaT = TypeVar("SchemaT", bound=BaseModel)
ResponseT = TypeVar("ResponseT", bound=BaseModel)


class InvoiceError(Exception):
    pass


class InvoiceSchemaError(InvoiceError):
    pass


class InvalidInvoice(InvoiceError):
    pass


class BlankInvoiceDescription(InvoiceError):
    pass


class InvoiceNotPaid(InvoiceError):
    pass


class InvoiceExpired(InvoiceError):
    pass


class InvoiceTimedOut(InvoiceError):
    pass


class InvoiceNotVerified(InvoiceError):
    pass


class InvoiceNotFound(InvoiceNotVerified):
    pass


class InvoiceRecordStore(Protocol):
    async def create(self, payment_hash: str) -> TrackedInvoice: ...

    async def find(self, payment_hash: str) -> Optional[TrackedInvoice]: ...

    async def delete(self, payment_hash: str) -> None: ...


@dataclass
class VerifiedInvoice(Generic[SchemaT]):
    invoice: DecodedInvoice
    data: SchemaT


def encode_description(payload: Dict[str, Any]) -> str:
    raw = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
    return base64.b64encode(raw.encode("utf-8")).decode("ascii")


def _parse_response(model: Type[ResponseT], body: Dict[str, Any]) -> ResponseT:
    try:
        return model.model_validate(body)
    except ValidationError as exc:
        raise AlbyError(f"alby returned unexpected payload: {exc}") from exc


def decode_description(description: str) -> Any:
    try:
        raw = base64.b64decode(description.strip(), validate=True)
        return json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
        raise InvoiceSchemaError("Invoice description is not an encoded payload") from exc


class InvoiceUtility(Generic[SchemaT]):
    def __init__(
        self,
        schema: Type[SchemaT],
        client: AlbyClient,
        store: Optional[InvoiceRecordStore] = None,
        remember_invoices: bool = False,
        verification_timeout_seconds: float = 600,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if remember_invoices and store is None:
            raise ValueError("remember_invoices requires an invoice store")

        self.schema = schema
        self.client = client
        self.store = store
        self.remember_invoices = remember_invoices
        self.verification_timeout_seconds = verification_timeout_seconds
        self._clock = clock

    async def create_invoice(self, args: CreateInvoiceArgs) -> Invoice:
        created = await self.client.create_invoice(args.to_payload())
        return _parse_response(Invoice, created)

    async def decode_invoice(self, bolt11: str) -> DecodedInvoice:
        try:
            decoded = await self.client.decode_invoice(bolt11)
        except AlbyError as exc:
            if exc.unavailable:
                raise
            raise InvalidInvoice(f"Invalid invoice: {exc}") from exc
        return _parse_response(DecodedInvoice, decoded)

    async def get_invoice(self, payment_hash: str) -> Optional[Invoice]:
        """Look up an invoice by payment hash; ``None`` when the account has no such invoice."""
        try:
            found = await self.client.get_invoice(payment_hash)
        except AlbyError as exc:
            if exc.status_code == 404:
                return None
            raise
        if not found:
            return None
        return _parse_response(Invoice, found)

    async def register_invoice_hash(self, payment_hash: str) -> TrackedInvoice:
        return await self._require_store().create(payment_hash)

    async def verify_invoice_hash(self, payment_hash: str) -> bool:
        """Consume a tracked payment hash if it is inside its verification window.

        The window is ``[created_at, created_at + timeout)``. A record seen
        after the window is deleted and reported as timed out; a record
        whose registration time lies in the future is left untouched.
        """
        store = self._require_store()
        tracked = await store.find(payment_hash)
        if tracked is None:
            raise InvoiceNotFound("Could not find invoice")

        elapsed = self._clock() - tracked.created_at
        if elapsed >= self.verification_timeout_seconds:
            await store.delete(payment_hash)
            raise InvoiceTimedOut("Invoice timed out")
        if elapsed >= 0:
            await store.delete(payment_hash)
            return True

        raise InvoiceNotVerified("Invoice not verified")

    async def register_invoice_with_schema(
        self,
        args: CreateInvoiceArgs,
        data: Union[SchemaT, Dict[str, Any]],
    ) -> Invoice:
        payload = self._validate(data)
        invoice_args = args.model_copy(
            update={
                "description": encode_description(payload.model_dump(mode="json")),
                "memo": None,
            }
        )
        invoice = await self.create_invoice(invoice_args)

        if self.remember_invoices:
            await self.register_invoice_hash(invoice.payment_hash)

        return invoice

    async def verify_invoice_with_schema(self, bolt11: str) -> VerifiedInvoice[SchemaT]:
        decoded = await self.decode_invoice(bolt11)
        if not decoded.description:
            raise BlankInvoiceDescription(
                "Cannot check the structure of a blank invoice description"
            )

        invoice = await self.get_invoice(decoded.payment_hash)
        if invoice is None:
            raise InvoiceNotFound("Cannot find invoice")

        if invoice.state != "SETTLED" or not invoice.settled:
            raise InvoiceNotPaid("Invoice not paid")

        try:
            expires_at = invoice.expires_at_timestamp()
        except ValueError as exc:
            raise InvoiceError(f"Invalid invoice expiry: {invoice.expires_at}") from exc
        if expires_at is not None and self._clock() > expires_at:
            raise InvoiceExpired("Invoice expired")

        if self.remember_invoices:
            await self.verify_invoice_hash(invoice.payment_hash)

        data = self._validate(decode_description(decoded.description))
        return VerifiedInvoice(invoice=decoded, data=data)

    def _validate(self, data: Union[SchemaT, Dict[str, Any], Any]) -> SchemaT:
        if isinstance(data, BaseModel):
            data = data.model_dump()
        try:
            return self.schema.model_validate(data)
        except ValidationError as exc:
            raise InvoiceSchemaError(str(exc)) from exc

    def _require_store(self) -> InvoiceRecordStore:
        if self.store is None:
            raise RuntimeError("Invoice tracking store is not configured")
        return self.store
