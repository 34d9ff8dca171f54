from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict

Currency = Literal["bc", "btc"]


class CreateInvoiceArgs(BaseModel):
    model_config = ConfigDict(extra="allow")

    amount: int
    description: Optional[str] = None
    description_hash: Optional[str] = None
    currency: Optional[Currency] = None
    memo: Optional[str] = None
    expiry: Optional[int] = None
    comment: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    payer_name: Optional[str] = None
    payer_email: Optional[str] = None
    payer_pubkey: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class Invoice(BaseModel):
    """Invoice as returned by the create and lookup endpoints."""

    model_config = ConfigDict(extra="allow")

    payment_hash: str
    payment_request: str
    amount: Optional[int] = None
    value: Optional[int] = None
    currency: Optional[str] = None
    state: Optional[str] = None
    settled: Optional[bool] = None
    settled_at: Optional[Union[str, int]] = None
    created_at: Optional[str] = None
    creation_date: Optional[int] = None
    expires_at: Optional[str] = None
    expiry: Optional[int] = None
    description: Optional[str] = None
    description_hash: Optional[str] = None
    memo: Optional[str] = None
    comment: Optional[str] = None
    identifier: Optional[str] = None
    type: Optional[str] = None
    fiat_currency: Optional[str] = None
    fiat_in_cents: Optional[float] = None
    qr_code_png: Optional[str] = None
    qr_code_svg: Optional[str] = None

    def expires_at_timestamp(self) -> Optional[float]:
        if not self.expires_at:
            return None
        raw = self.expires_at.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        parsed = datetime.fromisoformat(raw)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.timestamp()


class DecodedInvoice(BaseModel):
    model_config = ConfigDict(extra="allow")

    payment_hash: str
    description: Optional[str] = None
    currency: Optional[str] = None
    created_at: Optional[int] = None
    expiry: Optional[int] = None
    payee: Optional[str] = None
    payee_alias: Optional[str] = None
    msatoshi: Optional[int] = None
    amount: Optional[int] = None
    min_final_cltv_expiry: Optional[int] = None
    route_hint_aliases: Optional[List[Any]] = None
