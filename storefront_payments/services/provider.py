"""HTTP client for the mobile-money payment gateway.

Three calls: initialize a charge, verify a charge, list operators. No retry
loop lives here; callers decide. Raw gateway JSON is reduced to the types in
``storefront_payments.domain`` before it leaves this module.
"""
import time
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, List, Optional
from urllib.parse import quote

import httpx

from storefront_payments.core.config import settings
from storefront_payments.core.errors import ProviderError
from storefront_payments.core.logging import get_logger
from storefront_payments.domain import (
    ChargeStatus, InitializedCharge, LineItem, Operator, VerifiedCharge, first_present,
)

log = get_logger("provider")

FAILURE_MARKERS = ("fail", "cancel", "declin", "expire", "revers", "reject")


class OperatorCache:
    """Operator list held for a short TTL; concurrent misses just refetch."""

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._timestamp: Optional[float] = None
        self._entries: List[Operator] = []

    def get(self) -> Optional[List[Operator]]:
        if self._timestamp is None:
            return None
        if self._clock() - self._timestamp >= self.ttl_seconds:
            return None
        return list(self._entries)

    def put(self, entries: List[Operator]) -> None:
        self._entries = list(entries)
        self._timestamp = self._clock()

    def invalidate(self) -> None:
        self._timestamp = None
        self._entries = []


class ProviderClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        secret_key: Optional[str] = None,
        timeout: Optional[float] = None,
        cache: Optional[OperatorCache] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = (base_url or settings.PROVIDER_BASE_URL).rstrip("/")
        self._secret_key = secret_key
        self.timeout = timeout if timeout is not None else settings.PROVIDER_TIMEOUT_SECONDS
        self.operators_cache = cache or OperatorCache(settings.OPERATORS_TTL_SECONDS)
        self._transport = transport

    # ---------- http ----------
    def _secret(self) -> str:
        return self._secret_key or settings.require("PROVIDER_SECRET_KEY")

    def _request(self, method: str, path: str, json: Optional[dict] = None) -> Any:
        headers = {
            "Authorization": f"Bearer {self._secret()}",
            "Accept": "application/json",
        }
        try:
            with httpx.Client(base_url=self.base_url, timeout=self.timeout, transport=self._transport) as client:
                resp = client.request(method, path, json=json, headers=headers)
        except httpx.TimeoutException as exc:
            raise ProviderError(f"Provider timed out on {method} {path}") from exc
        except httpx.RequestError as exc:
            raise ProviderError(f"Provider unreachable on {method} {path}: {exc}") from exc

        if not resp.is_success:
            log.warning("Provider %s %s returned %s", method, path, resp.status_code)
            raise ProviderError("Provider rejected the request", status=resp.status_code, body=resp.text)
        try:
            data = resp.json()
        except ValueError as exc:
            raise ProviderError("Malformed provider response", status=resp.status_code, body=resp.text) from exc
        if not isinstance(data, (dict, list)):
            raise ProviderError("Malformed provider response", status=resp.status_code, body=resp.text)
        return data

    # ---------- operations ----------
    def initialize_charge(
        self,
        mobile: str,
        operator_ref_id: str,
        amount: Decimal,
        currency: str,
        customer: dict,
        reference: Optional[str] = None,
    ) -> InitializedCharge:
        payload = {
            "mobile": mobile,
            "mobile_money_operator_ref_id": operator_ref_id,
            "amount": str(amount),
            "currency": currency,
            "email": customer.get("email") or "",
            "first_name": customer.get("first_name") or "",
            "last_name": customer.get("last_name") or "",
        }
        if reference:
            payload["tx_ref"] = reference
        if settings.CALLBACK_URL:
            payload["callback_url"] = settings.CALLBACK_URL
        if settings.RETURN_URL:
            payload["return_url"] = settings.RETURN_URL

        body = self._request("POST", "/mobile-money/payments/initialize", json=payload)
        rec = body if isinstance(body, dict) else {}
        data = rec.get("data") if isinstance(rec.get("data"), dict) else {}
        charge_id = first_present(data.get("charge_id"), data.get("id"), rec.get("charge_id"))
        if not charge_id:
            raise ProviderError("Provider response carries no charge id", status=200, body=str(rec)[:500])
        log.info("Charge initialized: reference=%s charge_id=%s", reference, charge_id)
        return InitializedCharge(charge_id=str(charge_id), raw=rec)

    def verify_charge(self, charge_id: str) -> VerifiedCharge:
        body = self._request("GET", f"/mobile-money/payments/{quote(str(charge_id), safe='')}/verify")
        charge = normalize_verification(body, requested_charge_id=charge_id)
        log.info("Charge %s verified: status=%s", charge_id, charge.status.value)
        return charge

    def list_operators(self) -> List[Operator]:
        cached = self.operators_cache.get()
        if cached is not None:
            return cached
        body = self._request("GET", "/mobile-money")
        if isinstance(body, dict) and isinstance(body.get("data"), list):
            rows = body["data"]
        elif isinstance(body, list):
            rows = body
        else:
            raise ProviderError("Operator list missing from provider response", status=200, body=str(body)[:500])
        operators = [
            Operator(
                id=str(r.get("id", "")),
                short_code=str(r.get("short_code", "")),
                ref_id=str(r.get("ref_id", "")),
                name=str(r.get("name", "")),
            )
            for r in rows if isinstance(r, dict) and r.get("ref_id")
        ]
        self.operators_cache.put(operators)
        return operators


# ---------- normalization ----------
def normalize_status(value: Any) -> ChargeStatus:
    if value is None:
        return ChargeStatus.PENDING
    text = str(value).lower()
    if "success" in text:
        return ChargeStatus.SUCCESS
    if any(marker in text for marker in FAILURE_MARKERS):
        return ChargeStatus.FAILED
    return ChargeStatus.PENDING


def _to_decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def _text(value: Any) -> Optional[str]:
    value = first_present(value)
    return str(value) if value is not None else None


def _as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _normalize_item(raw: Any) -> Optional[LineItem]:
    if not isinstance(raw, dict):
        return None
    product = _as_dict(raw.get("product"))
    ref = first_present(
        raw.get("productId"), raw.get("product_id"), product.get("_id"), product.get("_ref"),
        raw.get("productRef"), raw.get("product_ref"), raw.get("sku"), raw.get("id"),
    )
    qty_raw = first_present(raw.get("quantity"), raw.get("qty"), raw.get("count"))
    try:
        qty = int(qty_raw) if qty_raw is not None else 0
    except (TypeError, ValueError):
        qty = 0
    if not ref or qty <= 0:
        log.warning("Dropping unusable line item from provider metadata: %r", raw)
        return None
    return LineItem(product_ref=str(ref), quantity=qty)


def normalize_verification(body: Any, requested_charge_id: Optional[str] = None) -> VerifiedCharge:
    """Map the gateway's loosely-shaped verify JSON onto ``VerifiedCharge``.

    Transaction status is read from ``data.status``. The top-level status is
    used when there is no ``data`` object, or when ``data`` carries no status
    and the top-level value is more than the plain API-call ``"success"``.
    """
    rec = _as_dict(body)
    has_data = isinstance(rec.get("data"), dict)
    data = rec["data"] if has_data else rec
    raw_status = data.get("status")
    if has_data and raw_status in (None, ""):
        top = rec.get("status")
        # a bare "success" at the top level only reports that the API call worked
        if top is not None and str(top).strip().lower() != "success":
            raw_status = top
    status = normalize_status(raw_status)

    meta = _as_dict(first_present(
        data.get("meta") if isinstance(data.get("meta"), dict) else None,
        data.get("metadata") if isinstance(data.get("metadata"), dict) else None,
        rec.get("metadata") if isinstance(rec.get("metadata"), dict) else None,
    ))

    candidates = None
    for source in (data.get("items"), data.get("products"), _as_dict(data.get("order")).get("products"),
                   meta.get("items"), meta.get("products")):
        if isinstance(source, list):
            candidates = source
            break
    items = [it for it in (_normalize_item(r) for r in candidates or []) if it is not None]

    first = data.get("first_name") or ""
    last = data.get("last_name") or ""
    payer_name = f"{first} {last}".strip() or first_present(
        data.get("customerName"), data.get("customer_name"), meta.get("customerName"))

    charge_id = first_present(data.get("charge_id"), rec.get("charge_id"), requested_charge_id, data.get("id"))
    reference = first_present(
        data.get("tx_ref"), data.get("reference"), rec.get("tx_ref"), rec.get("reference"),
        meta.get("orderNumber"), meta.get("order_reference"),
    )
    address = meta.get("address") if isinstance(meta.get("address"), dict) else None

    return VerifiedCharge(
        status=status,
        charge_id=str(charge_id) if charge_id is not None else None,
        reference=str(reference) if reference is not None else None,
        ref_id=_text(data.get("ref_id")),
        amount=_to_decimal(data.get("amount")),
        currency=_text(data.get("currency")),
        mobile=_text(data.get("mobile")),
        operator_name=_text(first_present(_as_dict(data.get("mobile_money")).get("name"), data.get("operator_name"))),
        payer_name=payer_name,
        email=_text(first_present(data.get("email"), meta.get("customerEmail"))),
        completed_at=_text(data.get("completed_at")),
        user_id=_text(first_present(meta.get("userId"), meta.get("user_id"), meta.get("clerkUserId"))),
        shipping_address=address,
        items=items,
        raw=rec,
    )
