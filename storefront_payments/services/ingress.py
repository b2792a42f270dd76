"""Entry points that feed verified charges into reconciliation.

Both the provider webhook and the browser poll end in the same place:
``ProviderClient.verify_charge`` followed by ``Reconciler``. Nothing reported
by the webhook body itself is trusted beyond the charge id it names.
"""
import json
from dataclasses import dataclass
from typing import Mapping, Optional

from storefront_payments.core import signature
from storefront_payments.core.errors import (
    DocumentStoreError, InvalidPayloadError, MissingReferenceError, ProviderError, SignatureInvalidError,
)
from storefront_payments.core.logging import get_logger
from storefront_payments.db.store import DocumentStore
from storefront_payments.domain import ChargeStatus, OrderKey, VerifiedCharge, first_present
from storefront_payments.services.provider import ProviderClient
from storefront_payments.services.reconciliation import Reconciler

log = get_logger("ingress")

HMAC_HEADER = "Signature"
SHARED_SECRET_HEADER = "X-Webhook-Signature"


@dataclass
class WebhookOutcome:
    http_status: int
    body: dict


@dataclass
class PollOutcome:
    status: str
    charge: Optional[VerifiedCharge] = None
    order_id: Optional[int] = None
    message: Optional[str] = None


def check_signature(raw_body: bytes, headers: Mapping[str, str], secret: str) -> None:
    hmac_sig = headers.get(HMAC_HEADER)
    if hmac_sig is not None:
        if not signature.verify(raw_body, hmac_sig, secret):
            raise SignatureInvalidError("Invalid webhook signature")
        return
    shared = headers.get(SHARED_SECRET_HEADER)
    if shared is not None:
        if not signature.verify_shared_secret(shared, secret):
            raise SignatureInvalidError("Invalid webhook signature")
        return
    raise SignatureInvalidError("Missing webhook signature")


def parse_payload(raw_body: bytes) -> dict:
    try:
        payload = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise InvalidPayloadError("Invalid JSON payload") from exc
    if not isinstance(payload, dict):
        raise InvalidPayloadError("Webhook payload must be a JSON object")
    return payload


def _event_body(payload: dict) -> dict:
    for key in ("order", "data"):
        if isinstance(payload.get(key), dict):
            return payload[key]
    return payload


def extract_charge_id(payload: dict) -> Optional[str]:
    body = _event_body(payload)
    value = first_present(body.get("charge_id"), body.get("id"), payload.get("charge_id"))
    return str(value) if value is not None else None


def extract_reference(payload: dict) -> Optional[str]:
    body = _event_body(payload)
    value = first_present(body.get("tx_ref"), body.get("reference"), payload.get("tx_ref"), payload.get("reference"))
    return str(value) if value is not None else None


def _charge_for_reference(store: DocumentStore, reference: str) -> Optional[str]:
    order = store.fetch_order(OrderKey.reference(reference))
    return order.charge_id if order is not None else None


def handle_webhook(
    raw_body: bytes,
    headers: Mapping[str, str],
    secret: str,
    provider: ProviderClient,
    reconciler: Reconciler,
) -> WebhookOutcome:
    """Validate, verify and reconcile one webhook delivery.

    400 stops provider redelivery (bad signature, bad payload, charge not
    successful); 500 asks for it (gateway or store trouble, or a known order
    whose charge id is not recorded yet).
    """
    preview = raw_body[:200].decode("utf-8", "replace")
    log.info("Webhook received (%d bytes, signed=%s): %s", len(raw_body),
             headers.get(HMAC_HEADER) is not None or headers.get(SHARED_SECRET_HEADER) is not None, preview)

    check_signature(raw_body, headers, secret)
    payload = parse_payload(raw_body)

    charge_id = extract_charge_id(payload)
    reference = extract_reference(payload)
    try:
        if not charge_id and reference:
            order = reconciler.store.fetch_order(OrderKey.reference(reference))
            if order is not None and not order.charge_id:
                # known order, charge id not written yet: ask for redelivery
                log.warning("Webhook for %s arrived before its charge id was recorded", reference)
                return WebhookOutcome(500, {"message": "Charge not yet recorded for this order"})
            charge_id = order.charge_id if order is not None else None
        if not charge_id:
            raise MissingReferenceError("Missing charge_id/id in payload")

        charge = provider.verify_charge(charge_id)
        if charge.status is ChargeStatus.SUCCESS:
            result = reconciler.reconcile(charge)
            return WebhookOutcome(200, {
                "received": True,
                "orderId": result.order_id,
                "created": result.created,
            })
        if charge.status is ChargeStatus.FAILED:
            reconciler.record_failure(charge)
        log.warning("Webhook for charge %s not successful (status=%s)", charge_id, charge.status.value)
        return WebhookOutcome(400, {"message": "Transaction not successful", "status": charge.status.value})
    except (ProviderError, DocumentStoreError) as exc:
        log.error("Webhook reconciliation failed for charge %s: %s", charge_id, exc)
        return WebhookOutcome(500, {"message": "Failed to verify or record transaction"})


def poll_verification(
    charge_id: Optional[str],
    reference: Optional[str],
    provider: ProviderClient,
    reconciler: Reconciler,
) -> PollOutcome:
    """Browser-driven verify. Transient trouble reads as ``pending``.

    A ``success`` outcome is only returned after reconciliation committed.
    """
    if not charge_id and not reference:
        raise InvalidPayloadError("Missing chargeId or reference")
    if not charge_id:
        try:
            charge_id = _charge_for_reference(reconciler.store, reference)
        except DocumentStoreError:
            log.exception("Order lookup failed for reference %s", reference)
            return PollOutcome("pending", message="Verification temporarily unavailable")
        if not charge_id:
            return PollOutcome("pending", message="No charge recorded for this reference yet")

    try:
        charge = provider.verify_charge(charge_id)
    except ProviderError as exc:
        log.warning("Verify failed for charge %s: %s", charge_id, exc)
        return PollOutcome("pending", message="Network or server verify error")

    try:
        result = reconciler.apply(charge)
    except DocumentStoreError:
        log.exception("Reconciliation failed for charge %s", charge_id)
        return PollOutcome("pending", charge=charge, message="Payment received, order update pending")
    return PollOutcome(
        charge.status.value,
        charge=charge,
        order_id=result.order_id if result else None,
    )

