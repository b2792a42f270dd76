"""Bring local order and stock state in line with a verified charge.

This is the only code path that moves orders to ``paid``/``failed`` after
checkout, and the only one that decrements stock. It only ever sees
``VerifiedCharge`` values produced by the provider client's verify call.

Guarantees under duplicate or concurrent delivery for the same order:

* ``paid_at`` keeps the first recorded payment time.
* gateway-derived email/name never overwrite values already on the order.
* stock is decremented at most once per order: the ``stock_applied`` marker
  is claimed with a conditional update in the same transaction as the
  ``paid`` transition, and only the claiming call touches stock.
* a failed product fetch/patch skips that line item only.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

from storefront_payments.core.errors import MissingReferenceError, StockUpdateError
from storefront_payments.core.logging import get_logger
from storefront_payments.db.models import Order, OrderStatus
from storefront_payments.db.store import DocumentStore, DuplicateKeyError
from storefront_payments.domain import ChargeStatus, LineItem, OrderKey, VerifiedCharge, merge_line_items
from storefront_payments.kafka.producer import emit
from storefront_payments.services.provider import normalize_verification

log = get_logger("reconciliation")


@dataclass
class ReconcileResult:
    order_id: int
    created: bool
    status: str
    stock_applied: bool = False


def order_keys(charge: VerifiedCharge) -> List[OrderKey]:
    """Lookup keys in preference order: merchant reference, then charge id."""
    keys = []
    if charge.reference:
        keys.append(OrderKey.reference(charge.reference))
    if charge.charge_id:
        keys.append(OrderKey.charge(charge.charge_id))
    return keys


class Reconciler:
    def __init__(
        self,
        store: DocumentStore,
        publish: Callable[[dict], None] = emit,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.store = store
        self.publish = publish
        self.clock = clock

    # ---------- entry points ----------
    def apply(self, charge: VerifiedCharge) -> Optional[ReconcileResult]:
        """Dispatch on the verified status; pending charges change nothing."""
        if charge.status is ChargeStatus.SUCCESS:
            return self.reconcile(charge)
        if charge.status is ChargeStatus.FAILED:
            return self.record_failure(charge)
        return None

    def reconcile(self, charge: VerifiedCharge) -> ReconcileResult:
        keys = order_keys(charge)
        if not keys:
            raise MissingReferenceError("Verified charge carries neither a reference nor a charge id")
        if not charge.is_success:
            raise ValueError(f"reconcile() needs a successful charge, got {charge.status.value}")

        order = self.store.find_order(keys)
        created = False
        if order is None:
            order, created = self._create_from_charge(charge, keys)

        log.info("Reconciling order %s (reference=%s charge_id=%s created=%s)",
                 order.id, charge.reference, charge.charge_id, created)
        claimed = self.store.mark_paid(order.id, self.clock(), **self._paid_fields(charge))
        self.store.refresh(order)

        if claimed:
            self._apply_stock(order)
            self._publish_paid(order)
        else:
            log.info("Stock already applied for order %s; skipping", order.id)
        return ReconcileResult(order_id=order.id, created=created, status=order.status, stock_applied=claimed)

    def record_failure(self, charge: VerifiedCharge) -> Optional[ReconcileResult]:
        order = self.store.find_order(order_keys(charge))
        if order is None:
            log.warning("Failed charge %s has no local order; nothing to mark", charge.charge_id)
            return None
        changed = self.store.mark_failed(order.id, **self._audit_fields(charge))
        self.store.refresh(order)
        if changed:
            log.info("Order %s marked failed (charge_id=%s)", order.id, charge.charge_id)
            self._send({
                "type": "payment.failed",
                "order_id": order.id,
                "order_reference": order.order_reference,
                "charge_id": order.charge_id,
            })
        return ReconcileResult(order_id=order.id, created=False, status=order.status)

    def absorb_recovery_order(self, order: Order, charge_id: str) -> Optional[ReconcileResult]:
        """Give ``charge_id`` to ``order`` when a recovery order already holds it.

        A webhook that beats checkout's charge-id write and names no reference
        synthesizes an order keyed by the charge id. That order is retired and
        the real one is reconciled from the verify payload it recorded.
        """
        recovery = self.store.fetch_order(OrderKey.charge(charge_id))
        if recovery is None or recovery.id == order.id:
            self.store.mark_initialized(order.id, charge_id)
            return None
        if recovery.order_reference != charge_id:
            raise DuplicateKeyError(f"charge {charge_id} already belongs to order {recovery.order_reference}")

        paid = recovery.status == OrderStatus.PAID.value
        payload = recovery.provider_payload
        log.warning("Charge %s was reconciled before checkout recorded it; folding order %s into %s",
                    charge_id, recovery.id, order.id)
        self.store.retire_recovery_order(recovery, order.id, charge_id)
        self.store.refresh(order)
        if not paid or not payload:
            return None
        return self.reconcile(normalize_verification(payload, requested_charge_id=charge_id))

    # ---------- helpers ----------
    def _create_from_charge(self, charge: VerifiedCharge, keys: List[OrderKey]):
        """Recovery path: the checkout never persisted an order for this charge."""
        items = charge.items
        if not items:
            log.warning("No line items in verified payload for %s; creating order without items", keys[0].value)
        try:
            order = self.store.create_order(
                items,
                order_reference=charge.reference or charge.charge_id,
                charge_id=charge.charge_id,
                user_id=charge.user_id,
                customer_name=charge.payer_name or "",
                email=charge.email or "",
                status=OrderStatus.PENDING.value,
                amount=charge.amount or 0,
                currency=charge.currency or "MWK",
                shipping_address=charge.shipping_address,
            )
        except DuplicateKeyError:
            # A concurrent delivery created it first
            order = self.store.find_order(keys)
            if order is None:
                raise
            return order, False
        return order, True

    def _audit_fields(self, charge: VerifiedCharge) -> dict:
        fields = {"provider_payload": charge.raw or None}
        for name in ("ref_id", "mobile", "operator_name", "completed_at"):
            value = getattr(charge, name)
            if value:
                fields["provider_ref_id" if name == "ref_id" else name] = value
        return fields

    def _paid_fields(self, charge: VerifiedCharge) -> dict:
        fields = self._audit_fields(charge)
        # amount/currency from the gateway are authoritative once verified
        if charge.amount is not None:
            fields["amount"] = charge.amount
        if charge.currency:
            fields["currency"] = charge.currency
        fields.update(
            charge_id=charge.charge_id,
            email=charge.email,
            customer_name=charge.payer_name,
            user_id=charge.user_id,
        )
        return fields

    def _apply_stock(self, order: Order) -> None:
        items = merge_line_items([LineItem(it.product_ref, it.quantity) for it in order.items])
        if not items:
            log.info("Order %s has no line items for stock update", order.id)
            return
        for item in items:
            if item.quantity <= 0:
                log.warning("Non-positive quantity (%s) for %s on order %s; skipping",
                            item.quantity, item.product_ref, order.id)
                continue
            try:
                old, new = self.store.decrement_stock(item.product_ref, item.quantity)
            except StockUpdateError:
                log.exception("Stock update skipped for %s on order %s", item.product_ref, order.id)
                continue
            log.info("Product %s stock %s -> %s (order %s)", item.product_ref, old, new, order.id)

    def _publish_paid(self, order: Order) -> None:
        self._send({
            "type": "payment.succeeded",
            "order_id": order.id,
            "order_reference": order.order_reference,
            "charge_id": order.charge_id,
            "amount": str(order.amount),
            "currency": order.currency,
            "user_email": order.email or None,
        })

    def _send(self, event: dict) -> None:
        try:
            self.publish(event)
        except Exception:
            # order state is already committed at this point
            log.exception("Could not publish %s for order %s", event["type"], event["order_id"])
