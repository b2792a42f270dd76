from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional
from urllib.parse import quote
import uuid

from storefront_payments.core.config import settings
from storefront_payments.core.errors import DocumentStoreError, InvalidPayloadError, ProviderError
from storefront_payments.core.logging import get_logger
from storefront_payments.db.models import OrderStatus
from storefront_payments.db.store import DocumentStore, DuplicateKeyError
from storefront_payments.domain import LineItem, merge_line_items
from storefront_payments.services.operators import resolve_operator_ref
from storefront_payments.services.provider import ProviderClient
from storefront_payments.services.reconciliation import Reconciler

log = get_logger("checkout")


@dataclass
class CheckoutRequest:
    mobile: str
    amount: Decimal
    currency: str
    email: str = ""
    first_name: str = ""
    last_name: str = ""
    operator_ref_id: Optional[str] = None
    order_reference: Optional[str] = None
    user_id: Optional[str] = None
    items: Optional[List[LineItem]] = None
    address: Optional[dict] = None


@dataclass
class CheckoutResult:
    charge_id: str
    order_reference: str
    order_id: int
    status: str
    redirect_url: str


def new_reference() -> str:
    return f"txn_{uuid.uuid4().hex}"


def success_url(reference: str) -> str:
    return f"{settings.BASE_URL.rstrip('/')}/success?orderNumber={quote(reference, safe='')}"


def initialize_checkout(
    store: DocumentStore,
    provider: ProviderClient,
    req: CheckoutRequest,
    reconciler: Optional[Reconciler] = None,
) -> CheckoutResult:
    """Persist a pending order, start the charge, record the charge id.

    A definite rejection from the gateway (HTTP error status) fails the order.
    A timeout or transport error leaves it pending: the charge may still have
    gone through and a later webhook or poll will reconcile it.

    When a webhook for the charge was reconciled before the charge id was
    written here, the order it synthesized is folded into this one.
    """
    reference = req.order_reference or new_reference()
    operator_ref = req.operator_ref_id or resolve_operator_ref(provider, phone=req.mobile)
    if not operator_ref:
        raise InvalidPayloadError(f"Unsupported mobile-money operator for {req.mobile}")

    customer_name = f"{req.first_name} {req.last_name}".strip()
    try:
        order = store.create_order(
            merge_line_items(req.items or []),
            order_reference=reference,
            user_id=req.user_id,
            customer_name=customer_name,
            email=req.email or "",
            status=OrderStatus.PENDING.value,
            amount=req.amount,
            currency=req.currency,
            mobile=req.mobile,
            shipping_address=req.address,
        )
    except DuplicateKeyError:
        raise InvalidPayloadError(f"Order reference {reference} already used")

    try:
        charge = provider.initialize_charge(
            mobile=req.mobile,
            operator_ref_id=operator_ref,
            amount=req.amount,
            currency=req.currency,
            customer={"email": req.email, "first_name": req.first_name, "last_name": req.last_name},
            reference=reference,
        )
    except ProviderError as exc:
        if exc.status is not None:
            log.warning("Charge rejected for order %s: %s", reference, exc)
            try:
                store.mark_failed(order.id)
            except DocumentStoreError:
                log.exception("Could not mark order %s failed", reference)
        else:
            log.warning("Charge outcome unknown for order %s, left pending: %s", reference, exc)
        raise

    try:
        store.mark_initialized(order.id, charge.charge_id)
    except DuplicateKeyError:
        if reconciler is None:
            raise
        reconciler.absorb_recovery_order(order, charge.charge_id)
    store.refresh(order)
    return CheckoutResult(
        charge_id=charge.charge_id,
        order_reference=reference,
        order_id=order.id,
        status=order.status,
        redirect_url=success_url(reference),
    )
