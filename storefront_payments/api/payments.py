from fastapi import APIRouter, Depends, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from typing import Optional

from storefront_payments.api.deps import get_provider, get_reconciler, get_store
from storefront_payments.core.config import settings
from storefront_payments.db.store import DocumentStore
from storefront_payments.domain import LineItem
from storefront_payments.schemas import (
    InitializePayment, InitializeResponse, OperatorList, OperatorRead, VerifyData, VerifyResponse,
)
from storefront_payments.services import ingress
from storefront_payments.services.checkout import CheckoutRequest, initialize_checkout
from storefront_payments.services.provider import ProviderClient
from storefront_payments.services.reconciliation import Reconciler

router = APIRouter()

@router.post("/initialize", response_model=InitializeResponse)
def initialize(payload: InitializePayment, store: DocumentStore = Depends(get_store),
               provider: ProviderClient = Depends(get_provider),
               reconciler: Reconciler = Depends(get_reconciler)):
    result = initialize_checkout(store, provider, CheckoutRequest(
        mobile=payload.mobile,
        amount=payload.amount,
        currency=(payload.currency or settings.DEFAULT_CURRENCY).upper(),
        email=payload.email or "",
        first_name=payload.first_name or "",
        last_name=payload.last_name or "",
        operator_ref_id=payload.operator_ref_id,
        order_reference=payload.order_reference,
        user_id=payload.user_id,
        items=[LineItem(it.product_ref, it.quantity) for it in payload.items],
        address=payload.address,
    ), reconciler=reconciler)
    return InitializeResponse(
        charge_id=result.charge_id,
        order_reference=result.order_reference,
        status=result.status,
        redirect_url=result.redirect_url,
    )

@router.get("/verify", response_model=VerifyResponse)
def verify(
    charge_id: Optional[str] = Query(default=None, alias="chargeId"),
    charge_id_legacy: Optional[str] = Query(default=None, alias="charge_id"),
    reference: Optional[str] = Query(default=None),
    provider: ProviderClient = Depends(get_provider),
    reconciler: Reconciler = Depends(get_reconciler),
):
    outcome = ingress.poll_verification(charge_id or charge_id_legacy, reference, provider, reconciler)
    data = VerifyData(order_id=outcome.order_id)
    if outcome.charge is not None:
        c = outcome.charge
        data = VerifyData(
            charge_id=c.charge_id,
            ref_id=c.ref_id,
            amount=float(c.amount) if c.amount is not None else None,
            mobile=c.mobile,
            operator_name=c.operator_name,
            completed_at=c.completed_at,
            order_id=outcome.order_id,
        )
    return VerifyResponse(status=outcome.status, data=data, message=outcome.message)

@router.post("/webhook")
async def webhook(request: Request, provider: ProviderClient = Depends(get_provider),
                  reconciler: Reconciler = Depends(get_reconciler)):
    # Signature covers the exact bytes received, so read them before any parsing
    raw = await request.body()
    secret = settings.require("PROVIDER_WEBHOOK_SECRET")
    outcome = await run_in_threadpool(ingress.handle_webhook, raw, request.headers, secret, provider, reconciler)
    return JSONResponse(status_code=outcome.http_status, content=outcome.body)

@router.get("/operators", response_model=OperatorList)
def operators(provider: ProviderClient = Depends(get_provider)):
    return OperatorList(data=[OperatorRead.model_validate(op) for op in provider.list_operators()])
