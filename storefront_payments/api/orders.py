from fastapi import APIRouter, Depends
from storefront_payments.api.deps import get_store
from storefront_payments.core.errors import NotFoundError
from storefront_payments.db.store import DocumentStore
from storefront_payments.domain import OrderKey
from storefront_payments.schemas import OrderRead

router = APIRouter()

@router.get("/{reference}", response_model=OrderRead)
def get_order(reference: str, store: DocumentStore = Depends(get_store)):
    order = store.find_order([OrderKey.reference(reference), OrderKey.charge(reference)])
    if order is None:
        raise NotFoundError("Order not found")
    return OrderRead.model_validate(order)
