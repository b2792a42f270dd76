from fastapi import Depends, Request
from sqlalchemy.orm import Session
from storefront_payments.db.session import SessionLocal
from storefront_payments.db.store import DocumentStore
from storefront_payments.kafka.producer import emit
from storefront_payments.services.provider import ProviderClient
from storefront_payments.services.reconciliation import Reconciler

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def get_store(db: Session = Depends(get_db)) -> DocumentStore:
    return DocumentStore(db)

def get_provider(request: Request) -> ProviderClient:
    # Built once at startup so the operator cache is shared across requests
    provider = getattr(request.app.state, "provider", None)
    if provider is None:
        provider = request.app.state.provider = ProviderClient()
    return provider

def get_publisher():
    return emit

def get_reconciler(store: DocumentStore = Depends(get_store), publish=Depends(get_publisher)) -> Reconciler:
    return Reconciler(store, publish=publish)
