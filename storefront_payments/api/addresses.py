from fastapi import APIRouter, Depends
from typing import List

from storefront_payments.api.deps import get_provider, get_store
from storefront_payments.core.auth import current_user_id
from storefront_payments.db.store import DocumentStore
from storefront_payments.schemas import AddressCreate, AddressRead, AddressUpdate
from storefront_payments.services import addresses
from storefront_payments.services.provider import ProviderClient

router = APIRouter()

@router.get("", response_model=List[AddressRead])
def list_my_addresses(user_id: str = Depends(current_user_id), store: DocumentStore = Depends(get_store)):
    return [AddressRead.model_validate(a) for a in addresses.list_addresses(store, user_id)]

@router.post("", response_model=AddressRead, status_code=201)
def add_address(payload: AddressCreate, user_id: str = Depends(current_user_id),
                store: DocumentStore = Depends(get_store), provider: ProviderClient = Depends(get_provider)):
    obj = addresses.create_address(store, provider, user_id, payload.model_dump(exclude_none=True))
    return AddressRead.model_validate(obj)

@router.patch("/{address_id}", response_model=AddressRead)
def update_address(address_id: str, payload: AddressUpdate, user_id: str = Depends(current_user_id),
                   store: DocumentStore = Depends(get_store), provider: ProviderClient = Depends(get_provider)):
    obj = addresses.update_address(store, provider, user_id, address_id, payload.model_dump(exclude_unset=True, exclude_none=True))
    return AddressRead.model_validate(obj)

@router.post("/{address_id}/default", response_model=AddressRead)
def make_default(address_id: str, user_id: str = Depends(current_user_id), store: DocumentStore = Depends(get_store)):
    return AddressRead.model_validate(addresses.set_default(store, user_id, address_id))

@router.delete("/{address_id}")
def remove_address(address_id: str, user_id: str = Depends(current_user_id), store: DocumentStore = Depends(get_store)):
    addresses.delete_address(store, user_id, address_id)
    return {"status": "success", "id": address_id}
