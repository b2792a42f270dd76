from typing import List, Optional

from storefront_payments.core.errors import NotFoundError, ProviderError
from storefront_payments.core.logging import get_logger
from storefront_payments.db.models import Address
from storefront_payments.db.store import DocumentStore
from storefront_payments.services.operators import resolve_operator_ref
from storefront_payments.services.provider import ProviderClient

log = get_logger("addresses")


def _operator_ref(provider: ProviderClient, operator: Optional[str], phone: Optional[str]) -> Optional[str]:
    # An unreachable gateway must not block saving an address
    try:
        return resolve_operator_ref(provider, operator=operator, phone=phone)
    except ProviderError as exc:
        log.warning("Operator lookup failed, saving address without operator ref: %s", exc)
        return None


def list_addresses(store: DocumentStore, user_id: str) -> List[Address]:
    """Return the user's addresses, newest first, repairing duplicate defaults.

    Setting a default is two writes, so a crash in between can leave two
    defaults behind; the newest one wins here.
    """
    addresses = store.list_addresses(user_id)
    defaults = [a for a in addresses if a.is_default]
    if len(defaults) > 1:
        keep = defaults[0]
        log.warning("User %s has %d default addresses; keeping %s", user_id, len(defaults), keep.id)
        store.unset_other_defaults(user_id, keep_id=keep.id)
        addresses = store.list_addresses(user_id)
    return addresses


def get_owned(store: DocumentStore, user_id: str, address_id: str) -> Address:
    address = store.fetch_address(address_id)
    if address is None or address.user_id != user_id:
        raise NotFoundError("Address not found")
    return address


def create_address(store: DocumentStore, provider: ProviderClient, user_id: str, data: dict) -> Address:
    data = {k: v for k, v in data.items() if v is not None}
    data["operator_ref"] = _operator_ref(provider, data.get("operator"), data.get("phone"))
    if data.get("is_default"):
        store.unset_other_defaults(user_id)
    return store.create_address(user_id=user_id, **data)


def update_address(store: DocumentStore, provider: ProviderClient, user_id: str, address_id: str, updates: dict) -> Address:
    address = get_owned(store, user_id, address_id)
    updates = dict(updates)
    if ("operator" in updates or "phone" in updates) and not updates.get("operator_ref"):
        ref = _operator_ref(provider, updates.get("operator", address.operator), updates.get("phone", address.phone))
        if ref:
            updates["operator_ref"] = ref
    if updates.get("is_default"):
        store.unset_other_defaults(user_id, keep_id=address.id)
    return store.patch_address(address, **updates)


def set_default(store: DocumentStore, user_id: str, address_id: str) -> Address:
    address = get_owned(store, user_id, address_id)
    store.unset_other_defaults(user_id, keep_id=address.id)
    return store.patch_address(address, is_default=True)


def delete_address(store: DocumentStore, user_id: str, address_id: str) -> None:
    store.delete_address(get_owned(store, user_id, address_id))
