"""Internal value types shared by the provider client, store and reconciler."""
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, List, Optional


class ChargeStatus(str, Enum):
    SUCCESS = "success"
    PENDING = "pending"
    FAILED = "failed"


@dataclass(frozen=True)
class LineItem:
    product_ref: str
    quantity: int


@dataclass(frozen=True)
class Operator:
    id: str
    short_code: str
    ref_id: str
    name: str


@dataclass(frozen=True)
class InitializedCharge:
    charge_id: str
    raw: dict = field(repr=False, default_factory=dict)


@dataclass(frozen=True)
class VerifiedCharge:
    """Provider verify response reduced to the fields the service trusts."""
    status: ChargeStatus
    charge_id: Optional[str] = None
    reference: Optional[str] = None
    ref_id: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    mobile: Optional[str] = None
    operator_name: Optional[str] = None
    payer_name: Optional[str] = None
    email: Optional[str] = None
    completed_at: Optional[str] = None
    user_id: Optional[str] = None
    shipping_address: Optional[dict] = None
    items: List[LineItem] = field(default_factory=list)
    raw: dict = field(repr=False, default_factory=dict)

    @property
    def is_success(self) -> bool:
        return self.status is ChargeStatus.SUCCESS


@dataclass(frozen=True)
class OrderKey:
    """Identity of an order: a merchant reference or a provider charge id."""
    kind: str
    value: str

    REFERENCE = "reference"
    CHARGE_ID = "charge_id"

    @classmethod
    def reference(cls, value: str) -> "OrderKey":
        return cls(cls.REFERENCE, value)

    @classmethod
    def charge(cls, value: str) -> "OrderKey":
        return cls(cls.CHARGE_ID, value)


def merge_line_items(items: List[LineItem]) -> List[LineItem]:
    # Repeated product refs are additive; first-seen order is kept
    totals: dict[str, int] = {}
    for it in items:
        totals[it.product_ref] = totals.get(it.product_ref, 0) + it.quantity
    return [LineItem(ref, qty) for ref, qty in totals.items()]


def first_present(*values: Any) -> Any:
    for v in values:
        if v is not None and v != "":
            return v
    return None
