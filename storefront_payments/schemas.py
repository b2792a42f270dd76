from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel
from typing import List, Optional

class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True

# ---------- payments ----------
class LineItemIn(CamelModel):
    product_ref: str
    quantity: int = Field(gt=0)

class InitializePayment(CamelModel):
    mobile: str = Field(min_length=6)
    amount: Decimal = Field(gt=0)
    currency: Optional[str] = None
    operator_ref_id: Optional[str] = None
    email: Optional[str] = ""
    first_name: Optional[str] = ""
    last_name: Optional[str] = ""
    order_reference: Optional[str] = None
    user_id: Optional[str] = None
    items: List[LineItemIn] = []
    address: Optional[dict] = None

class InitializeResponse(CamelModel):
    charge_id: str
    order_reference: str
    status: str
    redirect_url: str

class VerifyData(CamelModel):
    charge_id: Optional[str] = None
    ref_id: Optional[str] = None
    amount: Optional[float] = None
    mobile: Optional[str] = None
    operator_name: Optional[str] = None
    completed_at: Optional[str] = None
    order_id: Optional[int] = None

class VerifyResponse(CamelModel):
    status: str
    data: VerifyData = VerifyData()
    message: Optional[str] = None

class OperatorRead(CamelModel):
    id: str
    short_code: str
    ref_id: str
    name: str

class OperatorList(BaseModel):
    status: str = "success"
    data: List[OperatorRead] = []

# ---------- orders ----------
class OrderItemRead(CamelModel):
    product_ref: str
    quantity: int

class OrderRead(CamelModel):
    id: int
    order_reference: str
    charge_id: Optional[str] = None
    status: str
    amount: Optional[float] = None
    currency: str
    customer_name: Optional[str] = ""
    email: Optional[str] = ""
    paid_at: Optional[datetime] = None
    items: List[OrderItemRead] = []

# ---------- addresses ----------
class AddressBase(CamelModel):
    first_name: Optional[str] = ""
    last_name: Optional[str] = ""
    email: Optional[str] = ""
    operator: Optional[str] = ""
    address: Optional[str] = ""
    city: Optional[str] = ""
    state: Optional[str] = ""
    zip: Optional[str] = ""
    is_default: bool = False

class AddressCreate(AddressBase):
    phone: str = Field(min_length=6)

class AddressUpdate(CamelModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = Field(default=None, min_length=6)
    operator: Optional[str] = None
    operator_ref: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None
    is_default: Optional[bool] = None

class AddressRead(AddressBase):
    id: str
    user_id: str
    phone: str
    operator_ref: Optional[str] = None
    created_at: Optional[datetime] = None
