from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import Integer, String, DateTime, ForeignKey, Boolean, Numeric, JSON
from datetime import datetime
from decimal import Decimal
from enum import Enum
from storefront_payments.db.session import Base

class OrderStatus(str, Enum):
    PENDING = "pending"
    INITIALIZED = "initialized"
    PAID = "paid"
    FAILED = "failed"

class Order(Base):
    __tablename__ = "orders"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_reference: Mapped[str] = mapped_column(String(120), unique=True, nullable=False)
    charge_id: Mapped[str | None] = mapped_column(String(120), unique=True, nullable=True)
    user_id: Mapped[str | None] = mapped_column(String(120), index=True, nullable=True)
    customer_name: Mapped[str] = mapped_column(String(255), default="")
    email: Mapped[str] = mapped_column(String(255), default="")
    status: Mapped[str] = mapped_column(String(32), default=OrderStatus.PENDING.value)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0)
    currency: Mapped[str] = mapped_column(String(3), default="MWK")
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(), nullable=True)
    stock_applied: Mapped[bool] = mapped_column(Boolean, default=False)
    verified: Mapped[bool] = mapped_column(Boolean, default=False)
    provider_ref_id: Mapped[str | None] = mapped_column(String(120), nullable=True)
    mobile: Mapped[str | None] = mapped_column(String(32), nullable=True)
    operator_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    completed_at: Mapped[str | None] = mapped_column(String(64), nullable=True)
    shipping_address: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    provider_payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(), default=lambda: datetime.utcnow())
    updated_at: Mapped[datetime] = mapped_column(DateTime(), default=lambda: datetime.utcnow(), onupdate=lambda: datetime.utcnow())

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan", order_by="OrderItem.id")

class OrderItem(Base):
    __tablename__ = "order_items"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"))
    product_ref: Mapped[str] = mapped_column(String(120))
    quantity: Mapped[int] = mapped_column(Integer)

    order = relationship("Order", back_populates="items")

class Product(Base):
    __tablename__ = "products"
    id: Mapped[str] = mapped_column(String(120), primary_key=True)
    name: Mapped[str] = mapped_column(String(240), default="")
    price: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=0)
    currency: Mapped[str] = mapped_column(String(3), default="MWK")
    stock: Mapped[int | None] = mapped_column(Integer, nullable=True)

class Address(Base):
    __tablename__ = "addresses"
    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(120), index=True)
    first_name: Mapped[str] = mapped_column(String(120), default="")
    last_name: Mapped[str] = mapped_column(String(120), default="")
    email: Mapped[str] = mapped_column(String(255), default="")
    phone: Mapped[str] = mapped_column(String(32))
    operator: Mapped[str] = mapped_column(String(64), default="")
    operator_ref: Mapped[str | None] = mapped_column(String(120), nullable=True)
    address: Mapped[str] = mapped_column(String(255), default="")
    city: Mapped[str] = mapped_column(String(120), default="")
    state: Mapped[str] = mapped_column(String(120), default="")
    zip: Mapped[str] = mapped_column(String(32), default="")
    is_default: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(), default=lambda: datetime.utcnow())
