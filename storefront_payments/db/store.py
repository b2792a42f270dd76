"""Document store facade over the SQLAlchemy session.

Exposes fetch/create/patch style operations for orders, products and
addresses. Order and stock writes that must tolerate concurrent reconcile
calls are expressed as conditional UPDATE statements.
"""
from contextlib import contextmanager
from datetime import datetime
from typing import Iterable, List, Optional, Tuple
import uuid

from sqlalchemy import case, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from storefront_payments.core.errors import DocumentStoreError, StockUpdateError
from storefront_payments.core.logging import get_logger
from storefront_payments.db.models import Address, Order, OrderItem, OrderStatus, Product
from storefront_payments.domain import LineItem, OrderKey

log = get_logger("store")

ACTIVE_STATUSES = (OrderStatus.PENDING.value, OrderStatus.INITIALIZED.value)


class DuplicateKeyError(DocumentStoreError):
    """A unique key (order reference, charge id) is already taken."""


class DocumentStore:
    def __init__(self, db: Session):
        self.db = db

    @contextmanager
    def _write(self, what: str):
        try:
            yield
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise DuplicateKeyError(f"{what}: duplicate key") from exc
        except SQLAlchemyError as exc:
            self.db.rollback()
            log.error("Document store write failed (%s): %s", what, exc)
            raise DocumentStoreError(f"{what} failed") from exc

    # ---------- orders ----------
    def fetch_order(self, key: OrderKey) -> Optional[Order]:
        column = Order.order_reference if key.kind == OrderKey.REFERENCE else Order.charge_id
        try:
            return self.db.execute(select(Order).where(column == key.value)).scalar_one_or_none()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise DocumentStoreError(f"fetch order {key.kind}={key.value} failed") from exc

    def find_order(self, keys: Iterable[OrderKey]) -> Optional[Order]:
        for key in keys:
            order = self.fetch_order(key)
            if order is not None:
                return order
        return None

    def get_order(self, order_id: int) -> Optional[Order]:
        try:
            return self.db.get(Order, order_id)
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise DocumentStoreError(f"fetch order {order_id} failed") from exc

    def create_order(self, items: List[LineItem], **fields) -> Order:
        order = Order(**fields)
        order.items = [OrderItem(product_ref=it.product_ref, quantity=it.quantity) for it in items]
        with self._write(f"create order {fields.get('order_reference')}"):
            self.db.add(order)
        self.db.refresh(order)
        return order

    def patch_order(self, order_id: int, **values) -> None:
        values["updated_at"] = datetime.utcnow()
        with self._write(f"patch order {order_id}"):
            self.db.execute(
                update(Order).where(Order.id == order_id).values(**values)
                .execution_options(synchronize_session=False)
            )

    def mark_initialized(self, order_id: int, charge_id: str) -> None:
        # A webhook may already have moved the order past pending
        with self._write(f"mark order {order_id} initialized"):
            self.db.execute(
                update(Order).where(Order.id == order_id).values(
                    charge_id=case((Order.charge_id.is_(None), charge_id), else_=Order.charge_id),
                    status=case(
                        (Order.status == OrderStatus.PENDING.value, OrderStatus.INITIALIZED.value),
                        else_=Order.status,
                    ),
                    updated_at=datetime.utcnow(),
                ).execution_options(synchronize_session=False)
            )

    def retire_recovery_order(self, recovery: Order, order_id: int, charge_id: str) -> None:
        """Delete ``recovery`` and hand its charge id to ``order_id`` in one transaction.

        Stock already applied for the recovery order's items stays applied on
        the surviving order.
        """
        values = {
            "charge_id": charge_id,
            "status": case(
                (Order.status == OrderStatus.PENDING.value, OrderStatus.INITIALIZED.value),
                else_=Order.status,
            ),
            "updated_at": datetime.utcnow(),
        }
        if recovery.stock_applied and recovery.items:
            values["stock_applied"] = True
        with self._write(f"retire recovery order {recovery.id}"):
            self.db.delete(recovery)
            self.db.flush()
            self.db.execute(
                update(Order).where(Order.id == order_id).values(**values)
                .execution_options(synchronize_session=False)
            )

    def mark_paid(self, order_id: int, paid_at: datetime, **values) -> bool:
        """Move an order to ``paid`` and claim its stock marker in one transaction.

        ``paid_at`` only fills an empty column; ``email``/``customer_name`` only
        fill empty values. Returns True when this call flipped ``stock_applied``,
        i.e. the caller owns the one stock decrement for this order.
        """
        fill_if_empty = {}
        for name in ("email", "customer_name"):
            value = values.pop(name, None)
            if value:
                column = getattr(Order, name)
                fill_if_empty[name] = case((or_(column.is_(None), column == ""), value), else_=column)
        for name in ("user_id", "charge_id"):
            value = values.pop(name, None)
            if value:
                column = getattr(Order, name)
                fill_if_empty[name] = case((column.is_(None), value), else_=column)

        with self._write(f"mark order {order_id} paid"):
            self.db.execute(
                update(Order).where(Order.id == order_id).values(
                    status=OrderStatus.PAID.value,
                    paid_at=case((Order.paid_at.is_(None), paid_at), else_=Order.paid_at),
                    verified=True,
                    updated_at=datetime.utcnow(),
                    **fill_if_empty,
                    **values,
                ).execution_options(synchronize_session=False)
            )
            claimed = self.db.execute(
                update(Order)
                .where(Order.id == order_id, Order.stock_applied.is_(False))
                .values(stock_applied=True)
                .execution_options(synchronize_session=False)
            ).rowcount
        return claimed == 1

    def mark_failed(self, order_id: int, **values) -> bool:
        # Only pending/initialized orders can fail; paid is terminal
        with self._write(f"mark order {order_id} failed"):
            changed = self.db.execute(
                update(Order)
                .where(Order.id == order_id, Order.status.in_(ACTIVE_STATUSES))
                .values(status=OrderStatus.FAILED.value, updated_at=datetime.utcnow(), **values)
                .execution_options(synchronize_session=False)
            ).rowcount
        return changed == 1

    def refresh(self, order: Order) -> Order:
        self.db.refresh(order)
        return order

    # ---------- products ----------
    def fetch_product(self, product_ref: str) -> Optional[Product]:
        try:
            return self.db.get(Product, product_ref)
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StockUpdateError(f"fetch product {product_ref} failed", product_ref) from exc

    def decrement_stock(self, product_ref: str, quantity: int) -> Tuple[int, int]:
        """Atomically set ``stock = max(stock - quantity, 0)``; returns (old, new)."""
        product = self.fetch_product(product_ref)
        if product is None:
            raise StockUpdateError(f"product {product_ref} not found", product_ref)
        if product.stock is None:
            raise StockUpdateError(f"product {product_ref} has no numeric stock", product_ref)
        old = product.stock
        try:
            self.db.execute(
                update(Product).where(Product.id == product_ref).values(
                    stock=case((Product.stock > quantity, Product.stock - quantity), else_=0)
                ).execution_options(synchronize_session=False)
            )
            self.db.commit()
            self.db.refresh(product)
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StockUpdateError(f"patch product {product_ref} failed", product_ref) from exc
        return old, product.stock

    # ---------- addresses ----------
    def list_addresses(self, user_id: str) -> List[Address]:
        stmt = select(Address).where(Address.user_id == user_id).order_by(Address.created_at.desc(), Address.id)
        return list(self.db.execute(stmt).scalars().all())

    def fetch_address(self, address_id: str) -> Optional[Address]:
        return self.db.get(Address, address_id)

    def create_address(self, **fields) -> Address:
        address = Address(id=uuid.uuid4().hex, **fields)
        with self._write("create address"):
            self.db.add(address)
        self.db.refresh(address)
        return address

    def patch_address(self, address: Address, **values) -> Address:
        with self._write(f"patch address {address.id}"):
            for k, v in values.items():
                setattr(address, k, v)
            self.db.add(address)
        self.db.refresh(address)
        return address

    def delete_address(self, address: Address) -> None:
        with self._write(f"delete address {address.id}"):
            self.db.delete(address)

    def unset_other_defaults(self, user_id: str, keep_id: Optional[str] = None) -> int:
        stmt = update(Address).where(Address.user_id == user_id, Address.is_default.is_(True))
        if keep_id:
            stmt = stmt.where(Address.id != keep_id)
        with self._write(f"unset defaults for {user_id}"):
            count = self.db.execute(
                stmt.values(is_default=False).execution_options(synchronize_session=False)
            ).rowcount
        return count
