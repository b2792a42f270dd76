from datetime import datetime
from decimal import Decimal
import threading

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from storefront_payments.core.errors import MissingReferenceError
from storefront_payments.db.models import OrderStatus, Product
from storefront_payments.db.session import Base
from storefront_payments.db.store import DocumentStore
from storefront_payments.domain import ChargeStatus, LineItem, OrderKey, VerifiedCharge
from storefront_payments.services.reconciliation import Reconciler


def success(charge_id="chg_1", reference="txn_1", **kw) -> VerifiedCharge:
    kw.setdefault("amount", Decimal("5000.00"))
    kw.setdefault("currency", "MWK")
    return VerifiedCharge(status=ChargeStatus.SUCCESS, charge_id=charge_id, reference=reference, **kw)


@pytest.fixture()
def initialized_order(store):
    def _make(items=(("p1", 2),), reference="txn_1", charge_id="chg_1", **fields):
        fields.setdefault("amount", Decimal("4000.00"))
        fields.setdefault("currency", "MWK")
        return store.create_order(
            [LineItem(ref, qty) for ref, qty in items],
            order_reference=reference,
            charge_id=charge_id,
            status=OrderStatus.INITIALIZED.value,
            **fields,
        )
    return _make


def test_reconcile_marks_paid_and_decrements_stock(store, reconciler, events, initialized_order, add_product, stock_of):
    add_product("p1", 10)
    order = initialized_order()

    result = reconciler.reconcile(success())

    assert result.order_id == order.id
    assert result.created is False
    assert result.stock_applied is True
    order = store.get_order(order.id)
    assert order.status == OrderStatus.PAID.value
    assert order.stock_applied is True
    assert order.verified is True
    assert order.paid_at is not None
    assert order.amount == Decimal("5000.00")
    assert stock_of("p1") == 8
    assert [e["type"] for e in events] == ["payment.succeeded"]
    assert events[0]["order_reference"] == "txn_1"


def test_reconcile_is_idempotent(store, reconciler, events, initialized_order, add_product, stock_of):
    add_product("p1", 10)
    add_product("p2", 5)
    order = initialized_order(items=(("p1", 2), ("p2", 1), ("p1", 1)))

    for _ in range(3):
        result = reconciler.reconcile(success())
        assert result.status == OrderStatus.PAID.value

    assert stock_of("p1") == 7
    assert stock_of("p2") == 4
    assert store.get_order(order.id).status == OrderStatus.PAID.value
    assert len(events) == 1


def test_paid_at_first_write_wins(store, events, initialized_order):
    order = initialized_order(items=())
    first = datetime(2026, 10, 19, 10, 0, 0)
    later = datetime(2026, 10, 19, 12, 30, 0)

    Reconciler(store, publish=events.append, clock=lambda: first).reconcile(success())
    Reconciler(store, publish=events.append, clock=lambda: later).reconcile(success())

    assert store.get_order(order.id).paid_at == first


@pytest.mark.parametrize("stock, qty", [(1, 3), (0, 1), (2, 2)])
def test_stock_floors_at_zero(reconciler, initialized_order, add_product, stock_of, stock, qty):
    add_product("p1", stock)
    initialized_order(items=(("p1", qty),))
    reconciler.reconcile(success())
    assert stock_of("p1") == 0


def test_missing_product_is_skipped(store, reconciler, initialized_order, add_product, stock_of, caplog):
    add_product("p2", 4)
    order = initialized_order(items=(("ghost", 1), ("p2", 1)))

    reconciler.reconcile(success())

    assert store.get_order(order.id).status == OrderStatus.PAID.value
    assert stock_of("p2") == 3
    assert "ghost" in caplog.text


def test_product_without_numeric_stock_is_skipped(reconciler, initialized_order, add_product, stock_of):
    add_product("p1", None)
    initialized_order(items=(("p1", 1),))
    result = reconciler.reconcile(success())
    assert result.status == OrderStatus.PAID.value
    assert stock_of("p1") is None


def test_gateway_values_never_overwrite_customer_values(store, reconciler, initialized_order):
    order = initialized_order(items=(), email="mine@example.com", customer_name="Tiwonge Phiri")
    reconciler.reconcile(success(email="gateway@example.com", payer_name="T P"))
    order = store.get_order(order.id)
    assert order.email == "mine@example.com"
    assert order.customer_name == "Tiwonge Phiri"


def test_empty_customer_fields_are_filled(store, reconciler, initialized_order):
    order = initialized_order(items=(), email="", customer_name="")
    reconciler.reconcile(success(email="gateway@example.com", payer_name="T P", mobile="0991234567"))
    order = store.get_order(order.id)
    assert order.email == "gateway@example.com"
    assert order.customer_name == "T P"
    assert order.mobile == "0991234567"


def test_lookup_falls_back_to_charge_id(store, reconciler, initialized_order):
    order = initialized_order(items=(), reference="txn_local", charge_id="chg_7")
    result = reconciler.reconcile(success(charge_id="chg_7", reference=None))
    assert result.order_id == order.id
    assert result.created is False


def test_reference_preferred_over_charge_id(store, reconciler, initialized_order):
    order = initialized_order(items=(), reference="txn_1", charge_id=None)
    result = reconciler.reconcile(success(charge_id="chg_new", reference="txn_1"))
    assert result.order_id == order.id
    assert store.get_order(order.id).charge_id == "chg_new"


def test_synthesizes_missing_order(store, reconciler, events, add_product, stock_of):
    add_product("p1", 5)
    charge = success(
        charge_id="chg_2", reference="txn_lost", email="x@example.com", user_id="user_3",
        items=[LineItem("p1", 2)], shipping_address={"city": "Lilongwe"},
    )
    result = reconciler.reconcile(charge)

    assert result.created is True
    order = store.fetch_order(OrderKey.reference("txn_lost"))
    assert order.status == OrderStatus.PAID.value
    assert order.charge_id == "chg_2"
    assert order.user_id == "user_3"
    assert order.shipping_address == {"city": "Lilongwe"}
    assert [(i.product_ref, i.quantity) for i in order.items] == [("p1", 2)]
    assert stock_of("p1") == 3

    again = reconciler.reconcile(charge)
    assert again.created is False
    assert again.order_id == result.order_id
    assert stock_of("p1") == 3


def test_synthesized_order_without_items(store, reconciler):
    result = reconciler.reconcile(success(charge_id="chg_3", reference=None))
    order = store.get_order(result.order_id)
    assert result.created is True
    assert order.order_reference == "chg_3"
    assert order.items == []
    assert order.status == OrderStatus.PAID.value


def test_missing_identity_is_hard_failure(reconciler):
    with pytest.raises(MissingReferenceError):
        reconciler.reconcile(VerifiedCharge(status=ChargeStatus.SUCCESS))


def test_record_failure(store, reconciler, events, initialized_order):
    order = initialized_order(items=())
    result = reconciler.apply(VerifiedCharge(status=ChargeStatus.FAILED, charge_id="chg_1", reference="txn_1"))
    assert result.status == OrderStatus.FAILED.value
    assert store.get_order(order.id).status == OrderStatus.FAILED.value
    assert [e["type"] for e in events] == ["payment.failed"]


def test_paid_order_never_fails(store, reconciler, events, initialized_order):
    order = initialized_order(items=())
    reconciler.reconcile(success())
    reconciler.record_failure(VerifiedCharge(status=ChargeStatus.FAILED, charge_id="chg_1", reference="txn_1"))
    assert store.get_order(order.id).status == OrderStatus.PAID.value
    assert [e["type"] for e in events] == ["payment.succeeded"]


def test_pending_changes_nothing(store, reconciler, initialized_order):
    order = initialized_order(items=())
    assert reconciler.apply(VerifiedCharge(status=ChargeStatus.PENDING, charge_id="chg_1")) is None
    assert store.get_order(order.id).status == OrderStatus.INITIALIZED.value


def test_publish_failure_does_not_fail_reconcile(store, initialized_order, add_product, stock_of):
    def broken(event):
        raise RuntimeError("broker down")

    add_product("p1", 3)
    order = initialized_order()
    result = Reconciler(store, publish=broken).reconcile(success())
    assert result.status == OrderStatus.PAID.value
    assert stock_of("p1") == 1
    assert store.get_order(order.id).stock_applied is True


def test_concurrent_reconciles_apply_stock_once(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'payments.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    make_session = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    with make_session() as db:
        db.add(Product(id="p1", name="p1", stock=10))
        db.commit()
        DocumentStore(db).create_order(
            [LineItem("p1", 2)], order_reference="txn_1", charge_id="chg_1",
            status=OrderStatus.INITIALIZED.value, amount=Decimal("5000.00"), currency="MWK",
        )

    barrier = threading.Barrier(2, timeout=30)
    results, errors = [], []

    def deliver():
        with make_session() as db:
            reconciler = Reconciler(DocumentStore(db), publish=lambda event: None)
            barrier.wait()
            try:
                results.append(reconciler.reconcile(success()))
            except Exception as exc:
                errors.append(exc)

    threads = [threading.Thread(target=deliver) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    try:
        assert errors == []
        assert sorted(r.stock_applied for r in results) == [False, True]
        assert {r.status for r in results} == {OrderStatus.PAID.value}
        with make_session() as db:
            assert db.get(Product, "p1").stock == 8
    finally:
        engine.dispose()
