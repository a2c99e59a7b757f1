"""
Sale transaction writer tests.

Verifies:
- Validation happens before any write, one message per failure
- Header, items, stock and receivable land together or not at all
- Update path re-validates against the stored total and reconciles the debt
- Delete path restores stock and removes the receivable
"""

import logging
from datetime import datetime
from decimal import Decimal

import pytest

from conftest import sale_payload
from warung.extensions import db
from warung.models import (
    Debt,
    DebtPayment,
    InvoiceSequence,
    Product,
    Transaction,
    TransactionItem,
)
from warung.services import transaction_service
from warung.services.transaction_service import (
    create_transaction,
    delete_transaction,
    update_transaction,
)
from warung.validation import (
    ConflictError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)


def _stock(product_id):
    return db.session.get(Product, product_id, populate_existing=True).stock


def _count(model):
    return db.session.query(model).count()


# =============================================================================
# CREATE - HAPPY PATHS
# =============================================================================


class TestCreateSale:

    def test_paid_sale_moves_stock_and_opens_no_debt(self, db_session, indomie):
        txn = create_transaction(sale_payload(indomie, quantity=3))

        assert txn.payment_status == "paid"
        assert txn.total_amount == Decimal("10500.00")
        assert txn.invoice_number.endswith("-00001")
        assert [(i.product_id, i.quantity) for i in txn.items] == [(indomie.id, 3)]
        assert _stock(indomie.id) == 7
        assert _count(Debt) == 0

    def test_partial_sale_opens_debt_with_opening_payment(self, db_session, indomie, customer):
        body = sale_payload(
            indomie, quantity=2, price=50000, status="partial", paid=40000, customer_id=customer.id
        )
        txn = create_transaction(body)

        debt = db.session.query(Debt).filter_by(transaction_id=txn.id).one()
        assert debt.customer_id == customer.id
        assert debt.total_debt == Decimal("100000.00")
        assert debt.paid_amount == Decimal("40000.00")
        assert debt.remaining_debt == Decimal("60000.00")
        assert debt.status == "partial"
        assert [p.amount for p in debt.payments] == [Decimal("40000.00")]
        assert _stock(indomie.id) == 8

    def test_unpaid_sale_opens_debt_without_payments(self, db_session, indomie, customer):
        txn = create_transaction(
            sale_payload(indomie, quantity=1, status="unpaid", customer_id=customer.id)
        )

        debt = db.session.query(Debt).filter_by(transaction_id=txn.id).one()
        assert debt.status == "unpaid"
        assert debt.remaining_debt == Decimal("3500.00")
        assert debt.payments == []

    def test_subtotal_is_computed_server_side(self, db_session, indomie):
        body = sale_payload(indomie, quantity=4)
        body["items"][0]["subtotal"] = "1"

        txn = create_transaction(body)
        assert txn.items[0].subtotal == Decimal("14000.00")

    def test_zero_total_paid_sale(self, db_session, indomie):
        txn = create_transaction(sale_payload(indomie, quantity=1, price=0))
        assert txn.payment_status == "paid"
        assert txn.total_amount == Decimal("0.00")

    def test_numeric_strings_and_numbers_both_accepted(self, db_session, indomie):
        body = {
            "total_amount": 7000,
            "paid_amount": "7000.00",
            "payment_status": "paid",
            "items": [{"product_id": str(indomie.id), "quantity": "2", "price": 3500}],
        }
        txn = create_transaction(body)
        assert txn.paid_amount == Decimal("7000.00")

    def test_invoice_counter_resets_each_month(self, db_session, indomie):
        # 17:30 UTC on Jan 31 is 00:30 on Feb 1 in Asia/Jakarta
        feb = create_transaction(sale_payload(indomie, quantity=1), now=datetime(2025, 1, 31, 17, 30))
        jan = create_transaction(sale_payload(indomie, quantity=1), now=datetime(2025, 1, 31, 10, 0))
        feb2 = create_transaction(sale_payload(indomie, quantity=1), now=datetime(2025, 2, 3, 3, 0))

        assert feb.invoice_number == "INV-20250201-00001"
        assert jan.invoice_number == "INV-20250131-00001"
        assert feb2.invoice_number == "INV-20250203-00002"

    def test_purchase_restocks_without_customer_or_debt(self, db_session, beras):
        body = sale_payload(beras, quantity=10, price=62000, status="unpaid")
        body["type"] = "purchase"

        txn = create_transaction(body)

        assert txn.type == "purchase"
        assert _stock(beras.id) == 13
        assert _count(Debt) == 0


# =============================================================================
# CREATE - VALIDATION (no writes on failure)
# =============================================================================


def _no_items(body, product, customer):
    body["items"] = []


def _paid_over_total(body, product, customer):
    body["paid_amount"] = "999999"


def _paid_status_short(body, product, customer):
    body["paid_amount"] = "100"


def _unpaid_with_money(body, product, customer):
    body.update(payment_status="unpaid", paid_amount="100", customer_id=customer.id)


def _partial_with_nothing_paid(body, product, customer):
    body.update(payment_status="partial", paid_amount="0", customer_id=customer.id)


def _partial_paid_in_full(body, product, customer):
    body.update(payment_status="partial", customer_id=customer.id)


def _partial_without_customer(body, product, customer):
    body.update(payment_status="partial", paid_amount="1000")


def _unpaid_without_customer(body, product, customer):
    body.update(payment_status="unpaid", paid_amount="0")


def _text_total(body, product, customer):
    body["total_amount"] = "abc"


def _negative_total(body, product, customer):
    body["total_amount"] = "-5"


def _infinite_total(body, product, customer):
    body["total_amount"] = "Infinity"


def _bool_paid(body, product, customer):
    body["paid_amount"] = True


def _unknown_status(body, product, customer):
    body["payment_status"] = "lunas"


def _missing_status(body, product, customer):
    del body["payment_status"]


def _zero_quantity(body, product, customer):
    body["items"][0]["quantity"] = 0


def _fractional_quantity(body, product, customer):
    body["items"][0]["quantity"] = 1.5


def _zero_total_unpaid(body, product, customer):
    body.update(total_amount="0", paid_amount="0", payment_status="unpaid", customer_id=customer.id)


def _unknown_type(body, product, customer):
    body["type"] = "refund"


def _sub_cent_total(body, product, customer):
    body.update(total_amount="7000.005", paid_amount="7000.005")


@pytest.mark.parametrize(
    "mutate,message",
    [
        (_no_items, "At least one item is required"),
        (_paid_over_total, "paid_amount cannot exceed total_amount"),
        (_paid_status_short, "must equal total_amount"),
        (_unpaid_with_money, "must be 0 when payment_status is unpaid"),
        (_partial_with_nothing_paid, "greater than 0 and less than total_amount"),
        (_partial_paid_in_full, "greater than 0 and less than total_amount"),
        (_partial_without_customer, "customer_id is required"),
        (_unpaid_without_customer, "customer_id is required"),
        (_text_total, "total_amount must be a number"),
        (_negative_total, "total_amount must be >= 0"),
        (_infinite_total, "total_amount must be a finite number"),
        (_bool_paid, "paid_amount must be a number"),
        (_unknown_status, "payment_status must be one of"),
        (_missing_status, "payment_status is required"),
        (_zero_quantity, "quantity must be greater than 0"),
        (_fractional_quantity, "must be an integer"),
        (_zero_total_unpaid, "total_amount 0 must have payment_status paid"),
        (_unknown_type, "type must be one of"),
        (_sub_cent_total, "total_amount cannot have more than 2 decimal places"),
    ],
)
def test_invalid_sale_is_rejected_before_any_write(db_session, indomie, customer, mutate, message):
    body = sale_payload(indomie, quantity=2)
    mutate(body, indomie, customer)

    with pytest.raises(ValidationError, match=message):
        create_transaction(body)

    assert _count(Transaction) == 0
    assert _count(InvoiceSequence) == 0
    assert _stock(indomie.id) == 10


def test_insufficient_stock_rejects_whole_sale(db_session, indomie, beras):
    body = sale_payload(indomie, quantity=1)
    body["items"].append({"product_id": beras.id, "quantity": 5, "price": "70000"})
    body["total_amount"] = body["paid_amount"] = "353500"

    with pytest.raises(InsufficientStockError) as exc:
        create_transaction(body)

    assert exc.value.details["available_quantity"] == 3
    assert exc.value.details["product_name"] == "Beras Ramos 5kg"
    assert _stock(beras.id) == 3
    assert _stock(indomie.id) == 10
    assert _count(Transaction) == 0
    assert _count(InvoiceSequence) == 0


def test_unknown_product_is_not_found(db_session, indomie):
    body = sale_payload(indomie)
    body["items"][0]["product_id"] = 9999

    with pytest.raises(NotFoundError, match="Product 9999 not found"):
        create_transaction(body)


def test_unknown_customer_is_not_found(db_session, indomie):
    body = sale_payload(indomie, status="unpaid", customer_id=4242)

    with pytest.raises(NotFoundError, match="Customer 4242 not found"):
        create_transaction(body)


# =============================================================================
# CREATE - ATOMICITY
# =============================================================================


def test_failure_after_header_rolls_everything_back(db_session, indomie, customer, monkeypatch, caplog):
    def boom(txn):
        raise RuntimeError("receivable store unavailable")

    monkeypatch.setattr(transaction_service, "reconcile_receivable", boom)
    caplog.set_level(logging.WARNING)

    body = sale_payload(indomie, quantity=2, status="unpaid", customer_id=customer.id)
    with pytest.raises(RuntimeError, match="receivable store unavailable"):
        create_transaction(body)

    assert _count(Transaction) == 0
    assert _count(TransactionItem) == 0
    assert _count(Debt) == 0
    assert _count(InvoiceSequence) == 0
    assert _stock(indomie.id) == 10
    assert any("rolling back" in r.getMessage() for r in caplog.records)

    monkeypatch.undo()
    txn = create_transaction(body)
    assert txn.invoice_number.endswith("-00001")


def test_failing_rollback_does_not_mask_original_error(db_session, indomie, monkeypatch):
    from sqlalchemy.exc import SQLAlchemyError

    def boom(txn):
        raise RuntimeError("original failure")

    real_rollback = db.session.rollback
    calls = {"n": 0}

    def flaky_rollback():
        calls["n"] += 1
        if calls["n"] == 1:
            real_rollback()
            raise SQLAlchemyError("rollback failed")
        return real_rollback()

    monkeypatch.setattr(transaction_service, "reconcile_receivable", boom)
    monkeypatch.setattr(db.session, "rollback", flaky_rollback)

    with pytest.raises(RuntimeError, match="original failure"):
        create_transaction(sale_payload(indomie))


def test_sale_losing_the_stock_race_writes_nothing(db_session, beras, monkeypatch):
    # Pre-check passes against a stale read; the conditional decrement refuses
    monkeypatch.setattr(transaction_service, "check_stock", lambda *a, **kw: {})

    with pytest.raises(InsufficientStockError) as exc:
        create_transaction(sale_payload(beras, quantity=5))

    assert exc.value.details["available_quantity"] == 3
    assert _count(Transaction) == 0
    assert _count(TransactionItem) == 0
    assert _count(InvoiceSequence) == 0
    assert _stock(beras.id) == 3


def test_concurrency_conflict_is_retried(db_session, indomie, monkeypatch, caplog):
    from sqlalchemy.exc import OperationalError

    real_issue = transaction_service.issue_invoice_number
    calls = {"n": 0}

    def locked_once(*args, **kwargs):
        calls["n"] += 1
        if calls["n"] == 1:
            raise OperationalError("UPDATE invoice_sequences", {}, Exception("database is locked"))
        return real_issue(*args, **kwargs)

    monkeypatch.setattr(transaction_service, "issue_invoice_number", locked_once)
    monkeypatch.setattr("warung.services.concurrency.time.sleep", lambda s: None)
    caplog.set_level(logging.WARNING)

    txn = create_transaction(sale_payload(indomie, quantity=1))

    assert calls["n"] == 2
    assert txn.invoice_number.endswith("-00001")
    assert _count(Transaction) == 1
    assert _stock(indomie.id) == 9
    assert any("Retrying" in r.getMessage() for r in caplog.records)


def test_persistent_stale_data_gives_up_after_three_attempts(db_session, indomie, monkeypatch):
    from sqlalchemy.orm.exc import StaleDataError

    calls = {"n": 0}

    def always_stale(txn):
        calls["n"] += 1
        raise StaleDataError("debt row changed underneath")

    monkeypatch.setattr(transaction_service, "reconcile_receivable", always_stale)
    monkeypatch.setattr("warung.services.concurrency.time.sleep", lambda s: None)

    with pytest.raises(StaleDataError):
        create_transaction(sale_payload(indomie, quantity=1))

    assert calls["n"] == 3
    assert _count(Transaction) == 0
    assert _stock(indomie.id) == 10


# =============================================================================
# UPDATE
# =============================================================================


class TestUpdateSale:

    @pytest.fixture
    def partial_sale(self, db_session, indomie, customer):
        return create_transaction(sale_payload(
            indomie, quantity=2, price=50000, status="partial", paid=40000, customer_id=customer.id
        ))

    def test_paying_in_full_settles_but_keeps_debt(self, partial_sale):
        txn = update_transaction(partial_sale.id, {"paid_amount": "100000"})

        assert txn.payment_status == "paid"
        debt = db.session.query(Debt).filter_by(transaction_id=txn.id).one()
        assert debt.status == "paid"
        assert debt.remaining_debt == Decimal("0.00")
        assert debt.paid_amount == Decimal("100000.00")
        assert sorted(p.amount for p in debt.payments) == [Decimal("40000.00"), Decimal("60000.00")]

    def test_status_paid_without_amount_pays_total(self, partial_sale):
        txn = update_transaction(partial_sale.id, {"payment_status": "paid"})
        assert txn.paid_amount == Decimal("100000.00")

    def test_increasing_partial_payment(self, partial_sale):
        txn = update_transaction(partial_sale.id, {"paid_amount": 70000, "payment_status": "partial"})

        debt = txn.debt
        assert debt.paid_amount == Decimal("70000.00")
        assert debt.remaining_debt == Decimal("30000.00")
        assert sum(p.amount for p in debt.payments) == debt.paid_amount

    def test_lowering_paid_below_recorded_payments_is_rejected(self, partial_sale):
        with pytest.raises(ValidationError, match="cannot be lower"):
            update_transaction(partial_sale.id, {"paid_amount": 10000})

        db.session.expire_all()
        assert db.session.get(Transaction, partial_sale.id).paid_amount == Decimal("40000.00")

    def test_inconsistent_status_is_rejected(self, partial_sale):
        with pytest.raises(ValidationError, match="must equal total_amount"):
            update_transaction(partial_sale.id, {"payment_status": "paid", "paid_amount": 50000})

    def test_total_and_items_are_not_editable(self, partial_sale):
        with pytest.raises(ValidationError, match="Field not allowed: total_amount"):
            update_transaction(partial_sale.id, {"total_amount": 1})

    def test_notes_edit_leaves_stock_and_invoice_alone(self, partial_sale, indomie):
        invoice = partial_sale.invoice_number
        txn = update_transaction(partial_sale.id, {"notes": "  bayar Jumat  "})

        assert txn.notes == "bayar Jumat"
        assert txn.invoice_number == invoice
        assert _stock(indomie.id) == 8
        assert len(txn.debt.payments) == 1

    def test_customer_is_required_when_reopening(self, db_session, indomie):
        txn = create_transaction(sale_payload(indomie, quantity=1))
        with pytest.raises(ValidationError, match="customer_id is required"):
            update_transaction(txn.id, {"payment_status": "unpaid"})

    def test_marking_paid_sale_partial_opens_debt(self, db_session, indomie, customer):
        txn = create_transaction(sale_payload(indomie, quantity=2))
        assert txn.debt is None

        txn = update_transaction(
            txn.id, {"payment_status": "partial", "paid_amount": 1000, "customer_id": customer.id}
        )

        debt = txn.debt
        assert debt.customer_id == customer.id
        assert debt.paid_amount == Decimal("1000.00")
        assert debt.remaining_debt == Decimal("6000.00")
        assert [p.amount for p in debt.payments] == [Decimal("1000.00")]

    def test_unknown_transaction(self, db_session):
        with pytest.raises(NotFoundError):
            update_transaction(777, {"notes": "x"})


# =============================================================================
# DELETE
# =============================================================================


def test_delete_sale_restores_stock_and_removes_debt(db_session, indomie, customer):
    txn = create_transaction(sale_payload(
        indomie, quantity=4, status="partial", paid=1000, customer_id=customer.id
    ))
    assert _stock(indomie.id) == 6

    delete_transaction(txn.id)

    assert _stock(indomie.id) == 10
    assert _count(Transaction) == 0
    assert _count(TransactionItem) == 0
    assert _count(Debt) == 0
    assert _count(DebtPayment) == 0


def test_delete_purchase_refused_once_stock_is_sold(db_session, beras):
    body = sale_payload(beras, quantity=2, price=62000)
    body["type"] = "purchase"
    purchase = create_transaction(body)
    create_transaction(sale_payload(beras, quantity=5))
    assert _stock(beras.id) == 0

    with pytest.raises(ConflictError, match="already been sold"):
        delete_transaction(purchase.id)

    assert _stock(beras.id) == 0
    assert db.session.get(Transaction, purchase.id) is not None


def test_delete_unknown_transaction(db_session):
    with pytest.raises(NotFoundError):
        delete_transaction(31337)
