# Overview: Service-layer operations for sales; encapsulates business logic and database work.

"""
Sale Transaction Writer

WRITE SEQUENCE (create):
1. issue invoice number
2. insert header
3. insert line items
4. move stock
5. reconcile receivable

All five steps share one unit of work. Any failure after step 2 rolls the
whole unit back (header, items, stock, debt and the invoice counter bump)
and the original error is re-raised.

Validation happens before any write and fails fast with one message.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from flask import current_app
from sqlalchemy import desc
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import Customer, PaymentStatus, Transaction, TransactionItem, TransactionType
from ..validation import (
    ConflictError,
    NotFoundError,
    ValidationError,
    parse_int,
    parse_money,
    parse_optional_id,
)
from warung.time_utils import utcnow
from .concurrency import lock_for_update, rollback_quietly, run_with_retry
from .invoice_service import issue_invoice_number
from .pagination import paginate
from .receivable_service import reconcile_receivable
from .stock_service import apply_stock_movements, check_stock


UPDATABLE_FIELDS = {"payment_status", "paid_amount", "notes", "customer_id"}


@dataclass
class SaleLine:
    product_id: int
    quantity: int
    price: Decimal

    @property
    def subtotal(self) -> Decimal:
        return self.price * self.quantity


@dataclass
class SaleDraft:
    type: TransactionType
    customer_id: int | None
    total_amount: Decimal
    paid_amount: Decimal
    payment_status: PaymentStatus
    notes: str | None
    lines: list[SaleLine] = field(default_factory=list)

    def stock_lines(self) -> list[tuple[int, int]]:
        return [(line.product_id, line.quantity) for line in self.lines]


# =============================================================================
# VALIDATION
# =============================================================================

def _parse_status(value) -> PaymentStatus:
    try:
        return PaymentStatus.parse(value)
    except ValueError as exc:
        raise ValidationError(str(exc))


def _parse_type(value) -> TransactionType:
    try:
        return TransactionType(value or TransactionType.SALE.value)
    except ValueError:
        raise ValidationError("type must be one of: sale, purchase")


def _parse_notes(value) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_lines(raw_items) -> list[SaleLine]:
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("At least one item is required")

    lines = []
    for index, raw in enumerate(raw_items, start=1):
        if not isinstance(raw, dict):
            raise ValidationError(f"Item {index} must be an object")
        if raw.get("product_id") is None:
            raise ValidationError(f"Item {index}: product_id is required")
        product_id = parse_int(raw.get("product_id"), f"items[{index}].product_id")
        quantity = parse_int(raw.get("quantity"), f"items[{index}].quantity")
        if quantity <= 0:
            raise ValidationError(f"Item {index}: quantity must be greater than 0")
        price = parse_money(raw.get("price"), f"items[{index}].price")
        lines.append(SaleLine(product_id=product_id, quantity=quantity, price=price))
    return lines


def check_payment_consistency(
    status: PaymentStatus,
    paid: Decimal,
    total: Decimal,
    customer_id: int | None,
    *,
    requires_customer: bool = True,
) -> None:
    """Invariants 3-5: paid within total, status matches amounts, debtor known."""
    if paid > total:
        raise ValidationError("paid_amount cannot exceed total_amount")

    if status is PaymentStatus.PAID:
        if paid != total:
            raise ValidationError("paid_amount must equal total_amount when payment_status is paid")
    elif status is PaymentStatus.UNPAID:
        if paid != 0:
            raise ValidationError("paid_amount must be 0 when payment_status is unpaid")
        if total == 0:
            raise ValidationError("A sale with total_amount 0 must have payment_status paid")
    elif status is PaymentStatus.PARTIAL:
        if not (0 < paid < total):
            raise ValidationError(
                "paid_amount must be greater than 0 and less than total_amount when payment_status is partial"
            )
    else:  # pragma: no cover - closed enum
        raise ValidationError(f"Unsupported payment_status {status}")

    if requires_customer and status is not PaymentStatus.PAID and customer_id is None:
        raise ValidationError("customer_id is required when payment_status is partial or unpaid")


def parse_sale_input(data: dict) -> SaleDraft:
    """Validation steps 1-5; no database access."""
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")

    txn_type = _parse_type(data.get("type"))
    lines = _parse_lines(data.get("items"))
    total = parse_money(data.get("total_amount"), "total_amount")
    raw_paid = data.get("paid_amount")
    paid = Decimal("0.00") if raw_paid in (None, "") else parse_money(raw_paid, "paid_amount")
    if data.get("payment_status") is None:
        raise ValidationError("payment_status is required")
    status = _parse_status(data.get("payment_status"))
    customer_id = parse_optional_id(data.get("customer_id"), "customer_id")

    check_payment_consistency(
        status, paid, total, customer_id,
        requires_customer=txn_type is TransactionType.SALE,
    )

    return SaleDraft(
        type=txn_type,
        customer_id=customer_id,
        total_amount=total,
        paid_amount=paid,
        payment_status=status,
        notes=_parse_notes(data.get("notes")),
        lines=lines,
    )


def _require_customer(customer_id: int | None) -> None:
    if customer_id is not None and db.session.get(Customer, customer_id) is None:
        raise NotFoundError(f"Customer {customer_id} not found")


# =============================================================================
# CREATE
# =============================================================================

def create_transaction(data: dict, *, now: datetime | None = None) -> Transaction:
    """
    Record a sale (or purchase) with its items, stock movement and debt.

    Raises:
        ValidationError: malformed or inconsistent input
        NotFoundError: unknown customer or product
        InsufficientStockError: a line asks for more than the shelf holds
    """
    draft = parse_sale_input(data)
    outbound = draft.type is TransactionType.SALE

    def _op() -> Transaction:
        _require_customer(draft.customer_id)
        check_stock(draft.stock_lines(), require_available=outbound)

        occurred_at = now or utcnow()
        invoice_number = issue_invoice_number(occurred_at)

        txn = Transaction(
            invoice_number=invoice_number,
            type=draft.type.value,
            customer_id=draft.customer_id,
            total_amount=draft.total_amount,
            paid_amount=draft.paid_amount,
            payment_status=draft.payment_status.value,
            notes=draft.notes,
            transaction_date=occurred_at,
        )
        db.session.add(txn)
        db.session.flush()

        try:
            for line in draft.lines:
                db.session.add(TransactionItem(
                    transaction_id=txn.id,
                    product_id=line.product_id,
                    quantity=line.quantity,
                    price=line.price,
                    subtotal=line.subtotal,
                ))
            db.session.flush()

            apply_stock_movements(draft.stock_lines(), outbound=outbound)
            reconcile_receivable(txn)
            db.session.commit()
        except (OperationalError, StaleDataError):
            raise
        except Exception:
            current_app.logger.warning(
                "Sale %s failed after header insert; rolling back", invoice_number
            )
            rollback_quietly(f"sale {invoice_number}")
            raise

        current_app.logger.info(
            "Recorded %s %s total=%s paid=%s status=%s",
            txn.type, txn.invoice_number, txn.total_amount, txn.paid_amount, txn.payment_status,
        )
        return txn

    return run_with_retry(_op)


# =============================================================================
# UPDATE
# =============================================================================

def update_transaction(transaction_id: int, data: dict) -> Transaction:
    """
    Edit payment status / paid amount / notes / customer of a sale.

    Totals, items, stock and the invoice number are never touched. The
    receivable is reconciled against the new figures.
    """
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    unknown = sorted(set(data) - UPDATABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(unknown)}")

    def _op() -> Transaction:
        txn = lock_for_update(
            db.session.query(Transaction).filter_by(id=transaction_id).populate_existing()
        ).first()
        if txn is None:
            raise NotFoundError(f"Transaction {transaction_id} not found")

        total = txn.total_amount

        customer_id = txn.customer_id
        if "customer_id" in data:
            customer_id = parse_optional_id(data.get("customer_id"), "customer_id")
            _require_customer(customer_id)

        status = _parse_status(data["payment_status"]) if data.get("payment_status") is not None else None
        if data.get("paid_amount") not in (None, ""):
            paid = parse_money(data["paid_amount"], "paid_amount")
        elif status is PaymentStatus.PAID:
            paid = total
        elif status is PaymentStatus.UNPAID:
            paid = Decimal("0.00")
        else:
            paid = txn.paid_amount
        if paid > total:
            raise ValidationError("paid_amount cannot exceed total_amount")
        if status is None:
            status = PaymentStatus.derive(paid, total)

        check_payment_consistency(
            status, paid, total, customer_id,
            requires_customer=txn.type == TransactionType.SALE.value,
        )

        txn.customer_id = customer_id
        txn.paid_amount = paid
        txn.payment_status = status.value
        if "notes" in data:
            txn.notes = _parse_notes(data.get("notes"))

        reconcile_receivable(txn)
        db.session.commit()
        return txn

    return run_with_retry(_op)


# =============================================================================
# DELETE
# =============================================================================

def delete_transaction(transaction_id: int) -> None:
    """
    Remove a transaction with its items, debt and debt payments.

    Stock moved by the transaction is put back (sales) or taken out again
    (purchases; refused if the shelf no longer holds it).
    """
    def _op() -> None:
        txn = lock_for_update(
            db.session.query(Transaction).filter_by(id=transaction_id).populate_existing()
        ).first()
        if txn is None:
            raise NotFoundError(f"Transaction {transaction_id} not found")

        lines = [(item.product_id, item.quantity) for item in txn.items]
        is_sale = txn.type == TransactionType.SALE.value
        invoice_number = txn.invoice_number

        try:
            apply_stock_movements(lines, outbound=not is_sale)
        except ConflictError as exc:
            raise ConflictError(
                f"Cannot delete {invoice_number}: purchased stock has already been sold",
                details=exc.details,
            )

        db.session.delete(txn)
        db.session.commit()
        current_app.logger.info("Deleted transaction %s", invoice_number)

    run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_transaction(transaction_id: int) -> Transaction:
    txn = db.session.get(Transaction, transaction_id)
    if txn is None:
        raise NotFoundError(f"Transaction {transaction_id} not found")
    return txn


def transaction_detail(txn: Transaction) -> dict:
    data = txn.to_dict()
    data["debt"] = txn.debt.to_dict() if txn.debt else None
    return data


def list_transactions(
    *,
    page: int | None = None,
    limit: int | None = None,
    type: str | None = None,
    payment_status: str | None = None,
    customer_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> dict:
    query = db.session.query(Transaction)
    if type:
        query = query.filter(Transaction.type == type)
    if payment_status:
        query = query.filter(Transaction.payment_status == payment_status)
    if customer_id is not None:
        query = query.filter(Transaction.customer_id == customer_id)
    if start is not None:
        query = query.filter(Transaction.transaction_date >= start)
    if end is not None:
        query = query.filter(Transaction.transaction_date < end)

    query = query.order_by(desc(Transaction.transaction_date), desc(Transaction.id))
    return paginate(query, page=page, limit=limit, serialize=lambda t: t.to_dict())
