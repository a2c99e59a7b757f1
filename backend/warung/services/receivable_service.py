# Overview: Keeps the single Debt row of a sale consistent with the sale's paid/total amounts.

"""
Receivable Reconciliation

RULES (per sale):
- remaining = max(total - paid, 0), status = PaymentStatus.derive(paid, total)
- remaining > 0 and no debt yet  -> open one; an opening paid amount is
  recorded as the first DebtPayment so history matches paid_amount
- debt exists                    -> bring paid/remaining/status/customer in line,
  appending a DebtPayment for any increase in paid amount
- remaining == 0 and no debt     -> nothing to do

Debts are never deleted here; a settled debt stays with status "paid".
Running the reconciler twice with the same amounts changes nothing.
"""

from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..models import Debt, DebtPayment, PaymentStatus, Transaction, TransactionType
from ..validation import ValidationError
from warung.time_utils import utcnow
from .concurrency import lock_for_update


OPENING_PAYMENT_NOTE = "Down payment at sale"
EDIT_PAYMENT_NOTE = "Payment recorded by editing the sale"

ZERO = Decimal("0")


def remaining_amount(total: Decimal, paid: Decimal) -> Decimal:
    return max(total - paid, ZERO)


def apply_debt_aggregates(debt: Debt, paid: Decimal) -> None:
    """Set paid/remaining/status from `paid`, touching only changed columns."""
    remaining = remaining_amount(debt.total_debt, paid)
    status = PaymentStatus.derive(paid, debt.total_debt).value
    if debt.paid_amount != paid:
        debt.paid_amount = paid
    if debt.remaining_debt != remaining:
        debt.remaining_debt = remaining
    if debt.status != status:
        debt.status = status


def find_debt_for_transaction(transaction_id: int) -> Debt | None:
    return lock_for_update(
        db.session.query(Debt).filter_by(transaction_id=transaction_id).populate_existing()
    ).first()


def _open_debt(txn: Transaction) -> Debt:
    paid = txn.paid_amount
    debt = Debt(
        customer_id=txn.customer_id,
        transaction_id=txn.id,
        total_debt=txn.total_amount,
        paid_amount=paid,
        remaining_debt=remaining_amount(txn.total_amount, paid),
        status=PaymentStatus.derive(paid, txn.total_amount).value,
    )
    db.session.add(debt)
    db.session.flush()

    if paid > 0:
        db.session.add(DebtPayment(
            debt_id=debt.id,
            amount=paid,
            payment_date=utcnow(),
            notes=OPENING_PAYMENT_NOTE,
        ))
        db.session.flush()
    return debt


def _sync_debt(debt: Debt, txn: Transaction) -> Debt:
    paid = txn.paid_amount
    increase = paid - debt.paid_amount
    if increase < 0:
        raise ValidationError(
            "paid_amount cannot be lower than the amount already paid on the debt "
            f"({debt.paid_amount})"
        )
    if increase > 0:
        db.session.add(DebtPayment(
            debt_id=debt.id,
            amount=increase,
            payment_date=utcnow(),
            notes=EDIT_PAYMENT_NOTE,
        ))

    apply_debt_aggregates(debt, paid)
    if txn.customer_id is not None and debt.customer_id != txn.customer_id:
        debt.customer_id = txn.customer_id
    db.session.flush()
    return debt


def reconcile_receivable(txn: Transaction) -> Debt | None:
    """
    Create, update or settle the debt of `txn`. Flushes, never commits.

    Raises ValidationError when money is owed but no customer is attached,
    or when the paid amount would go below what the debt already recorded.
    """
    if txn.type != TransactionType.SALE.value:
        return None

    remaining = remaining_amount(txn.total_amount, txn.paid_amount)
    debt = find_debt_for_transaction(txn.id)

    if remaining > 0:
        if txn.customer_id is None:
            raise ValidationError("customer_id is required when the sale is not fully paid")
        if debt is None:
            return _open_debt(txn)
        return _sync_debt(debt, txn)

    if debt is not None:
        return _sync_debt(debt, txn)

    return None
