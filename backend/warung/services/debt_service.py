# Overview: Debt payments, debt reads and the payment-history drift audit.

"""
Debt Payment Recorder

WRITE SEQUENCE:
1. lock the debt row
2. insert the DebtPayment
3. recompute paid_amount as the SUM of the debt's payment rows
4. update remaining/status on the debt and paid/status on its sale

Aggregates are recomputed from payment rows instead of added to, so
concurrent payments cannot drift the stored totals. The debt's version
counter turns a lost update into a StaleDataError, which is retried.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from flask import current_app
from sqlalchemy import desc, func

from ..extensions import db
from ..models import Debt, DebtPayment, PaymentStatus
from ..validation import NotFoundError, ValidationError, parse_money
from warung.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .pagination import paginate
from .receivable_service import ZERO, apply_debt_aggregates, remaining_amount


def _sum_payments(debt_id: int) -> Decimal:
    total = (
        db.session.query(func.coalesce(func.sum(DebtPayment.amount), 0))
        .filter(DebtPayment.debt_id == debt_id)
        .scalar()
    )
    return Decimal(str(total)).quantize(Decimal("0.01"))


def _sync_transaction(debt: Debt) -> None:
    txn = debt.transaction
    if txn is None:
        return
    status = PaymentStatus.derive(debt.paid_amount, txn.total_amount).value
    if txn.paid_amount != debt.paid_amount:
        txn.paid_amount = debt.paid_amount
    if txn.payment_status != status:
        txn.payment_status = status


def record_payment(debt_id: int, amount, notes: str | None = None) -> tuple[DebtPayment, Debt]:
    """
    Append a payment to a debt and refresh its aggregates.

    Raises:
        ValidationError: amount is not a positive number or exceeds what is owed
        NotFoundError: debt does not exist
    """
    value = parse_money(amount, "amount")
    if value <= 0:
        raise ValidationError("amount must be greater than 0")
    clean_notes = (str(notes).strip() or None) if notes is not None else None

    def _op() -> tuple[DebtPayment, Debt]:
        debt = lock_for_update(
            db.session.query(Debt).filter_by(id=debt_id).populate_existing()
        ).first()
        if debt is None:
            raise NotFoundError(f"Debt {debt_id} not found")
        if value > debt.remaining_debt:
            raise ValidationError("Payment amount exceeds remaining debt")

        payment = DebtPayment(
            debt_id=debt.id,
            amount=value,
            payment_date=utcnow(),
            notes=clean_notes,
        )
        db.session.add(payment)
        db.session.flush()

        apply_debt_aggregates(debt, _sum_payments(debt.id))
        _sync_transaction(debt)
        db.session.commit()

        current_app.logger.info(
            "Recorded payment %s on debt %s: amount=%s remaining=%s",
            payment.id, debt.id, payment.amount, debt.remaining_debt,
        )
        return payment, debt

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_debt(debt_id: int) -> Debt:
    debt = db.session.get(Debt, debt_id)
    if debt is None:
        raise NotFoundError(f"Debt {debt_id} not found")
    return debt


def list_debts(
    *,
    page: int | None = None,
    limit: int | None = None,
    status: str | None = None,
    customer_id: int | None = None,
) -> dict:
    query = db.session.query(Debt)
    if status:
        query = query.filter(Debt.status == status)
    if customer_id is not None:
        query = query.filter(Debt.customer_id == customer_id)
    query = query.order_by(desc(Debt.created_at), desc(Debt.id))
    return paginate(query, page=page, limit=limit, serialize=lambda d: d.to_dict())


def list_payments(debt_id: int) -> list[DebtPayment]:
    get_debt(debt_id)
    return (
        db.session.query(DebtPayment)
        .filter(DebtPayment.debt_id == debt_id)
        .order_by(desc(DebtPayment.payment_date), desc(DebtPayment.id))
        .all()
    )


def debt_stats() -> dict:
    open_filter = Debt.status != PaymentStatus.PAID.value
    outstanding = (
        db.session.query(func.coalesce(func.sum(Debt.remaining_debt), 0))
        .filter(open_filter)
        .scalar()
    )
    outstanding_count = db.session.query(func.count(Debt.id)).filter(open_filter).scalar()
    paid_count = (
        db.session.query(func.count(Debt.id))
        .filter(Debt.status == PaymentStatus.PAID.value)
        .scalar()
    )
    return {
        "total_outstanding": f"{Decimal(str(outstanding)):.2f}",
        "outstanding_count": outstanding_count or 0,
        "total_paid_count": paid_count or 0,
    }


# =============================================================================
# AUDIT
# =============================================================================

@dataclass
class DebtDrift:
    debt_id: int
    invoice_number: str | None
    stored_paid: Decimal
    payments_total: Decimal
    stored_remaining: Decimal
    expected_remaining: Decimal
    stored_status: str
    expected_status: str

    def to_dict(self) -> dict:
        return {
            "debt_id": self.debt_id,
            "invoice_number": self.invoice_number,
            "stored_paid": f"{self.stored_paid:.2f}",
            "payments_total": f"{self.payments_total:.2f}",
            "stored_remaining": f"{self.stored_remaining:.2f}",
            "expected_remaining": f"{self.expected_remaining:.2f}",
            "stored_status": self.stored_status,
            "expected_status": self.expected_status,
        }


def audit_debts(*, fix: bool = False) -> list[DebtDrift]:
    """
    Find debts whose aggregates disagree with their payment rows.

    With fix=True the aggregates (and the parent sale's paid/status) are
    recomputed from the payments and committed.
    """
    sums = dict(
        db.session.query(DebtPayment.debt_id, func.coalesce(func.sum(DebtPayment.amount), 0))
        .group_by(DebtPayment.debt_id)
        .all()
    )

    drifts: list[DebtDrift] = []
    for debt in db.session.query(Debt).order_by(Debt.id).all():
        paid = Decimal(str(sums.get(debt.id, ZERO))).quantize(Decimal("0.01"))
        remaining = remaining_amount(debt.total_debt, paid)
        status = PaymentStatus.derive(paid, debt.total_debt).value
        if debt.paid_amount == paid and debt.remaining_debt == remaining and debt.status == status:
            continue

        drifts.append(DebtDrift(
            debt_id=debt.id,
            invoice_number=debt.transaction.invoice_number if debt.transaction else None,
            stored_paid=debt.paid_amount,
            payments_total=paid,
            stored_remaining=debt.remaining_debt,
            expected_remaining=remaining,
            stored_status=debt.status,
            expected_status=status,
        ))
        if fix:
            apply_debt_aggregates(debt, paid)
            _sync_transaction(debt)

    if drifts:
        current_app.logger.warning("Debt audit found %d drifted debt(s)", len(drifts))
    if fix and drifts:
        db.session.commit()
    return drifts
