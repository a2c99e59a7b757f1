from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from warung.time_utils import to_utc_z
from ._money import money_str


class Debt(db.Model):
    """
    Receivable opened by a sale that left money owing.

    At most one per transaction. Never deleted when settled: status moves to
    "paid" and the row stays as payment history.

    INVARIANTS:
    - remaining_debt == max(total_debt - paid_amount, 0)
    - paid_amount == sum(payments.amount)
    """
    __tablename__ = "debts"
    __table_args__ = (
        db.UniqueConstraint("transaction_id", name="uq_debts_transaction"),
        db.Index("ix_debts_customer", "customer_id"),
        db.Index("ix_debts_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False)
    transaction_id = db.Column(
        db.Integer,
        db.ForeignKey("transactions.id", ondelete="CASCADE"),
        nullable=False,
    )

    total_debt = db.Column(db.Numeric(14, 2), nullable=False)
    paid_amount = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0"))
    remaining_debt = db.Column(db.Numeric(14, 2), nullable=False)
    status = db.Column(db.String(16), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("debts", lazy=True))
    transaction = db.relationship("Transaction", back_populates="debt")
    payments = db.relationship(
        "DebtPayment",
        back_populates="debt",
        cascade="all, delete-orphan",
        order_by="DebtPayment.id",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_payments: bool = True) -> dict:
        data = {
            "id": self.id,
            "customer_id": self.customer_id,
            "customer": self.customer.to_dict() if self.customer else None,
            "transaction_id": self.transaction_id,
            "invoice_number": self.transaction.invoice_number if self.transaction else None,
            "total_debt": money_str(self.total_debt),
            "paid_amount": money_str(self.paid_amount),
            "remaining_debt": money_str(self.remaining_debt),
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_payments:
            data["payments"] = [p.to_dict() for p in self.payments]
        return data


class DebtPayment(db.Model):
    """Append-only payment against a debt."""
    __tablename__ = "debt_payments"
    __table_args__ = (
        db.CheckConstraint("amount > 0", name="ck_debt_payments_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    debt_id = db.Column(
        db.Integer,
        db.ForeignKey("debts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    amount = db.Column(db.Numeric(14, 2), nullable=False)
    payment_date = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    debt = db.relationship("Debt", back_populates="payments")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "debt_id": self.debt_id,
            "amount": money_str(self.amount),
            "payment_date": to_utc_z(self.payment_date),
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
