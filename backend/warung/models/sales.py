from __future__ import annotations

import enum
from decimal import Decimal

from ..extensions import db
from warung.time_utils import to_utc_z
from ._money import money_str


class PaymentStatus(str, enum.Enum):
    """
    Closed set of payment states shared by transactions and debts.

    Stored as the lowercase value; compare members, not raw strings.
    """
    UNPAID = "unpaid"
    PARTIAL = "partial"
    PAID = "paid"

    @classmethod
    def derive(cls, paid: Decimal, total: Decimal) -> "PaymentStatus":
        if paid >= total:
            return cls.PAID
        if paid > 0:
            return cls.PARTIAL
        return cls.UNPAID

    @classmethod
    def parse(cls, value) -> "PaymentStatus":
        try:
            return cls(value)
        except ValueError:
            allowed = ", ".join(m.value for m in cls)
            raise ValueError(f"payment_status must be one of: {allowed}")


class TransactionType(str, enum.Enum):
    SALE = "sale"
    # Stock-in; never opens a receivable
    PURCHASE = "purchase"


class Transaction(db.Model):
    """
    Sale (or purchase) header.

    INVARIANTS:
    - 0 <= paid_amount <= total_amount
    - payment_status == PaymentStatus.derive(paid_amount, total_amount)
    - a sale that is not PAID references a customer
    - invoice_number is unique and issued once, at creation
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.UniqueConstraint("invoice_number", name="uq_transactions_invoice_number"),
        db.CheckConstraint("paid_amount >= 0", name="ck_transactions_paid_non_negative"),
        db.CheckConstraint("paid_amount <= total_amount", name="ck_transactions_paid_le_total"),
        db.Index("ix_transactions_date", "transaction_date"),
        db.Index("ix_transactions_type", "type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_number = db.Column(db.String(64), nullable=False)
    type = db.Column(db.String(16), nullable=False, default=TransactionType.SALE.value)

    customer_id = db.Column(
        db.Integer,
        db.ForeignKey("customers.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    total_amount = db.Column(db.Numeric(14, 2), nullable=False)
    paid_amount = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0"))
    payment_status = db.Column(db.String(16), nullable=False, index=True)
    notes = db.Column(db.Text, nullable=True)

    transaction_date = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("transactions", lazy=True))
    items = db.relationship(
        "TransactionItem",
        back_populates="transaction",
        cascade="all, delete-orphan",
        order_by="TransactionItem.id",
        lazy=True,
    )
    debt = db.relationship(
        "Debt",
        back_populates="transaction",
        cascade="all, delete-orphan",
        uselist=False,
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def status(self) -> PaymentStatus:
        return PaymentStatus(self.payment_status)

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "type": self.type,
            "customer_id": self.customer_id,
            "customer": self.customer.to_dict() if self.customer else None,
            "total_amount": money_str(self.total_amount),
            "paid_amount": money_str(self.paid_amount),
            "payment_status": self.payment_status,
            "notes": self.notes,
            "transaction_date": to_utc_z(self.transaction_date),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class TransactionItem(db.Model):
    """Line item; price is the unit price at the time of sale. Immutable."""
    __tablename__ = "transaction_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_transaction_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(
        db.Integer,
        db.ForeignKey("transactions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    product_id = db.Column(
        db.Integer,
        db.ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    quantity = db.Column(db.Integer, nullable=False)
    price = db.Column(db.Numeric(14, 2), nullable=False)
    subtotal = db.Column(db.Numeric(14, 2), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    transaction = db.relationship("Transaction", back_populates="items")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "product_id": self.product_id,
            "product": {"id": self.product.id, "name": self.product.name} if self.product else None,
            "quantity": self.quantity,
            "price": money_str(self.price),
            "subtotal": money_str(self.subtotal),
            "created_at": to_utc_z(self.created_at),
        }


class InvoiceSequence(db.Model):
    """
    Per-month invoice counter.

    One row per period ("YYYYMM"), guarded by a unique constraint and
    advanced only by a single atomic upsert-increment, so concurrent sales
    can never draw the same number. A new month simply starts a new row.
    """
    __tablename__ = "invoice_sequences"
    __table_args__ = (
        db.UniqueConstraint("period", name="uq_invoice_sequences_period"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    period = db.Column(db.String(6), nullable=False)
    last_number = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "period": self.period,
            "last_number": self.last_number,
            "updated_at": to_utc_z(self.updated_at),
        }
