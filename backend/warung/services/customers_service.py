# Overview: Service-layer operations for customers; encapsulates business logic and database work.

from __future__ import annotations

from sqlalchemy import or_, update

from ..extensions import db
from ..models import Customer, Debt, Transaction
from ..validation import ConflictError, NotFoundError
from .pagination import paginate


def list_customers(
    *,
    page: int | None = None,
    limit: int | None = None,
    search: str | None = None,
) -> dict:
    query = db.session.query(Customer)
    if search:
        term = f"%{search.strip()}%"
        query = query.filter(or_(Customer.name.ilike(term), Customer.phone.ilike(term)))
    query = query.order_by(Customer.name.asc(), Customer.id.asc())
    return paginate(query, page=page, limit=limit, serialize=lambda c: c.to_dict())


def get_customer(customer_id: int) -> Customer:
    c = db.session.get(Customer, customer_id)
    if c is None:
        raise NotFoundError(f"Customer {customer_id} not found")
    return c


def create_customer(*, patch: dict) -> dict:
    c = Customer()
    for k, v in patch.items():
        setattr(c, k, v)
    db.session.add(c)
    db.session.commit()
    return c.to_dict()


def update_customer(*, customer_id: int, patch: dict) -> dict:
    c = get_customer(customer_id)
    for k, v in patch.items():
        setattr(c, k, v)
    db.session.commit()
    return c.to_dict()


def delete_customer(*, customer_id: int) -> None:
    """
    Delete a customer who owes (or owed) nothing.

    Raises ConflictError if any debt references the customer. Their sales
    stay, with the customer reference cleared.
    """
    c = get_customer(customer_id)

    has_debt = db.session.query(Debt.id).filter(Debt.customer_id == c.id).first()
    if has_debt is not None:
        raise ConflictError(f"Customer '{c.name}' has debt records and cannot be deleted")

    db.session.execute(
        update(Transaction)
        .where(Transaction.customer_id == c.id)
        .values(customer_id=None)
        .execution_options(synchronize_session="fetch")
    )
    db.session.delete(c)
    db.session.commit()
