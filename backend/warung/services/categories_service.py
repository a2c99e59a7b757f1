# Overview: Service-layer operations for categories; encapsulates business logic and database work.

from __future__ import annotations

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Category, Product
from ..validation import ConflictError, NotFoundError, ValidationError


def _require_name_free(name: str, *, exclude_id: int | None = None) -> None:
    query = db.session.query(Category).filter(func.lower(Category.name) == name.lower())
    if exclude_id is not None:
        query = query.filter(Category.id != exclude_id)
    if query.first() is not None:
        raise ConflictError(f"Category '{name}' already exists")


def _commit_named(name: str) -> None:
    # uq_categories_name_lower catches a concurrent create the check above missed
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(f"Category '{name}' already exists")


def list_categories() -> list[dict]:
    rows = db.session.query(Category).order_by(Category.name.asc()).all()
    return [c.to_dict() for c in rows]


def get_category(category_id: int) -> Category:
    c = db.session.get(Category, category_id)
    if c is None:
        raise NotFoundError(f"Category {category_id} not found")
    return c


def create_category(*, patch: dict) -> dict:
    name = patch.get("name")
    if not name:
        raise ValidationError("name is required")
    _require_name_free(name)

    c = Category(name=name, description=patch.get("description"))
    db.session.add(c)
    _commit_named(name)
    return c.to_dict()


def update_category(*, category_id: int, patch: dict) -> dict:
    c = get_category(category_id)
    if "name" in patch and patch["name"].lower() != c.name.lower():
        _require_name_free(patch["name"], exclude_id=c.id)

    for k, v in patch.items():
        setattr(c, k, v)
    _commit_named(c.name)
    return c.to_dict()


def delete_category(*, category_id: int) -> None:
    """Refused while any product still belongs to the category."""
    c = get_category(category_id)

    in_use = db.session.query(func.count(Product.id)).filter(Product.category_id == c.id).scalar()
    if in_use:
        raise ConflictError(
            f"Category '{c.name}' still has {in_use} product(s) and cannot be deleted"
        )

    db.session.delete(c)
    db.session.commit()
