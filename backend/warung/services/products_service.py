# Overview: Service-layer operations for products; encapsulates business logic and database work.

from __future__ import annotations

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Category, Product, TransactionItem
from ..validation import ConflictError, NotFoundError, ValidationError
from .pagination import paginate


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        setattr(p, k, v)


def _require_name_free(name: str, *, exclude_id: int | None = None) -> None:
    query = db.session.query(Product).filter(func.lower(Product.name) == name.lower())
    if exclude_id is not None:
        query = query.filter(Product.id != exclude_id)
    if query.first() is not None:
        raise ConflictError(f"Product '{name}' already exists")


def _commit_named(name: str) -> None:
    # uq_products_name_lower catches a concurrent create the check above missed
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(f"Product '{name}' already exists")


def _require_category(category_id: int | None) -> None:
    if category_id is not None and db.session.get(Category, category_id) is None:
        raise NotFoundError(f"Category {category_id} not found")


def list_products(
    *,
    page: int | None = None,
    limit: int | None = None,
    search: str | None = None,
    category_id: int | None = None,
) -> dict:
    """
    List products ordered by name.

    Args:
        page: Page number (1-indexed)
        limit: Items per page (default DEFAULT_PAGE_SIZE, max MAX_PAGE_SIZE)
        search: Case-insensitive substring of the product name
        category_id: Only products in this category
    """
    query = db.session.query(Product)
    if search:
        query = query.filter(Product.name.ilike(f"%{search.strip()}%"))
    if category_id is not None:
        query = query.filter(Product.category_id == category_id)
    query = query.order_by(Product.name.asc(), Product.id.asc())
    return paginate(query, page=page, limit=limit, serialize=lambda p: p.to_dict())


def get_product(product_id: int) -> Product:
    p = db.session.get(Product, product_id)
    if p is None:
        raise NotFoundError(f"Product {product_id} not found")
    return p


def create_product(*, patch: dict) -> dict:
    """
    Create product using a validated patch dict.

    Raises:
        ConflictError: If the name is already used
        NotFoundError: If category_id does not exist
    """
    name = patch.get("name")
    if not name:
        raise ValidationError("name is required")
    _require_name_free(name)
    _require_category(patch.get("category_id"))

    p = Product()
    apply_product_patch(p, patch)
    if p.stock is None:
        p.stock = 0

    db.session.add(p)
    _commit_named(p.name)
    return p.to_dict()


def update_product(*, product_id: int, patch: dict) -> dict:
    """
    Update a product. Setting `stock` directly is a restock/stock take.

    Raises:
        NotFoundError: If the product or category does not exist
        ConflictError: If the new name is already used
    """
    p = get_product(product_id)

    if "name" in patch and patch["name"].lower() != p.name.lower():
        _require_name_free(patch["name"], exclude_id=p.id)
    if "category_id" in patch:
        _require_category(patch["category_id"])

    apply_product_patch(p, patch)
    _commit_named(p.name)
    return p.to_dict()


def delete_product(*, product_id: int) -> None:
    """
    Delete a product that was never sold or purchased.

    Raises:
        NotFoundError: If the product does not exist
        ConflictError: If any transaction line references it
    """
    p = get_product(product_id)

    used = db.session.query(TransactionItem.id).filter_by(product_id=p.id).first()
    if used is not None:
        raise ConflictError(f"Product '{p.name}' is used by existing transactions and cannot be deleted")

    db.session.delete(p)
    db.session.commit()
