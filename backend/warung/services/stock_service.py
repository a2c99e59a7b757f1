# Overview: Stock checks and movements caused by sales and purchases.

from __future__ import annotations

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..models import Product
from ..validation import InsufficientStockError, NotFoundError
from warung.time_utils import utcnow


def _totals_by_product(lines) -> dict[int, int]:
    totals: dict[int, int] = {}
    for product_id, quantity in lines:
        totals[product_id] = totals.get(product_id, 0) + quantity
    return totals


def check_stock(lines, *, require_available: bool = True) -> dict[int, Product]:
    """
    Pre-write check for (product_id, quantity) pairs.

    Quantities of repeated products are summed before comparing with stock.
    Raises NotFoundError for unknown products and InsufficientStockError when
    the shelf cannot cover a product. Returns the products by id.
    """
    products: dict[int, Product] = {}
    for product_id, qty in _totals_by_product(lines).items():
        product = db.session.get(Product, product_id, populate_existing=True)
        if product is None:
            raise NotFoundError(f"Product {product_id} not found")
        if require_available and qty > product.stock:
            current_app.logger.info(
                "Rejected sale line: product_id=%s requested=%s available=%s",
                product_id, qty, product.stock,
            )
            raise InsufficientStockError(product.id, product.name, qty, product.stock)
        products[product_id] = product
    return products


def decrement_stock(product_id: int, quantity: int) -> None:
    """
    Take `quantity` off the shelf with one conditional UPDATE.

    Zero rows affected means a concurrent sale got there first; that is the
    insufficient-stock error, never a negative stock.
    """
    stmt = (
        update(Product)
        .where(Product.id == product_id, Product.stock >= quantity)
        .values(stock=Product.stock - quantity, updated_at=utcnow())
        .execution_options(synchronize_session="fetch")
    )
    result = db.session.execute(stmt)
    if result.rowcount != 1:
        product = db.session.get(Product, product_id, populate_existing=True)
        if product is None:
            raise NotFoundError(f"Product {product_id} not found")
        raise InsufficientStockError(product.id, product.name, quantity, product.stock)


def increment_stock(product_id: int, quantity: int) -> None:
    stmt = (
        update(Product)
        .where(Product.id == product_id)
        .values(stock=Product.stock + quantity, updated_at=utcnow())
        .execution_options(synchronize_session="fetch")
    )
    result = db.session.execute(stmt)
    if result.rowcount != 1:
        raise NotFoundError(f"Product {product_id} not found")


def apply_stock_movements(lines, *, outbound: bool) -> None:
    """Decrement (sale) or increment (purchase) stock for every line."""
    for product_id, qty in _totals_by_product(lines).items():
        if outbound:
            decrement_stock(product_id, qty)
        else:
            increment_stock(product_id, qty)
