"""
Stock ledger tests.

Verifies:
- Pre-check sums repeated products and names the short product
- Conditional decrement never drives stock negative
- Purchases increment stock
"""

import logging

import pytest

from warung.extensions import db
from warung.models import Product
from warung.services.stock_service import (
    apply_stock_movements,
    check_stock,
    decrement_stock,
    increment_stock,
)
from warung.validation import InsufficientStockError, NotFoundError


def _stock(product_id):
    return db.session.get(Product, product_id, populate_existing=True).stock


def test_check_stock_passes_when_available(db_session, indomie, beras):
    products = check_stock([(indomie.id, 10), (beras.id, 1)])
    assert set(products) == {indomie.id, beras.id}


def test_check_stock_sums_repeated_lines(db_session, beras):
    with pytest.raises(InsufficientStockError) as exc:
        check_stock([(beras.id, 2), (beras.id, 2)])

    assert exc.value.details == {
        "product_id": beras.id,
        "product_name": "Beras Ramos 5kg",
        "requested_quantity": 4,
        "available_quantity": 3,
    }
    assert "Beras Ramos 5kg" in str(exc.value)
    assert "available 3" in str(exc.value)


def test_check_stock_unknown_product(db_session):
    with pytest.raises(NotFoundError, match="Product 999 not found"):
        check_stock([(999, 1)])


def test_check_stock_ignores_availability_for_purchases(db_session, beras):
    check_stock([(beras.id, 50)], require_available=False)


def test_rejection_is_logged(db_session, beras, caplog):
    caplog.set_level(logging.INFO)
    with pytest.raises(InsufficientStockError):
        check_stock([(beras.id, 5)])
    assert any("Rejected sale line" in r.getMessage() for r in caplog.records)


def test_decrement_stock(db_session, beras):
    decrement_stock(beras.id, 2)
    db.session.commit()
    assert _stock(beras.id) == 1


def test_decrement_refuses_to_go_negative(db_session, beras):
    # Simulates a concurrent sale that drained the shelf after the pre-check
    with pytest.raises(InsufficientStockError):
        decrement_stock(beras.id, 4)
    db.session.rollback()
    assert _stock(beras.id) == 3


def test_decrement_unknown_product(db_session):
    with pytest.raises(NotFoundError):
        decrement_stock(12345, 1)


def test_increment_stock(db_session, beras):
    increment_stock(beras.id, 7)
    db.session.commit()
    assert _stock(beras.id) == 10


def test_apply_stock_movements_both_directions(db_session, indomie, beras):
    apply_stock_movements([(indomie.id, 3), (beras.id, 1), (indomie.id, 1)], outbound=True)
    db.session.commit()
    assert _stock(indomie.id) == 6
    assert _stock(beras.id) == 2

    apply_stock_movements([(indomie.id, 4)], outbound=False)
    db.session.commit()
    assert _stock(indomie.id) == 10
