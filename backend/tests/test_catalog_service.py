"""
Catalog service tests.

Verifies:
- Product and category names are unique regardless of case
- The database index still refuses a duplicate the name check did not see
"""

from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from warung.extensions import db
from warung.models import Category, Product
from warung.services import categories_service, products_service
from warung.validation import ConflictError


def _product_patch(name):
    return {"name": name, "purchase_price": Decimal("3000"), "selling_price": Decimal("4000")}


def test_duplicate_product_name_any_case(db_session):
    products_service.create_product(patch=_product_patch("Teh Pucuk"))

    with pytest.raises(ConflictError, match="already exists"):
        products_service.create_product(patch=_product_patch("TEH PUCUK"))


def test_concurrent_product_create_is_a_conflict(db_session, monkeypatch):
    products_service.create_product(patch=_product_patch("Teh"))
    # A second writer that checked before the first one committed
    monkeypatch.setattr(products_service, "_require_name_free", lambda *a, **kw: None)

    with pytest.raises(ConflictError, match="Product 'TEH' already exists"):
        products_service.create_product(patch=_product_patch("TEH"))

    assert [p.name for p in db.session.query(Product).all()] == ["Teh"]


def test_rename_onto_existing_product_is_a_conflict(db_session, monkeypatch):
    products_service.create_product(patch=_product_patch("Teh"))
    other = products_service.create_product(patch=_product_patch("Kopi"))
    monkeypatch.setattr(products_service, "_require_name_free", lambda *a, **kw: None)

    with pytest.raises(ConflictError):
        products_service.update_product(product_id=other["id"], patch={"name": "teh"})

    assert db.session.get(Product, other["id"], populate_existing=True).name == "Kopi"


def test_concurrent_category_create_is_a_conflict(db_session, monkeypatch):
    categories_service.create_category(patch={"name": "Minuman"})
    monkeypatch.setattr(categories_service, "_require_name_free", lambda *a, **kw: None)

    with pytest.raises(ConflictError, match="Category 'minuman' already exists"):
        categories_service.create_category(patch={"name": "minuman"})

    assert db.session.query(Category).count() == 1


def test_index_rejects_raw_duplicate(db_session):
    db.session.add(Category(name="Sembako"))
    db.session.commit()

    db.session.add(Category(name="SEMBAKO"))
    with pytest.raises(IntegrityError):
        db.session.commit()
    db.session.rollback()
