from __future__ import annotations

from ..extensions import db
from warung.time_utils import to_utc_z
from ._money import money_str


class Category(db.Model):
    """Product grouping. Names are unique regardless of case."""
    __tablename__ = "categories"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    description = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "created_at": to_utc_z(self.created_at),
        }


db.Index("uq_categories_name_lower", db.func.lower(Category.name), unique=True)


class Product(db.Model):
    """
    Product master data. Names are unique regardless of case.

    STOCK: `stock` is the shelf quantity and never drops below zero. Sales
    decrement it through stock_service.apply_stock_movements using a
    conditional UPDATE, never a read-modify-write from Python.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
        db.Index("ix_products_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    category_id = db.Column(
        db.Integer,
        db.ForeignKey("categories.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )

    stock = db.Column(db.Integer, nullable=False, default=0)
    purchase_price = db.Column(db.Numeric(14, 2), nullable=False)
    selling_price = db.Column(db.Numeric(14, 2), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    category = db.relationship("Category", backref=db.backref("products", lazy=True))

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} stock={self.stock}>"

    def to_dict(self, include_category: bool = True) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "category_id": self.category_id,
            "stock": self.stock,
            "purchase_price": money_str(self.purchase_price),
            "selling_price": money_str(self.selling_price),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_category:
            data["category"] = self.category.to_dict() if self.category else None
        return data


db.Index("uq_products_name_lower", db.func.lower(Product.name), unique=True)
