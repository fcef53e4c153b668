from __future__ import annotations

from ..extensions import db
from shopledger.time_utils import to_utc_z


class Product(db.Model):
    """
    Product master data.

    Catalog rows are owned by catalog management; the invoicing core only
    reads them, except for the guarded stock decrement in stock_service.

    STOCK DESIGN:
    - Products with variants track stock per variant; Product.stock_quantity
      is ignored for them.
    - Products without variants track stock on Product.stock_quantity.
    - The two counters are never summed and then split.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("stock_quantity >= 0", name="ck_products_stock_nonnegative"),
        db.Index("ix_products_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    item_code = db.Column(db.String(64), nullable=True, unique=True)

    price = db.Column(db.Numeric(12, 2), nullable=True)
    # Discounted selling price; preferred over price when set
    offer_price = db.Column(db.Numeric(12, 2), nullable=True)

    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    variants = db.relationship(
        "ProductVariant",
        backref=db.backref("product", lazy=True),
        lazy=True,
        order_by="ProductVariant.id",
    )

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "item_code": self.item_code,
            "price": self.price,
            "offer_price": self.offer_price,
            "stock_quantity": self.stock_quantity,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ProductVariant(db.Model):
    """A purchasable size/color configuration of a product with its own stock."""
    __tablename__ = "product_variants"
    __table_args__ = (
        db.CheckConstraint("stock_quantity >= 0", name="ck_variants_stock_nonnegative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    size = db.Column(db.String(32), nullable=True)
    color = db.Column(db.String(32), nullable=True)

    # Optional override of the product price
    price = db.Column(db.Numeric(12, 2), nullable=True)
    stock_quantity = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<ProductVariant id={self.id} product_id={self.product_id} {self.color!r}/{self.size!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "size": self.size,
            "color": self.color,
            "price": self.price,
            "stock_quantity": self.stock_quantity,
            "created_at": to_utc_z(self.created_at),
        }
