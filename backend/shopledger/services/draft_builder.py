# Overview: In-memory invoice draft (lines, customer, tax, payment selection) with recompute-on-edit totals.

"""
Invoice Draft Builder

DESIGN:
- Lines are frozen DraftLine values held in a tuple; every edit builds a
  new tuple (dataclasses.replace) and then re-runs pricing.compute_totals.
- No database access: catalog rows are passed in by the caller.
- Payment selection (status / paid amount / method) lives on the draft and
  is re-clamped whenever the grand total moves.
- Empty drafts are legal here; the commit sequencer rejects them.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from decimal import Decimal

from ..validation import ValidationError, to_decimal, to_optional_int
from . import payment_state
from .pricing import (
    TaxConfig,
    Totals,
    ZERO,
    coerce_quantity,
    compute_totals,
    line_discount,
    line_total,
)


LINE_CATALOG = "catalog"
LINE_MANUAL = "manual"

PAYMENT_METHODS = ("cash", "upi", "card")

EDITABLE_LINE_FIELDS = {
    "quantity",
    "unit_price",
    "description",
    "item_code",
    "discount_percent",
    "discount_amount",
}


@dataclass(frozen=True)
class DraftLine:
    line_type: str = LINE_MANUAL
    product_id: int | None = None
    variant_id: int | None = None
    item_code: str = ""
    description: str = ""
    quantity: Decimal = Decimal("1")
    unit_price: Decimal = ZERO
    discount_percent: Decimal = ZERO
    discount_amount: Decimal = ZERO

    @property
    def is_catalog(self) -> bool:
        return self.line_type == LINE_CATALOG

    @property
    def line_discount(self) -> Decimal:
        return line_discount(self)

    @property
    def line_total(self) -> Decimal:
        return line_total(self)

    def to_dict(self) -> dict:
        return {
            "line_type": self.line_type,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "item_code": self.item_code,
            "description": self.description,
            "quantity": str(self.quantity),
            "unit_price": str(self.unit_price),
            "discount_percent": str(self.discount_percent),
            "discount_amount": str(self.discount_amount),
            "line_discount": str(self.line_discount),
            "line_total": str(self.line_total),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DraftLine":
        line_type = data.get("line_type") or LINE_MANUAL
        if line_type not in (LINE_CATALOG, LINE_MANUAL):
            raise ValidationError(f"Unknown line_type: {line_type}")
        return cls(
            line_type=line_type,
            product_id=to_optional_int(data.get("product_id"), "product_id"),
            variant_id=to_optional_int(data.get("variant_id"), "variant_id"),
            item_code=data.get("item_code") or "",
            description=data.get("description") or "",
            quantity=coerce_quantity(data.get("quantity", "1")),
            unit_price=_non_negative(data.get("unit_price"), "unit_price"),
            discount_percent=_percent(data.get("discount_percent")),
            discount_amount=_non_negative(data.get("discount_amount"), "discount_amount"),
        )


def _non_negative(value, field_name: str) -> Decimal:
    amount = to_decimal(value, field_name)
    if amount < ZERO:
        raise ValidationError(f"{field_name} must be >= 0")
    return amount


def _percent(value) -> Decimal:
    pct = _non_negative(value, "discount_percent")
    if pct > Decimal("100"):
        raise ValidationError("discount_percent cannot exceed 100")
    return pct


def seed_price(product, variant=None) -> Decimal:
    """
    Unit price for a freshly picked catalog item.

    Variant price override first; otherwise the offer price when it is set
    and lower than the list price; otherwise the list price.
    """
    if variant is not None and variant.price is not None:
        return Decimal(variant.price)
    price = Decimal(product.price) if product.price is not None else None
    offer = Decimal(product.offer_price) if product.offer_price is not None else None
    if offer is not None and (price is None or offer < price):
        return offer
    return price if price is not None else ZERO


def variant_description(product_name: str, variant) -> str:
    base = (product_name or "").split(" (")[0]
    return f"{base} ({variant.color or ''} {variant.size or ''})"


@dataclass
class InvoiceDraftBuilder:
    customer_name: str = ""
    customer_phone: str = ""
    customer_id: int | None = None
    reference_by: str = ""
    tax: TaxConfig = field(default_factory=TaxConfig)
    payment_status: str = payment_state.STATUS_UNPAID
    paid_amount: Decimal = ZERO
    payment_method: str = "cash"
    lines: tuple = ()
    totals: Totals = field(init=False)

    def __post_init__(self):
        self.lines = tuple(self.lines)
        self._recompute()

    # ------------------------------------------------------------------
    # Lines
    # ------------------------------------------------------------------

    def add_catalog_line(self, product, variant=None) -> int:
        if variant is not None and variant.product_id != product.id:
            raise ValidationError(f"Variant {variant.id} does not belong to product {product.id}")
        line = DraftLine(
            line_type=LINE_CATALOG,
            product_id=product.id,
            item_code=product.item_code or "",
            description=product.name or "",
            unit_price=seed_price(product),
        )
        self._set_lines(self.lines + (line,))
        index = len(self.lines) - 1
        if variant is not None:
            self.select_variant(index, product, variant)
        return index

    def add_manual_line(self, description: str = "", unit_price=ZERO, quantity=1) -> int:
        line = DraftLine(
            line_type=LINE_MANUAL,
            description=description or "",
            quantity=coerce_quantity(quantity),
            unit_price=_non_negative(unit_price, "unit_price"),
        )
        self._set_lines(self.lines + (line,))
        return len(self.lines) - 1

    def select_product(self, index: int, product) -> None:
        """Point a line at a catalog product; clears any chosen variant."""
        current = self._line(index)
        self._replace_line(index, replace(
            current,
            line_type=LINE_CATALOG,
            product_id=product.id,
            variant_id=None,
            item_code=product.item_code or "",
            description=product.name or "",
            unit_price=seed_price(product),
        ))

    def select_variant(self, index: int, product, variant) -> None:
        current = self._line(index)
        if current.product_id != product.id or variant.product_id != product.id:
            raise ValidationError(f"Variant {variant.id} does not belong to the product on line {index}")
        unit_price = Decimal(variant.price) if variant.price is not None else current.unit_price
        self._replace_line(index, replace(
            current,
            variant_id=variant.id,
            description=variant_description(current.description or product.name, variant),
            unit_price=unit_price,
        ))

    def update_line(self, index: int, field_name: str, value) -> DraftLine:
        if field_name not in EDITABLE_LINE_FIELDS:
            raise ValidationError(f"Field not editable: {field_name}")
        current = self._line(index)

        if field_name == "quantity":
            value = coerce_quantity(value)
        elif field_name == "unit_price":
            value = _non_negative(value, "unit_price")
        elif field_name == "discount_amount":
            value = _non_negative(value, "discount_amount")
        elif field_name == "discount_percent":
            value = _percent(value)
        else:
            value = "" if value is None else str(value).strip()

        updated = replace(current, **{field_name: value})
        self._replace_line(index, updated)
        return updated

    def remove_line(self, index: int) -> None:
        self._line(index)
        self._set_lines(self.lines[:index] + self.lines[index + 1:])

    # ------------------------------------------------------------------
    # Header fields
    # ------------------------------------------------------------------

    def set_customer(self, name=None, phone=None, customer_id=None, reference_by=None) -> None:
        if name is not None:
            self.customer_name = str(name).strip()
        if phone is not None:
            self.customer_phone = str(phone).strip()
        if reference_by is not None:
            self.reference_by = str(reference_by).strip()
        self.customer_id = customer_id

    def set_tax(self, tax_type, tax_percent=None) -> None:
        if tax_percent is None:
            tax_percent = self.tax.tax_percent
        self.tax = TaxConfig.build(tax_type, tax_percent)
        self._recompute()

    def select_payment_status(self, status: str, amount=None) -> None:
        self.payment_status, self.paid_amount = payment_state.select_status(
            status, self.totals.grand_total, amount=amount, current=self.paid_amount,
        )

    def set_payment_method(self, method: str) -> None:
        method = (method or "").strip().lower()
        if method not in PAYMENT_METHODS:
            raise ValidationError(f"payment_method must be one of {', '.join(PAYMENT_METHODS)}")
        self.payment_method = method

    @property
    def label(self) -> str:
        return self.customer_name or "New Invoice"

    # ------------------------------------------------------------------
    # Totals
    # ------------------------------------------------------------------

    def compute_totals(self) -> Totals:
        return compute_totals(self.lines, self.tax)

    def _recompute(self) -> None:
        self.totals = self.compute_totals()
        self.payment_status, self.paid_amount = payment_state.reclamp(
            self.payment_status, self.paid_amount, self.totals.grand_total,
        )

    def _line(self, index: int) -> DraftLine:
        if not isinstance(index, int) or index < 0 or index >= len(self.lines):
            raise ValidationError(f"Line {index} does not exist")
        return self.lines[index]

    def _replace_line(self, index: int, line: DraftLine) -> None:
        self._set_lines(self.lines[:index] + (line,) + self.lines[index + 1:])

    def _set_lines(self, lines: tuple) -> None:
        self.lines = lines
        self._recompute()

    # ------------------------------------------------------------------
    # Serialization (draft_sessions.payload)
    # ------------------------------------------------------------------

    def to_dict(self) -> dict:
        return {
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "customer_id": self.customer_id,
            "reference_by": self.reference_by,
            "tax_type": self.tax.tax_type,
            "tax_percent": str(self.tax.tax_percent),
            "payment_status": self.payment_status,
            "paid_amount": str(self.paid_amount),
            "payment_method": self.payment_method,
            "lines": [line.to_dict() for line in self.lines],
            "totals": {k: str(v) for k, v in self.totals.to_dict().items()},
        }

    @classmethod
    def from_dict(cls, data: dict | None) -> "InvoiceDraftBuilder":
        data = data or {}
        return cls(
            customer_name=data.get("customer_name") or "",
            customer_phone=data.get("customer_phone") or "",
            customer_id=to_optional_int(data.get("customer_id"), "customer_id"),
            reference_by=data.get("reference_by") or "",
            tax=TaxConfig.build(data.get("tax_type"), data.get("tax_percent")),
            payment_status=payment_state.normalize_status(data.get("payment_status") or payment_state.STATUS_UNPAID),
            paid_amount=to_decimal(data.get("paid_amount"), "paid_amount"),
            payment_method=data.get("payment_method") or "cash",
            lines=tuple(DraftLine.from_dict(item) for item in data.get("lines") or []),
        )
