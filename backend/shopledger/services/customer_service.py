# Overview: Optional customer registry; invoices copy name/phone by value.

from __future__ import annotations

from sqlalchemy import or_

from ..extensions import db
from ..models import Customer
from ..validation import ModelValidationPolicy, validate_payload

CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields={"name", "phone", "email", "address"},
    required_on_create={"name"},
)


def create_customer(payload: dict) -> Customer:
    patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=False)
    customer = Customer(**patch)
    db.session.add(customer)
    db.session.commit()
    return customer


def list_customers(search: str | None = None) -> list[Customer]:
    query = db.session.query(Customer)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(or_(Customer.name.ilike(like), Customer.phone.ilike(like)))
    return query.order_by(Customer.name.asc(), Customer.id.asc()).all()
