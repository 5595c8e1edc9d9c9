from __future__ import annotations

import csv
import io
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from sqlalchemy import delete, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.loyalty.audit import record_event
from app.loyalty.models import Admin
from app.loyalty.modules.customers.models import Customer
from app.loyalty.modules.customers.utils import coerce_text, is_blank, mobile_search_prefix, parse_date_value

LIVE_SEARCH_LIMIT = 10
EXPORT_HEADERS = ["Name", "Mobile", "Date of Birth", "Added Date"]


class CustomerValidationError(ValueError):
    pass


class CustomerConflictError(ValueError):
    pass


@dataclass(frozen=True)
class CustomerPayload:
    name: str
    mobile: str
    date_of_birth: date | None


def parse_customer_payload(body: dict[str, Any]) -> CustomerPayload:
    name = coerce_text(body.get("name"))
    mobile = coerce_text(body.get("mobile"))
    if not name:
        raise CustomerValidationError("Please provide customer name")
    if not mobile:
        raise CustomerValidationError("Please provide mobile number")

    raw_dob = body.get("dateOfBirth")
    dob = parse_date_value(raw_dob)
    if not is_blank(raw_dob) and dob is None:
        raise CustomerValidationError(f"Invalid date of birth: {raw_dob!r}")
    return CustomerPayload(name=name, mobile=mobile, date_of_birth=dob)


def get_customer_by_id(s: Session, customer_id: int) -> Customer | None:
    return s.get(Customer, customer_id)


def list_customers(s: Session) -> list[Customer]:
    return list(s.scalars(select(Customer).order_by(Customer.added_date.desc(), Customer.id.desc())))


def find_customer_by_mobile(s: Session, mobile: str, *, exclude_id: int | None = None) -> Customer | None:
    q = select(Customer).where(Customer.mobile == mobile)
    if exclude_id is not None:
        q = q.where(Customer.id != exclude_id)
    return s.scalars(q).first()


def create_customer(s: Session, payload: CustomerPayload, *, actor: Admin | None) -> Customer:
    if find_customer_by_mobile(s, payload.mobile):
        raise CustomerConflictError(f"Customer with mobile {payload.mobile} already exists!")

    now = datetime.utcnow()
    c = Customer(
        name=payload.name,
        mobile=payload.mobile,
        date_of_birth=payload.date_of_birth,
        added_date=now,
        created_at=now,
        updated_at=now,
    )
    # Another writer may have taken the mobile since the check above.
    try:
        with s.begin_nested():
            s.add(c)
            s.flush()
    except IntegrityError:
        raise CustomerConflictError(f"Customer with mobile {payload.mobile} already exists!")

    record_event(
        s,
        actor=actor,
        action="customer.create",
        entity_type="Customer",
        entity_id=str(c.id),
        metadata={"name": c.name, "mobile": c.mobile},
    )
    return c


def update_customer(s: Session, c: Customer, payload: CustomerPayload, *, actor: Admin | None) -> Customer:
    if find_customer_by_mobile(s, payload.mobile, exclude_id=c.id):
        raise CustomerConflictError(f"Another customer with mobile {payload.mobile} already exists!")

    before = {"name": c.name, "mobile": c.mobile, "date_of_birth": c.date_of_birth}
    try:
        with s.begin_nested():
            c.name = payload.name
            c.mobile = payload.mobile
            c.date_of_birth = payload.date_of_birth
            c.updated_at = datetime.utcnow()
            s.flush()
    except IntegrityError:
        raise CustomerConflictError(f"Another customer with mobile {payload.mobile} already exists!")

    after = {"name": c.name, "mobile": c.mobile, "date_of_birth": c.date_of_birth}
    record_event(
        s,
        actor=actor,
        action="customer.update",
        entity_type="Customer",
        entity_id=str(c.id),
        metadata={
            "before": before,
            "after": after,
            "fields_changed": [k for k in before if before[k] != after[k]],
        },
    )
    return c


def delete_customer(s: Session, c: Customer, *, actor: Admin | None) -> dict[str, Any]:
    snapshot = c.to_dict()
    record_event(
        s,
        actor=actor,
        action="customer.delete",
        entity_type="Customer",
        entity_id=str(c.id),
        metadata={"name": c.name, "mobile": c.mobile},
    )
    s.delete(c)
    return snapshot


def delete_all_customers(s: Session, *, actor: Admin | None) -> int:
    result = s.execute(delete(Customer))
    deleted = int(result.rowcount or 0)
    record_event(
        s,
        actor=actor,
        action="customer.delete_all",
        entity_type="Customer",
        entity_id="all",
        metadata={"deleted_count": deleted},
    )
    return deleted


def _search_filter(query: str):
    q = (query or "").strip()
    prefix = mobile_search_prefix(q)
    return or_(
        Customer.name.istartswith(q, autoescape=True),
        Customer.mobile.startswith(prefix, autoescape=True),
        Customer.mobile.startswith("0" + prefix, autoescape=True),
    )


def search_customer(s: Session, query: str) -> Customer | None:
    """First customer whose name or mobile starts with `query`."""
    return s.scalars(select(Customer).where(_search_filter(query)).order_by(Customer.id.asc()).limit(1)).first()


def live_search_customers(s: Session, query: str, *, limit: int = LIVE_SEARCH_LIMIT) -> list[Customer]:
    if not (query or "").strip():
        return []
    stmt = (
        select(Customer)
        .where(_search_filter(query))
        .order_by(Customer.added_date.desc(), Customer.id.desc())
        .limit(limit)
    )
    return list(s.scalars(stmt))


def export_customers_csv(s: Session, *, actor: Admin | None) -> bytes:
    customers = list_customers(s)
    out = io.StringIO()
    w = csv.writer(out)
    w.writerow(EXPORT_HEADERS)
    for c in customers:
        w.writerow(
            [
                c.name,
                c.mobile,
                c.date_of_birth.isoformat() if c.date_of_birth else "",
                c.added_date.strftime("%Y-%m-%d") if c.added_date else "",
            ]
        )
    record_event(
        s,
        actor=actor,
        action="customer.export",
        entity_type="Customer",
        entity_id="export",
        metadata={"row_count": len(customers)},
    )
    # BOM so Excel opens the file as UTF-8.
    return out.getvalue().encode("utf-8-sig")
