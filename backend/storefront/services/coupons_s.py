from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import TypedDict

from sqlalchemy import func
from sqlalchemy.orm import Session

from storefront.db.config import get_currency_symbol
from storefront.db.models import Coupon, CouponUsage
from storefront.db.session import SessionLocal
from storefront.repositories.coupons_repo import CouponDTO, CouponRepository
from storefront.services.discount_s import (
    calculate_coupon_discount,
    coerce_datetime,
    round_money,
    validate_date_window,
    validate_discount_terms,
)

ALLOWED_STATUS_FILTERS = {"all", "active", "upcoming", "expired"}


class CouponValidationError(ValueError):
    """Coupon rejected for this cart or user."""


class CouponApplication(TypedDict):
    valid: bool
    coupon: dict
    discount: float
    final_total: float


@contextmanager
def _session_scope(db: Session | None):
    owns_session = db is None
    session = db or SessionLocal()
    try:
        yield session, owns_session
    finally:
        if owns_session:
            session.close()


def normalize_coupon_code(code: str) -> str:
    return (code or "").strip().upper()


def _format_amount(value: float) -> str:
    amount = round_money(value)
    if amount.is_integer():
        return str(int(amount))
    return f"{amount:.2f}"


def _coupon_public_view(coupon: CouponDTO) -> dict:
    return {
        "id": coupon["id"],
        "code": coupon["code"],
        "discount_type": coupon["discount_type"],
        "discount_amount": coupon["discount_amount"],
        "max_discount": coupon["max_discount"],
    }


def apply_coupon(
    code: str,
    cart_total: float,
    repo: CouponRepository,
    now: datetime,
    user_id: str | None = None,
) -> CouponApplication:
    normalized_code = normalize_coupon_code(code)
    if not normalized_code:
        raise CouponValidationError("Coupon code is required")
    if cart_total is None or float(cart_total) <= 0:
        raise CouponValidationError("Cart total must be positive")
    cart_total = float(cart_total)

    coupon = repo.get_by_code(normalized_code)
    if coupon is None:
        raise CouponValidationError("Invalid coupon code")
    if not coupon["is_active"]:
        raise CouponValidationError("This coupon is no longer active")
    if now < coerce_datetime(coupon["start_date"]):
        raise CouponValidationError("This coupon is not yet active")
    if now > coerce_datetime(coupon["end_date"]):
        raise CouponValidationError("This coupon has expired")

    min_cart_amount = coupon.get("min_cart_amount")
    if min_cart_amount is not None and cart_total < float(min_cart_amount):
        raise CouponValidationError(
            f"Minimum cart amount of {get_currency_symbol()}{_format_amount(min_cart_amount)} required"
        )

    usage_limit = coupon.get("usage_limit")
    if usage_limit is not None and int(coupon.get("usage_count") or 0) >= int(usage_limit):
        raise CouponValidationError("This coupon has reached its usage limit")

    per_user_limit = coupon.get("per_user_limit")
    if user_id and per_user_limit is not None:
        used = repo.count_usages(coupon_id=coupon["id"], user_id=str(user_id))
        if used >= int(per_user_limit):
            raise CouponValidationError(
                "You have already used this coupon the maximum number of times"
            )

    discount = calculate_coupon_discount(cart_total=cart_total, coupon=coupon)
    return {
        "valid": True,
        "coupon": _coupon_public_view(coupon),
        "discount": discount,
        "final_total": round_money(cart_total - discount),
    }


def redeem_coupon(
    code: str,
    cart_total: float,
    user_id: str,
    repo: CouponRepository,
    now: datetime,
    order_ref: str | None = None,
) -> CouponApplication:
    """Validate the coupon again and record one usage for a confirmed order."""
    application = apply_coupon(
        code=code,
        cart_total=cart_total,
        repo=repo,
        now=now,
        user_id=user_id,
    )
    recorded = repo.record_usage(
        coupon_id=application["coupon"]["id"],
        user_id=str(user_id),
        order_ref=order_ref,
        discount_amount=application["discount"],
        now=now,
    )
    if not recorded:
        raise CouponValidationError("This coupon has reached its usage limit")
    return application


# Administration
def _coupon_to_dict(coupon: Coupon, usage_total: int | None = None) -> dict:
    return {
        "id": coupon.id,
        "code": coupon.code,
        "discount_type": coupon.discount_type,
        "discount_amount": float(coupon.discount_amount),
        "min_cart_amount": coupon.min_cart_amount,
        "max_discount": coupon.max_discount,
        "usage_limit": coupon.usage_limit,
        "per_user_limit": coupon.per_user_limit,
        "usage_count": int(coupon.usage_count or 0),
        "usages": int(usage_total or 0),
        "start_date": coupon.start_date,
        "end_date": coupon.end_date,
        "is_active": bool(coupon.is_active),
        "description": coupon.description,
        "created_at": coupon.created_at,
        "updated_at": coupon.updated_at,
    }


def _usage_totals(session: Session, coupon_ids: list[int]) -> dict[int, int]:
    if not coupon_ids:
        return {}
    rows = (
        session.query(CouponUsage.coupon_id, func.count(CouponUsage.id))
        .filter(CouponUsage.coupon_id.in_(coupon_ids))
        .group_by(CouponUsage.coupon_id)
        .all()
    )
    return {int(coupon_id): int(total) for coupon_id, total in rows}


def _validate_coupon_payload(payload: dict) -> tuple[datetime, datetime]:
    validate_discount_terms(payload.get("discount_type"), payload.get("discount_amount"))
    for field in ("usage_limit", "per_user_limit"):
        value = payload.get(field)
        if value is not None and int(value) <= 0:
            raise ValueError(f"{field} must be greater than 0")
    return validate_date_window(payload.get("start_date"), payload.get("end_date"))


def list_coupons(
    db: Session | None = None,
    status: str = "all",
    search: str | None = None,
    now: datetime | None = None,
) -> list[dict]:
    if status not in ALLOWED_STATUS_FILTERS:
        raise ValueError("invalid status filter")
    now = now or datetime.utcnow()

    with _session_scope(db) as (session, _):
        query = session.query(Coupon)
        if status == "active":
            query = query.filter(
                Coupon.is_active.is_(True),
                Coupon.start_date <= now,
                Coupon.end_date >= now,
            )
        elif status == "upcoming":
            query = query.filter(Coupon.is_active.is_(True), Coupon.start_date > now)
        elif status == "expired":
            query = query.filter(Coupon.end_date < now)

        if search:
            query = query.filter(Coupon.code.ilike(f"%{search.strip()}%"))

        coupons = query.order_by(Coupon.created_at.desc(), Coupon.id.desc()).all()
        totals = _usage_totals(session, [int(coupon.id) for coupon in coupons])
        return [_coupon_to_dict(coupon, totals.get(int(coupon.id))) for coupon in coupons]


def get_coupon_by_id(coupon_id: int, db: Session | None = None) -> dict | None:
    with _session_scope(db) as (session, _):
        coupon = session.query(Coupon).filter(Coupon.id == coupon_id).first()
        if coupon is None:
            return None
        totals = _usage_totals(session, [int(coupon.id)])
        return _coupon_to_dict(coupon, totals.get(int(coupon.id)))


def create_coupon(payload: dict, db: Session | None = None) -> dict:
    start_date, end_date = _validate_coupon_payload(payload)
    code = normalize_coupon_code(payload.get("code", ""))
    if not code:
        raise ValueError("Coupon code is required")

    with _session_scope(db) as (session, owns_session):
        existing = session.query(Coupon.id).filter(Coupon.code == code).first()
        if existing is not None:
            raise ValueError("A coupon with this code already exists")

        coupon = Coupon(
            code=code,
            discount_type=payload["discount_type"],
            discount_amount=float(payload["discount_amount"]),
            min_cart_amount=payload.get("min_cart_amount") or None,
            max_discount=payload.get("max_discount") or None,
            usage_limit=payload.get("usage_limit") or None,
            per_user_limit=payload.get("per_user_limit") or None,
            usage_count=0,
            start_date=start_date,
            end_date=end_date,
            is_active=bool(payload.get("is_active", True)),
            description=payload.get("description") or None,
        )
        session.add(coupon)

        if owns_session:
            session.commit()
        else:
            session.flush()
        session.refresh(coupon)
        return _coupon_to_dict(coupon, 0)


def update_coupon(coupon_id: int, updates: dict, db: Session | None = None) -> dict | None:
    if "code" in updates:
        raise ValueError("coupon code cannot be changed")

    with _session_scope(db) as (session, owns_session):
        coupon = session.query(Coupon).filter(Coupon.id == coupon_id).first()
        if coupon is None:
            return None

        merged = {**_coupon_to_dict(coupon), **updates}
        start_date, end_date = _validate_coupon_payload(merged)

        coupon.discount_type = merged["discount_type"]
        coupon.discount_amount = float(merged["discount_amount"])
        coupon.min_cart_amount = merged.get("min_cart_amount")
        coupon.max_discount = merged.get("max_discount")
        coupon.usage_limit = merged.get("usage_limit")
        coupon.per_user_limit = merged.get("per_user_limit")
        coupon.start_date = start_date
        coupon.end_date = end_date
        coupon.is_active = bool(merged.get("is_active", True))
        coupon.description = merged.get("description")

        if owns_session:
            session.commit()
        else:
            session.flush()
        session.refresh(coupon)
        return get_coupon_by_id(coupon_id, db=session)


def delete_coupon(coupon_id: int, db: Session | None = None) -> dict | None:
    with _session_scope(db) as (session, owns_session):
        coupon = session.query(Coupon).filter(Coupon.id == coupon_id).first()
        if coupon is None:
            return None
        totals = _usage_totals(session, [int(coupon.id)])
        serialized = _coupon_to_dict(coupon, totals.get(int(coupon.id)))
        session.delete(coupon)
        if owns_session:
            session.commit()
        else:
            session.flush()
        return serialized
