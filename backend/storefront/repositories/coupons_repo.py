from __future__ import annotations

from datetime import datetime
from typing import Protocol, TypedDict

from sqlalchemy import or_
from sqlalchemy.orm import Session

from storefront.db.models import Coupon, CouponUsage


class CouponDTO(TypedDict):
    id: int
    code: str
    discount_type: str
    discount_amount: float
    min_cart_amount: float | None
    max_discount: float | None
    usage_limit: int | None
    per_user_limit: int | None
    usage_count: int
    is_active: bool
    start_date: datetime
    end_date: datetime
    description: str | None


class CouponRepository(Protocol):
    def get_by_code(self, code: str) -> CouponDTO | None: ...

    def count_usages(self, coupon_id: int, user_id: str) -> int: ...

    def record_usage(
        self,
        coupon_id: int,
        user_id: str,
        order_ref: str | None,
        discount_amount: float,
        now: datetime,
    ) -> bool: ...


def coupon_to_dto(coupon: Coupon) -> CouponDTO:
    return {
        "id": int(coupon.id),
        "code": coupon.code,
        "discount_type": coupon.discount_type,
        "discount_amount": float(coupon.discount_amount),
        "min_cart_amount": (
            float(coupon.min_cart_amount) if coupon.min_cart_amount is not None else None
        ),
        "max_discount": float(coupon.max_discount) if coupon.max_discount is not None else None,
        "usage_limit": coupon.usage_limit,
        "per_user_limit": coupon.per_user_limit,
        "usage_count": int(coupon.usage_count or 0),
        "is_active": bool(coupon.is_active),
        "start_date": coupon.start_date,
        "end_date": coupon.end_date,
        "description": coupon.description,
    }


class SqlAlchemyCouponRepository:
    def __init__(self, db: Session):
        self.db = db

    def get_by_code(self, code: str) -> CouponDTO | None:
        coupon = self.db.query(Coupon).filter(Coupon.code == code).first()
        if coupon is None:
            return None
        return coupon_to_dto(coupon)

    def count_usages(self, coupon_id: int, user_id: str) -> int:
        return int(
            self.db.query(CouponUsage)
            .filter(
                CouponUsage.coupon_id == coupon_id,
                CouponUsage.user_id == user_id,
            )
            .count()
        )

    def record_usage(
        self,
        coupon_id: int,
        user_id: str,
        order_ref: str | None,
        discount_amount: float,
        now: datetime,
    ) -> bool:
        # Guarded increment: concurrent redemptions cannot exceed usage_limit.
        updated = (
            self.db.query(Coupon)
            .filter(
                Coupon.id == coupon_id,
                or_(Coupon.usage_limit.is_(None), Coupon.usage_count < Coupon.usage_limit),
            )
            .update(
                {Coupon.usage_count: Coupon.usage_count + 1, Coupon.updated_at: now},
                synchronize_session=False,
            )
        )
        if int(updated or 0) != 1:
            return False

        self.db.add(
            CouponUsage(
                coupon_id=coupon_id,
                user_id=user_id,
                order_ref=order_ref,
                discount_amount=discount_amount,
                created_at=now,
            )
        )
        self.db.flush()
        return True
