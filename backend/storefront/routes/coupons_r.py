import logging
from datetime import datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from storefront.dependencies.auth_d import get_optional_current_user, require_admin
from storefront.db.session import get_db
from storefront.errors import error_response, raise_http_error_from_exception
from storefront.repositories.coupons_repo import SqlAlchemyCouponRepository
from storefront.schemas import ApplyCouponRequest, CreateCouponRequest, UpdateCouponRequest
from storefront.services.coupons_s import (
    CouponValidationError,
    apply_coupon,
    create_coupon,
    delete_coupon,
    get_coupon_by_id,
    list_coupons,
    update_coupon,
)

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/cart/apply-coupon")
def post_apply_coupon(
    payload: ApplyCouponRequest,
    current_user: dict | None = Depends(get_optional_current_user),
    db: Session = Depends(get_db),
):
    user_id = str(current_user["sub"]) if current_user else payload.user_id
    try:
        application = apply_coupon(
            code=payload.code,
            cart_total=payload.cart_total,
            repo=SqlAlchemyCouponRepository(db),
            now=datetime.utcnow(),
            user_id=user_id,
        )
    except CouponValidationError as exc:
        logger.info("event=coupon_rejected code=%s reason=%s", payload.code, exc)
        return error_response(status.HTTP_400_BAD_REQUEST, str(exc))
    except Exception:
        logger.exception("event=coupon_apply_failed code=%s", payload.code)
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to apply coupon")

    return application


@router.get("/admin/discount/coupons")
def get_coupons(
    coupon_status: Literal["all", "active", "upcoming", "expired"] = Query("all", alias="status"),
    search: Optional[str] = Query(None),
    _: dict = Depends(require_admin),
    db: Session = Depends(get_db),
):
    try:
        coupons = list_coupons(db=db, status=coupon_status, search=search)
    except Exception as exc:
        raise_http_error_from_exception(exc, db=db)
    return {"data": coupons}


@router.post("/admin/discount/coupons", status_code=status.HTTP_201_CREATED)
def post_coupon(
    payload: CreateCouponRequest,
    _: dict = Depends(require_admin),
    db: Session = Depends(get_db),
):
    try:
        coupon = create_coupon(payload.model_dump(), db=db)
        db.commit()
    except Exception as exc:
        raise_http_error_from_exception(exc, db=db)

    return {"data": coupon}


@router.get("/admin/discount/coupons/{coupon_id}")
def get_coupon(
    coupon_id: int,
    _: dict = Depends(require_admin),
    db: Session = Depends(get_db),
):
    coupon = get_coupon_by_id(coupon_id, db=db)
    if coupon is None:
        raise HTTPException(status_code=404, detail="Coupon not found")
    return {"data": coupon}


@router.put("/admin/discount/coupons/{coupon_id}")
def put_coupon(
    coupon_id: int,
    payload: UpdateCouponRequest,
    _: dict = Depends(require_admin),
    db: Session = Depends(get_db),
):
    updates = payload.model_dump(exclude_unset=True)
    try:
        coupon = update_coupon(coupon_id=coupon_id, updates=updates, db=db)
        db.commit()
    except Exception as exc:
        raise_http_error_from_exception(exc, db=db)

    if coupon is None:
        raise HTTPException(status_code=404, detail="Coupon not found")

    return {"data": coupon}


@router.delete("/admin/discount/coupons/{coupon_id}")
def remove_coupon(
    coupon_id: int,
    _: dict = Depends(require_admin),
    db: Session = Depends(get_db),
):
    try:
        coupon = delete_coupon(coupon_id=coupon_id, db=db)
        db.commit()
    except Exception as exc:
        raise_http_error_from_exception(exc, db=db)
    if coupon is None:
        raise HTTPException(status_code=404, detail="Coupon not found")
    return {"data": coupon}
