from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from storefront.dependencies.auth_d import require_admin
from storefront.db.session import get_db
from storefront.errors import raise_http_error_from_exception
from storefront.schemas import CreateDiscountRuleRequest, UpdateDiscountRuleRequest
from storefront.services.discount_rules_s import (
    create_rule,
    delete_rule,
    get_rule_by_id,
    list_rule_logs,
    list_rules,
    update_rule,
)

router = APIRouter()


@router.get("/admin/discount/rules")
def get_rules(
    rule_status: Literal["all", "active", "upcoming", "expired"] = Query("all", alias="status"),
    rule_type: Optional[str] = Query(None),
    _: dict = Depends(require_admin),
    db: Session = Depends(get_db),
):
    try:
        rules = list_rules(db=db, status=rule_status, rule_type=rule_type)
    except Exception as exc:
        raise_http_error_from_exception(exc, db=db)
    return {"data": rules}


@router.post("/admin/discount/rules", status_code=status.HTTP_201_CREATED)
def post_rule(
    payload: CreateDiscountRuleRequest,
    _: dict = Depends(require_admin),
    db: Session = Depends(get_db),
):
    try:
        rule = create_rule(payload.model_dump(), db=db)
        db.commit()
    except Exception as exc:
        raise_http_error_from_exception(exc, db=db)

    return {"data": rule}


@router.get("/admin/discount/rules/{rule_id}")
def get_rule(
    rule_id: int,
    _: dict = Depends(require_admin),
    db: Session = Depends(get_db),
):
    rule = get_rule_by_id(rule_id, db=db)
    if rule is None:
        raise HTTPException(status_code=404, detail="Rule not found")
    return {"data": rule}


@router.put("/admin/discount/rules/{rule_id}")
def put_rule(
    rule_id: int,
    payload: UpdateDiscountRuleRequest,
    _: dict = Depends(require_admin),
    db: Session = Depends(get_db),
):
    updates = payload.model_dump(exclude_unset=True)
    try:
        rule = update_rule(rule_id=rule_id, updates=updates, db=db)
        db.commit()
    except Exception as exc:
        raise_http_error_from_exception(exc, db=db)

    if rule is None:
        raise HTTPException(status_code=404, detail="Rule not found")

    return {"data": rule}


@router.delete("/admin/discount/rules/{rule_id}")
def remove_rule(
    rule_id: int,
    _: dict = Depends(require_admin),
    db: Session = Depends(get_db),
):
    try:
        rule = delete_rule(rule_id=rule_id, db=db)
        db.commit()
    except Exception as exc:
        raise_http_error_from_exception(exc, db=db)
    if rule is None:
        raise HTTPException(status_code=404, detail="Rule not found")
    return {"data": rule}


@router.get("/admin/discount/rules/{rule_id}/logs")
def get_rule_logs(
    rule_id: int,
    limit: int = Query(100, gt=0, le=500),
    _: dict = Depends(require_admin),
    db: Session = Depends(get_db),
):
    try:
        logs = list_rule_logs(rule_id=rule_id, db=db, limit=limit)
    except Exception as exc:
        raise_http_error_from_exception(exc, db=db)
    return {"data": logs}
