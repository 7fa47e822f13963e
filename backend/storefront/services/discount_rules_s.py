from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime

from sqlalchemy import func
from sqlalchemy.orm import Session

from storefront.db.models import Category, DiscountLog, DiscountRule
from storefront.db.session import SessionLocal
from storefront.services.discount_s import (
    RULE_TYPES,
    validate_date_window,
    validate_discount_terms,
)

ALLOWED_STATUS_FILTERS = {"all", "active", "upcoming", "expired"}


@contextmanager
def _session_scope(db: Session | None):
    owns_session = db is None
    session = db or SessionLocal()
    try:
        yield session, owns_session
    finally:
        if owns_session:
            session.close()


def _rule_to_dict(rule: DiscountRule, log_total: int | None = None) -> dict:
    return {
        "id": rule.id,
        "name": rule.name,
        "rule_type": rule.rule_type,
        "target_value": rule.target_value,
        "discount_type": rule.discount_type,
        "discount_amount": float(rule.discount_amount),
        "min_cart_amount": rule.min_cart_amount,
        "start_date": rule.start_date,
        "end_date": rule.end_date,
        "priority": int(rule.priority or 0),
        "is_active": bool(rule.is_active),
        "description": rule.description,
        "logs": int(log_total or 0),
        "created_at": rule.created_at,
        "updated_at": rule.updated_at,
    }


def _log_to_dict(log: DiscountLog) -> dict:
    return {
        "id": log.id,
        "rule_id": log.rule_id,
        "product_id": log.product_id,
        "old_price": float(log.old_price),
        "new_price": float(log.new_price),
        "discount_amount": float(log.discount_amount),
        "created_at": log.created_at,
    }


def _log_totals(session: Session, rule_ids: list[int]) -> dict[int, int]:
    if not rule_ids:
        return {}
    rows = (
        session.query(DiscountLog.rule_id, func.count(DiscountLog.id))
        .filter(DiscountLog.rule_id.in_(rule_ids))
        .group_by(DiscountLog.rule_id)
        .all()
    )
    return {int(rule_id): int(total) for rule_id, total in rows}


def _validate_rule_payload(session: Session, payload: dict) -> tuple[datetime, datetime]:
    if not str(payload.get("name") or "").strip():
        raise ValueError("Rule name is required")
    if payload.get("rule_type") not in RULE_TYPES:
        raise ValueError("invalid rule type")
    validate_discount_terms(payload.get("discount_type"), payload.get("discount_amount"))
    start_date, end_date = validate_date_window(payload.get("start_date"), payload.get("end_date"))

    target_value = payload.get("target_value")
    if payload["rule_type"] in {"CATEGORY", "BRAND"} and not target_value:
        raise ValueError("target_value is required for category/brand rules")
    if payload["rule_type"] == "CATEGORY":
        category = session.query(Category.id).filter(Category.id == target_value).first()
        if category is None:
            raise ValueError("Category not found")
    return start_date, end_date


def list_rules(
    db: Session | None = None,
    status: str = "all",
    rule_type: str | None = None,
    now: datetime | None = None,
) -> list[dict]:
    if status not in ALLOWED_STATUS_FILTERS:
        raise ValueError("invalid status filter")
    now = now or datetime.utcnow()

    with _session_scope(db) as (session, _):
        query = session.query(DiscountRule)
        if status == "active":
            query = query.filter(
                DiscountRule.is_active.is_(True),
                DiscountRule.start_date <= now,
                DiscountRule.end_date >= now,
            )
        elif status == "upcoming":
            query = query.filter(DiscountRule.is_active.is_(True), DiscountRule.start_date > now)
        elif status == "expired":
            query = query.filter(DiscountRule.end_date < now)

        if rule_type in RULE_TYPES:
            query = query.filter(DiscountRule.rule_type == rule_type)

        rules = query.order_by(
            DiscountRule.priority.desc(),
            DiscountRule.created_at.desc(),
            DiscountRule.id.desc(),
        ).all()
        totals = _log_totals(session, [int(rule.id) for rule in rules])
        return [_rule_to_dict(rule, totals.get(int(rule.id))) for rule in rules]


def get_rule_by_id(rule_id: int, db: Session | None = None) -> dict | None:
    with _session_scope(db) as (session, _):
        rule = session.query(DiscountRule).filter(DiscountRule.id == rule_id).first()
        if rule is None:
            return None
        totals = _log_totals(session, [int(rule.id)])
        return _rule_to_dict(rule, totals.get(int(rule.id)))


def create_rule(payload: dict, db: Session | None = None) -> dict:
    with _session_scope(db) as (session, owns_session):
        start_date, end_date = _validate_rule_payload(session, payload)
        rule = DiscountRule(
            name=payload["name"].strip(),
            rule_type=payload["rule_type"],
            target_value=payload.get("target_value") or None,
            discount_type=payload["discount_type"],
            discount_amount=float(payload["discount_amount"]),
            min_cart_amount=payload.get("min_cart_amount") or None,
            start_date=start_date,
            end_date=end_date,
            priority=int(payload.get("priority") or 0),
            is_active=bool(payload.get("is_active", True)),
            description=payload.get("description") or None,
        )
        session.add(rule)

        if owns_session:
            session.commit()
        else:
            session.flush()
        session.refresh(rule)
        return _rule_to_dict(rule, 0)


def update_rule(rule_id: int, updates: dict, db: Session | None = None) -> dict | None:
    with _session_scope(db) as (session, owns_session):
        rule = session.query(DiscountRule).filter(DiscountRule.id == rule_id).first()
        if rule is None:
            return None

        merged = {**_rule_to_dict(rule), **updates}
        start_date, end_date = _validate_rule_payload(session, merged)

        rule.name = merged["name"].strip()
        rule.rule_type = merged["rule_type"]
        rule.target_value = merged.get("target_value")
        rule.discount_type = merged["discount_type"]
        rule.discount_amount = float(merged["discount_amount"])
        rule.min_cart_amount = merged.get("min_cart_amount")
        rule.start_date = start_date
        rule.end_date = end_date
        rule.priority = int(merged.get("priority") or 0)
        rule.is_active = bool(merged.get("is_active", True))
        rule.description = merged.get("description")

        if owns_session:
            session.commit()
        else:
            session.flush()
        session.refresh(rule)
        return get_rule_by_id(rule_id, db=session)


def delete_rule(rule_id: int, db: Session | None = None) -> dict | None:
    with _session_scope(db) as (session, owns_session):
        rule = session.query(DiscountRule).filter(DiscountRule.id == rule_id).first()
        if rule is None:
            return None
        totals = _log_totals(session, [int(rule.id)])
        serialized = _rule_to_dict(rule, totals.get(int(rule.id)))
        session.delete(rule)
        if owns_session:
            session.commit()
        else:
            session.flush()
        return serialized


def list_rule_logs(rule_id: int, db: Session | None = None, limit: int = 100) -> list[dict]:
    with _session_scope(db) as (session, _):
        exists = session.query(DiscountRule.id).filter(DiscountRule.id == rule_id).first()
        if exists is None:
            raise LookupError("Rule not found")
        logs = (
            session.query(DiscountLog)
            .filter(DiscountLog.rule_id == rule_id)
            .order_by(DiscountLog.created_at.desc(), DiscountLog.id.desc())
            .limit(limit)
            .all()
        )
        return [_log_to_dict(log) for log in logs]
