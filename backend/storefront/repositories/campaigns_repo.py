from __future__ import annotations

from datetime import datetime
from typing import Iterable, Protocol, TypedDict

from sqlalchemy.orm import Session

from storefront.db.models import DiscountLog, DiscountRule, Product


class RuleDTO(TypedDict):
    id: int
    name: str
    rule_type: str
    target_value: str | None
    discount_type: str
    discount_amount: float
    priority: int
    is_active: bool
    start_date: datetime
    end_date: datetime


class ProductDTO(TypedDict):
    id: int
    category_id: str
    brand_name: str | None
    selling_price: float
    campaign_price: float | None
    campaign_start: datetime | None
    campaign_end: datetime | None
    campaign_rule_id: int | None


class CampaignUpdate(TypedDict):
    product_id: int
    old_price: float
    new_price: float
    campaign_start: datetime
    campaign_end: datetime


class CampaignRepository(Protocol):
    def clear_expired_campaigns(self, now: datetime) -> int: ...

    def list_active_rules(self, now: datetime, rule_types: Iterable[str]) -> list[RuleDTO]: ...

    def find_candidate_products(self, rule: RuleDTO) -> list[ProductDTO]: ...

    def apply_campaign_batch(self, rule: RuleDTO, updates: list[CampaignUpdate]) -> int: ...


def rule_to_dto(rule: DiscountRule) -> RuleDTO:
    return {
        "id": int(rule.id),
        "name": rule.name,
        "rule_type": rule.rule_type,
        "target_value": rule.target_value,
        "discount_type": rule.discount_type,
        "discount_amount": float(rule.discount_amount),
        "priority": int(rule.priority or 0),
        "is_active": bool(rule.is_active),
        "start_date": rule.start_date,
        "end_date": rule.end_date,
    }


def product_to_dto(product: Product) -> ProductDTO:
    return {
        "id": int(product.id),
        "category_id": product.category_id,
        "brand_name": product.brand_name,
        "selling_price": float(product.selling_price),
        "campaign_price": (
            float(product.campaign_price) if product.campaign_price is not None else None
        ),
        "campaign_start": product.campaign_start,
        "campaign_end": product.campaign_end,
        "campaign_rule_id": product.campaign_rule_id,
    }


class SqlAlchemyCampaignRepository:
    def __init__(self, db: Session):
        self.db = db

    def clear_expired_campaigns(self, now: datetime) -> int:
        cleared = (
            self.db.query(Product)
            .filter(
                Product.campaign_price.isnot(None),
                Product.campaign_end < now,
            )
            .update(
                {
                    Product.campaign_price: None,
                    Product.campaign_start: None,
                    Product.campaign_end: None,
                    Product.campaign_rule_id: None,
                    Product.updated_at: now,
                },
                synchronize_session=False,
            )
        )
        self.db.flush()
        return int(cleared or 0)

    def list_active_rules(self, now: datetime, rule_types: Iterable[str]) -> list[RuleDTO]:
        rules = (
            self.db.query(DiscountRule)
            .filter(
                DiscountRule.is_active.is_(True),
                DiscountRule.start_date <= now,
                DiscountRule.end_date >= now,
                DiscountRule.rule_type.in_(list(rule_types)),
            )
            .order_by(DiscountRule.priority.desc(), DiscountRule.id.asc())
            .all()
        )
        return [rule_to_dto(rule) for rule in rules]

    def find_candidate_products(self, rule: RuleDTO) -> list[ProductDTO]:
        if not rule.get("target_value") or rule["rule_type"] not in {"CATEGORY", "BRAND"}:
            return []

        # Savepoint per rule: a failed read must not abort the outer transaction.
        with self.db.begin_nested():
            return self._load_candidates(rule)

    def _load_candidates(self, rule: RuleDTO) -> list[ProductDTO]:
        query = (
            self.db.query(Product)
            .populate_existing()
            .filter(Product.is_active.is_(True))
        )
        if rule["rule_type"] == "CATEGORY":
            query = query.filter(Product.category_id == rule["target_value"])
        else:
            query = query.filter(Product.brand_name == rule["target_value"])

        return [product_to_dto(product) for product in query.order_by(Product.id.asc()).all()]

    def apply_campaign_batch(self, rule: RuleDTO, updates: list[CampaignUpdate]) -> int:
        if not updates:
            return 0

        updated_count = 0
        with self.db.begin_nested():
            for update in updates:
                updated = (
                    self.db.query(Product)
                    .filter(Product.id == update["product_id"])
                    .update(
                        {
                            Product.campaign_price: update["new_price"],
                            Product.campaign_start: update["campaign_start"],
                            Product.campaign_end: update["campaign_end"],
                            Product.campaign_rule_id: rule["id"],
                        },
                        synchronize_session=False,
                    )
                )
                if int(updated or 0) != 1:
                    continue
                self.db.add(
                    DiscountLog(
                        rule_id=rule["id"],
                        product_id=update["product_id"],
                        old_price=update["old_price"],
                        new_price=update["new_price"],
                        discount_amount=round(update["old_price"] - update["new_price"], 2),
                    )
                )
                updated_count += 1
        return updated_count
