from __future__ import annotations

import logging
from datetime import datetime
from typing import TypedDict

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from storefront.repositories.campaigns_repo import (
    CampaignRepository,
    CampaignUpdate,
    ProductDTO,
    RuleDTO,
    SqlAlchemyCampaignRepository,
)
from storefront.services.discount_s import (
    ENGINE_RULE_TYPES,
    calculate_campaign_price,
    campaign_needs_update,
    campaign_window,
    is_rule_currently_active,
    rule_matches_product,
    rule_rank,
)

logger = logging.getLogger(__name__)

# Failures scoped to a single rule; connection loss is raised instead.
RULE_ERRORS = (SQLAlchemyError, ValueError, ArithmeticError, KeyError, TypeError)


class RuleLog(TypedDict):
    rule_id: int
    rule_name: str
    products_affected: int


class EngineResult(TypedDict):
    success: bool
    rules_processed: int
    products_updated: int
    products_cleared: int
    errors: list[str]
    logs: list[RuleLog]


def _format_rule_error(rule: RuleDTO, exc: Exception) -> str:
    message = str(exc) or exc.__class__.__name__
    return f"Rule {rule['name']} ({rule['id']}): {message}"


def _record_rule_error(result: EngineResult, rule: RuleDTO, exc: Exception) -> None:
    error = _format_rule_error(rule, exc)
    result["errors"].append(error)
    logger.warning("event=discount_rule_failed rule_id=%s error=%s", rule["id"], error)


def clear_expired_campaigns(now: datetime, repo: CampaignRepository) -> int:
    cleared = repo.clear_expired_campaigns(now=now)
    if cleared:
        logger.info("event=campaigns_cleared count=%s", cleared)
    return int(cleared)


def _rule_candidates(rule: RuleDTO, repo: CampaignRepository) -> dict[int, tuple[ProductDTO, float]]:
    candidates: dict[int, tuple[ProductDTO, float]] = {}
    for product in repo.find_candidate_products(rule):
        if not rule_matches_product(rule, product):
            continue
        selling_price = float(product["selling_price"])
        new_price = calculate_campaign_price(
            selling_price,
            rule["discount_type"],
            rule["discount_amount"],
        )
        if new_price < selling_price:
            candidates[product["id"]] = (product, new_price)
    return candidates


def _pick_winners(
    rules: list[RuleDTO],
    repo: CampaignRepository,
    result: EngineResult,
) -> dict[int, tuple[RuleDTO, ProductDTO, float]]:
    winners: dict[int, tuple[RuleDTO, ProductDTO, float]] = {}

    for rule in rules:
        # A rule that fails partway contributes no candidates at all.
        try:
            candidates = _rule_candidates(rule, repo)
        except OperationalError:
            raise
        except RULE_ERRORS as exc:
            _record_rule_error(result, rule, exc)
            continue

        for product_id, (product, new_price) in candidates.items():
            current = winners.get(product_id)
            if current is None or rule_rank(rule, new_price) < rule_rank(current[0], current[2]):
                winners[product_id] = (rule, product, new_price)

    return winners


def _build_updates(
    winners: dict[int, tuple[RuleDTO, ProductDTO, float]],
    now: datetime,
) -> dict[int, list[CampaignUpdate]]:
    updates_by_rule: dict[int, list[CampaignUpdate]] = {}
    for product_id in sorted(winners):
        rule, product, new_price = winners[product_id]
        if not campaign_needs_update(product, rule, new_price):
            continue
        campaign_start, campaign_end = campaign_window(rule, now)
        updates_by_rule.setdefault(rule["id"], []).append(
            {
                "product_id": product_id,
                "old_price": float(product["selling_price"]),
                "new_price": new_price,
                "campaign_start": campaign_start,
                "campaign_end": campaign_end,
            }
        )
    return updates_by_rule


def run_discount_engine(now: datetime, repo: CampaignRepository) -> EngineResult:
    """Apply active CATEGORY and BRAND rules as campaign prices.

    Expired campaigns are swept first, so a product that is both expired and
    matched by a current rule ends up carrying the new campaign. Competing
    rules are ranked by priority, then by lowest resulting price, then by rule
    id. Products whose stored campaign already matches the winner are not
    written, which makes repeated runs converge to zero updates.
    """
    result: EngineResult = {
        "success": True,
        "rules_processed": 0,
        "products_updated": 0,
        "products_cleared": 0,
        "errors": [],
        "logs": [],
    }

    result["products_cleared"] = clear_expired_campaigns(now=now, repo=repo)

    rules = [
        rule
        for rule in repo.list_active_rules(now=now, rule_types=ENGINE_RULE_TYPES)
        if rule["rule_type"] in ENGINE_RULE_TYPES and is_rule_currently_active(rule, now)
    ]
    result["rules_processed"] = len(rules)

    winners = _pick_winners(rules=rules, repo=repo, result=result)
    updates_by_rule = _build_updates(winners=winners, now=now)

    for rule in rules:
        products_affected = 0
        updates = updates_by_rule.get(rule["id"], [])
        if updates:
            try:
                products_affected = int(repo.apply_campaign_batch(rule, updates))
            except OperationalError:
                raise
            except RULE_ERRORS as exc:
                _record_rule_error(result, rule, exc)
        result["products_updated"] += products_affected
        result["logs"].append(
            {
                "rule_id": rule["id"],
                "rule_name": rule["name"],
                "products_affected": products_affected,
            }
        )

    result["success"] = not result["errors"]
    logger.info(
        "event=discount_engine_completed rules_processed=%s products_updated=%s "
        "products_cleared=%s errors=%s",
        result["rules_processed"],
        result["products_updated"],
        result["products_cleared"],
        len(result["errors"]),
    )
    return result


def run_discount_engine_for_session(db: Session, now: datetime | None = None) -> EngineResult:
    return run_discount_engine(
        now=now or datetime.utcnow(),
        repo=SqlAlchemyCampaignRepository(db),
    )


def clear_expired_campaigns_for_session(db: Session, now: datetime | None = None) -> int:
    return clear_expired_campaigns(
        now=now or datetime.utcnow(),
        repo=SqlAlchemyCampaignRepository(db),
    )
