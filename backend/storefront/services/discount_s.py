from __future__ import annotations

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

RULE_TYPES = ("CATEGORY", "BRAND", "CART_AMOUNT", "USER_GROUP")
# CART_AMOUNT and USER_GROUP rules are evaluated against a cart at checkout.
ENGINE_RULE_TYPES = ("CATEGORY", "BRAND")
DISCOUNT_TYPES = ("PERCENTAGE", "FIXED")

_CENT = Decimal("0.01")


def round_money(value: float) -> float:
    """Round to cents, half-up on the cent value (2.675 -> 2.68)."""
    return float(Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP))


def coerce_datetime(value) -> datetime | None:
    """Parse ISO strings and normalize aware datetimes to naive UTC."""
    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def validate_discount_terms(discount_type: str | None, discount_amount) -> None:
    if discount_type not in DISCOUNT_TYPES:
        raise ValueError("invalid discount type")
    if discount_amount is None or float(discount_amount) <= 0:
        raise ValueError("Discount amount must be positive")
    if discount_type == "PERCENTAGE" and float(discount_amount) > 100:
        raise ValueError("Percentage discount cannot exceed 100%")


def validate_date_window(start_date, end_date) -> tuple[datetime, datetime]:
    start = coerce_datetime(start_date)
    end = coerce_datetime(end_date)
    if start is None or end is None:
        raise ValueError("start_date and end_date are required")
    if end <= start:
        raise ValueError("End date must be after start date")
    return start, end


# Core (pure logic)
def is_rule_currently_active(rule: dict, at: datetime) -> bool:
    if not rule.get("is_active", False):
        return False
    start_date = coerce_datetime(rule.get("start_date"))
    end_date = coerce_datetime(rule.get("end_date"))
    if start_date is None or end_date is None:
        return False
    return start_date <= at <= end_date


def rule_matches_product(rule: dict, product: dict) -> bool:
    target_value = rule.get("target_value")
    if not target_value:
        return False

    rule_type = rule.get("rule_type")
    if rule_type == "CATEGORY":
        return product.get("category_id") == target_value
    if rule_type == "BRAND":
        # Brand names are compared with the casing stored on the product.
        return product.get("brand_name") == target_value
    return False


def calculate_campaign_price(selling_price: float, discount_type: str, discount_amount: float) -> float:
    price = Decimal(str(selling_price))
    amount = Decimal(str(discount_amount))

    if discount_type == "PERCENTAGE":
        new_price = price * (Decimal(1) - amount / Decimal(100))
    elif discount_type == "FIXED":
        new_price = price - amount
    else:
        raise ValueError(f"unsupported discount type {discount_type!r}")

    new_price = max(Decimal(0), new_price)
    return float(new_price.quantize(_CENT, rounding=ROUND_HALF_UP))


def rule_rank(rule: dict, new_price: float) -> tuple:
    """Sort key for competing rules: lowest key wins."""
    return (-int(rule.get("priority") or 0), new_price, rule["id"])


def select_winning_rule(candidates: Iterable[tuple[dict, float]]) -> tuple[dict, float] | None:
    best: tuple[dict, float] | None = None
    for rule, new_price in candidates:
        if best is None or rule_rank(rule, new_price) < rule_rank(*best):
            best = (rule, new_price)
    return best


def campaign_window(rule: dict, now: datetime) -> tuple[datetime, datetime]:
    start_date = coerce_datetime(rule["start_date"])
    end_date = coerce_datetime(rule["end_date"])
    return max(now, start_date), end_date


def campaign_needs_update(product: dict, rule: dict, new_price: float) -> bool:
    current_price = product.get("campaign_price")
    if current_price is None or round_money(current_price) != new_price:
        return True
    if product.get("campaign_rule_id") != rule["id"]:
        return True
    return coerce_datetime(product.get("campaign_end")) != coerce_datetime(rule["end_date"])


def calculate_coupon_discount(cart_total: float, coupon: dict) -> float:
    total = Decimal(str(cart_total))
    amount = Decimal(str(coupon.get("discount_amount") or 0))
    discount_type = coupon.get("discount_type")

    if discount_type == "PERCENTAGE":
        discount = total * amount / Decimal(100)
        max_discount = coupon.get("max_discount")
        if max_discount is not None:
            discount = min(discount, Decimal(str(max_discount)))
    elif discount_type == "FIXED":
        discount = min(amount, total)
    else:
        raise ValueError(f"unsupported discount type {discount_type!r}")

    discount = max(Decimal(0), discount)
    return float(discount.quantize(_CENT, rounding=ROUND_HALF_UP))
