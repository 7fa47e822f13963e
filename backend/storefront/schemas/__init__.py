from storefront.schemas.coupons_s import (
    ApplyCouponRequest,
    CreateCouponRequest,
    UpdateCouponRequest,
)
from storefront.schemas.discounts_s import (
    CreateDiscountRuleRequest,
    UpdateDiscountRuleRequest,
)

__all__ = [
    "ApplyCouponRequest",
    "CreateCouponRequest",
    "UpdateCouponRequest",
    "CreateDiscountRuleRequest",
    "UpdateDiscountRuleRequest",
]
