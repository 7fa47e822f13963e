from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

RuleType = Literal["CATEGORY", "BRAND", "CART_AMOUNT", "USER_GROUP"]
DiscountType = Literal["PERCENTAGE", "FIXED"]


class CreateDiscountRuleRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")
    name: str = Field(min_length=1)
    rule_type: RuleType
    target_value: str | None = None
    discount_type: DiscountType
    discount_amount: float = Field(gt=0)
    min_cart_amount: float | None = Field(default=None, ge=0)
    start_date: datetime
    end_date: datetime
    priority: int = 0
    is_active: bool = True
    description: str | None = None


class UpdateDiscountRuleRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")
    name: str | None = Field(default=None, min_length=1)
    rule_type: RuleType | None = None
    target_value: str | None = None
    discount_type: DiscountType | None = None
    discount_amount: float | None = Field(default=None, gt=0)
    min_cart_amount: float | None = Field(default=None, ge=0)
    start_date: datetime | None = None
    end_date: datetime | None = None
    priority: int | None = None
    is_active: bool | None = None
    description: str | None = None
