from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from storefront.schemas.discounts_s import DiscountType


class CreateCouponRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")
    code: str = Field(min_length=1)
    discount_type: DiscountType
    discount_amount: float = Field(gt=0)
    min_cart_amount: float | None = Field(default=None, ge=0)
    max_discount: float | None = Field(default=None, gt=0)
    usage_limit: int | None = Field(default=None, gt=0)
    per_user_limit: int | None = Field(default=None, gt=0)
    start_date: datetime
    end_date: datetime
    is_active: bool = True
    description: str | None = None

    @field_validator("code")
    @classmethod
    def normalize_code(cls, value: str) -> str:
        return value.strip().upper()


class UpdateCouponRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")
    discount_type: DiscountType | None = None
    discount_amount: float | None = Field(default=None, gt=0)
    min_cart_amount: float | None = Field(default=None, ge=0)
    max_discount: float | None = Field(default=None, gt=0)
    usage_limit: int | None = Field(default=None, gt=0)
    per_user_limit: int | None = Field(default=None, gt=0)
    start_date: datetime | None = None
    end_date: datetime | None = None
    is_active: bool | None = None
    description: str | None = None


class ApplyCouponRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")
    code: str = Field(min_length=1)
    cart_total: float = Field(gt=0)
    user_id: str | None = None
