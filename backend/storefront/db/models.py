from datetime import datetime
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def _new_category_id() -> str:
    return uuid4().hex


class Category(Base):
    __tablename__ = "categories"

    id = Column(String, primary_key=True, default=_new_category_id)
    name = Column(String, nullable=False, unique=True)

    products = relationship("Product", back_populates="category")


class Product(Base):
    __tablename__ = "products"
    __table_args__ = (
        Index("ix_products_category_active", "category_id", "is_active"),
        Index("ix_products_brand_active", "brand_name", "is_active"),
        Index("ix_products_campaign_end", "campaign_end"),
        CheckConstraint("selling_price >= 0", name="ck_products_selling_price_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)

    name = Column(String, nullable=False)
    slug = Column(String, nullable=False, unique=True, index=True)

    category_id = Column(
        String,
        ForeignKey("categories.id", ondelete="RESTRICT"),
        nullable=False,
    )
    brand_name = Column(String, nullable=True)

    selling_price = Column(Float, nullable=False)
    mrp = Column(Float, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    # Set and cleared only by the discount engine and the expiry sweep.
    campaign_price = Column(Float, nullable=True)
    campaign_start = Column(DateTime, nullable=True)
    campaign_end = Column(DateTime, nullable=True)
    campaign_rule_id = Column(
        Integer,
        ForeignKey("discount_rules.id", ondelete="SET NULL"),
        nullable=True,
    )

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    category = relationship("Category", back_populates="products")
    campaign_rule = relationship("DiscountRule")


class DiscountRule(Base):
    __tablename__ = "discount_rules"
    __table_args__ = (
        Index("ix_discount_rules_active_window", "is_active", "start_date", "end_date"),
        CheckConstraint("discount_amount > 0", name="ck_discount_rules_amount_positive"),
    )

    id = Column(Integer, primary_key=True, index=True)

    name = Column(String, nullable=False)
    rule_type = Column(String, nullable=False)  # CATEGORY | BRAND | CART_AMOUNT | USER_GROUP
    target_value = Column(String, nullable=True)
    discount_type = Column(String, nullable=False)  # PERCENTAGE | FIXED
    discount_amount = Column(Float, nullable=False)
    min_cart_amount = Column(Float, nullable=True)

    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)
    priority = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    description = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    logs = relationship(
        "DiscountLog",
        back_populates="rule",
        cascade="all, delete-orphan",
    )


class DiscountLog(Base):
    __tablename__ = "discount_logs"

    id = Column(Integer, primary_key=True, index=True)
    rule_id = Column(
        Integer,
        ForeignKey("discount_rules.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    product_id = Column(
        Integer,
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    old_price = Column(Float, nullable=False)
    new_price = Column(Float, nullable=False)
    discount_amount = Column(Float, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    rule = relationship("DiscountRule", back_populates="logs")
    product = relationship("Product")


class Coupon(Base):
    __tablename__ = "coupons"
    __table_args__ = (
        CheckConstraint("discount_amount > 0", name="ck_coupons_amount_positive"),
        CheckConstraint("usage_count >= 0", name="ck_coupons_usage_count_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)

    code = Column(String, nullable=False, unique=True, index=True)
    discount_type = Column(String, nullable=False)  # PERCENTAGE | FIXED
    discount_amount = Column(Float, nullable=False)
    min_cart_amount = Column(Float, nullable=True)
    max_discount = Column(Float, nullable=True)
    usage_limit = Column(Integer, nullable=True)
    per_user_limit = Column(Integer, nullable=True)
    usage_count = Column(Integer, nullable=False, default=0)

    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    description = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    usages = relationship(
        "CouponUsage",
        back_populates="coupon",
        cascade="all, delete-orphan",
    )


class CouponUsage(Base):
    __tablename__ = "coupon_usages"
    __table_args__ = (
        Index("ix_coupon_usages_coupon_user", "coupon_id", "user_id"),
        UniqueConstraint("coupon_id", "order_ref", name="uq_coupon_usages_coupon_order"),
    )

    id = Column(Integer, primary_key=True, index=True)
    coupon_id = Column(
        Integer,
        ForeignKey("coupons.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id = Column(String, nullable=False, index=True)
    order_ref = Column(String, nullable=True)
    discount_amount = Column(Float, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    coupon = relationship("Coupon", back_populates="usages")
