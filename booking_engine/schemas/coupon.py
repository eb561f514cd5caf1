# booking_engine/schemas/coupon.py
"""
Coupon schemas.

Coupon creation is a tagged union on ``coupon_type`` so each variant carries
only the fields that make sense for it (private coupons must name their
users). The preview endpoint speaks the camelCase wire format used by the
storefront.
"""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from ..core.config import settings
from ..core.enums import AssetType, CouponType, DiscountType
from ..core.time_utils import utc_now
from ..domain import coupon_rules
from ._strict_base import StrictRequestModel
from .base import StandardizedModel


class CouponAssetRef(StrictRequestModel):
    asset_type: AssetType
    asset_id: str = Field(..., min_length=1, max_length=26)


class _CouponCreateBase(StrictRequestModel):
    """Fields shared by every coupon variant. Amounts are minor units."""

    code: Optional[str] = Field(None, description="Leave empty to generate one")
    code_prefix: Optional[str] = Field(None, max_length=10)
    name: Optional[str] = Field(None, max_length=120)
    description: Optional[str] = Field(None, max_length=1000)
    discount_type: DiscountType
    discount_value: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    max_discount_amount: Optional[int] = Field(None, gt=0)
    minimum_order_value: Optional[int] = Field(None, ge=0)
    maximum_order_value: Optional[int] = Field(None, gt=0)
    usage_limit: Optional[int] = Field(None, gt=0)
    user_usage_limit: Optional[int] = Field(None, gt=0)
    valid_from: datetime
    valid_until: datetime
    is_global: bool = False
    allowed_users: List[str] = Field(default_factory=list)
    global_asset_types: List[AssetType] = Field(default_factory=list)
    applicable_assets: List[CouponAssetRef] = Field(default_factory=list)
    stackable: bool = False
    is_active: bool = True
    created_by: Optional[str] = Field(None, max_length=64)

    @field_validator("code", "code_prefix", mode="before")
    @classmethod
    def _normalize_code(cls, v: object) -> object:
        if isinstance(v, str):
            return coupon_rules.normalize_code(v) or None
        return v

    @model_validator(mode="after")
    def _check_definition(self) -> Any:
        errors = coupon_rules.validate_definition(
            code=self.code or "GENERATED",
            discount_type=self.discount_type.value,
            discount_value=self.discount_value,
            valid_from=self.valid_from,
            valid_until=self.valid_until,
            coupon_type=self.coupon_type,  # type: ignore[attr-defined]
            is_global=self.is_global,
            applicable_assets=self.applicable_assets,
            allowed_users=self.allowed_users,
            max_discount_amount=self.max_discount_amount,
            minimum_order_value=self.minimum_order_value,
            maximum_order_value=self.maximum_order_value,
            usage_limit=self.usage_limit,
            user_usage_limit=self.user_usage_limit,
            max_validity_days=settings.coupon_max_validity_days,
        )
        if errors:
            raise ValueError("; ".join(errors))
        return self


class PublicCouponCreate(_CouponCreateBase):
    coupon_type: Literal["public"] = CouponType.PUBLIC.value


class PrivateCouponCreate(_CouponCreateBase):
    coupon_type: Literal["private"] = CouponType.PRIVATE.value
    allowed_users: List[str] = Field(..., min_length=1, description="User ids allowed to redeem")


class FirstPurchaseCouponCreate(_CouponCreateBase):
    coupon_type: Literal["first_purchase"] = CouponType.FIRST_PURCHASE.value


class ReturningCustomerCouponCreate(_CouponCreateBase):
    coupon_type: Literal["returning_customer"] = CouponType.RETURNING_CUSTOMER.value


CouponCreate = Annotated[
    Union[
        PublicCouponCreate,
        PrivateCouponCreate,
        FirstPurchaseCouponCreate,
        ReturningCustomerCouponCreate,
    ],
    Field(discriminator="coupon_type"),
]


class CouponValidateRequest(BaseModel):
    """Coupon preview request, camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="forbid"
    )

    coupon_code: str = Field(..., min_length=1, max_length=40)
    order_value: int = Field(..., ge=0)
    user_id: Optional[str] = None
    email: Optional[str] = None
    asset_type: Optional[AssetType] = None
    asset_id: Optional[str] = None
    has_purchase_history: Optional[bool] = None


class CouponValidateResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    is_valid: bool
    code: str
    discount_amount: Optional[int] = None
    final_amount: Optional[int] = None
    reason: Optional[str] = None
    message: Optional[str] = None


class CouponResponse(StandardizedModel):
    id: str
    code: str
    name: Optional[str] = None
    description: Optional[str] = None
    discount_type: str
    discount_value: float
    max_discount_amount: Optional[int] = None
    minimum_order_value: Optional[int] = None
    maximum_order_value: Optional[int] = None
    usage_limit: Optional[int] = None
    user_usage_limit: Optional[int] = None
    usage_count: int
    valid_from: datetime
    valid_until: datetime
    coupon_type: str
    is_global: bool
    stackable: bool
    is_active: bool
    status: str
    summary: str
    expiring_soon: bool

    @classmethod
    def from_coupon(cls, coupon: Any, now: Optional[datetime] = None) -> "CouponResponse":
        current = now or utc_now()
        return cls(
            id=coupon.id,
            code=coupon.code,
            name=coupon.name,
            description=coupon.description,
            discount_type=coupon.discount_type,
            discount_value=float(coupon.discount_value),
            max_discount_amount=coupon.max_discount_amount,
            minimum_order_value=coupon.minimum_order_value,
            maximum_order_value=coupon.maximum_order_value,
            usage_limit=coupon.usage_limit,
            user_usage_limit=coupon.user_usage_limit,
            usage_count=coupon.usage_count or 0,
            valid_from=coupon.valid_from,
            valid_until=coupon.valid_until,
            coupon_type=coupon.coupon_type,
            is_global=coupon.is_global,
            stackable=coupon.stackable,
            is_active=coupon.is_active,
            status=coupon_rules.coupon_status(coupon, current).value,
            summary=coupon_rules.describe(coupon),
            expiring_soon=coupon_rules.is_expiring_soon(
                coupon, current, settings.coupon_expiring_soon_days
            ),
        )
