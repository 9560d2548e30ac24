"""Product and coupon models for the shop and coupon flows."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class Product(BaseModel):
    id: str
    name: str
    description: str = ""
    price: int = Field(ge=0)
    stock: int = Field(default=0, ge=0)
    on_sale: bool = True
    sort_order: int = 0


class ProductOrder(BaseModel):
    id: str
    order_no: str
    tenant_id: str
    customer_id: str
    product_id: str
    product_name: str
    quantity: int = Field(ge=1)
    unit_price: int
    total: int
    created_at: datetime
    commit_key: Optional[str] = None


class Coupon(BaseModel):
    id: str
    name: str
    description: str = ""
    published: bool = True
    limit_per_customer: int = Field(default=1, ge=1)
    expires_at: Optional[datetime] = None


class CouponClaim(BaseModel):
    id: str
    tenant_id: str
    coupon_id: str
    customer_id: str
    code: str
    claimed_at: datetime
