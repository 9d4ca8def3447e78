"""
Database Schemas for the shop API

Each document model maps to a MongoDB collection named after the lowercase
class name (e.g., Product -> "product").

Field names follow one convention per document family:
  - cart and order documents use the camelCase names of the public API
    (userId, shippingAddress, createdAt, updatedAt, ...); request bodies
    accept either spelling.
  - product, user, review and blog documents are snake_case
    (created_at, updated_at, published_at, avg_rating, ...).
"""
from __future__ import annotations
import re
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

PHONE_RE = re.compile(r"[0-9]{10}")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _required_text(value: str) -> str:
    if value is None or not str(value).strip():
        raise ValueError("must not be empty")
    return str(value).strip()


def _phone(value: str) -> str:
    if not PHONE_RE.fullmatch(value or ""):
        raise ValueError("Phone number is invalid (must be 10 digits).")
    return value


# Orders & carts

class OrderStatus(str, Enum):
    pending = "pending"
    shipping = "shipping"
    delivered = "delivered"
    paid = "paid"
    cancelled = "cancelled"


class ShippingAddress(CamelModel):
    fullname: str
    address: str
    phone: str
    city: Optional[str] = None
    postal_code: Optional[str] = None

    @field_validator("fullname", "address", "phone", mode="before")
    @classmethod
    def not_empty(cls, v):
        return _required_text(v)

    @field_validator("phone")
    @classmethod
    def valid_phone(cls, v):
        return _phone(v)


class CheckoutRequest(CamelModel):
    # validated by orders.validate_shipping_address
    shipping_address: Optional[Dict[str, Any]] = None
    payment_method: Optional[str] = None


class BuyNowRequest(CheckoutRequest):
    product_id: Optional[str] = None
    quantity: int = 1


class StatusChange(BaseModel):
    status: OrderStatus


class AddCartItem(CamelModel):
    product_id: Optional[str] = None
    quantity: int = 1


class CartLine(CamelModel):
    product_id: Optional[str] = None
    quantity: int
    name: Optional[str] = None
    image: Optional[str] = None
    price: Optional[float] = None


class CartReplace(BaseModel):
    items: List[CartLine]


class CartQuantity(BaseModel):
    quantity: int


# Catalog

class Price(BaseModel):
    origin_price: float = Field(ge=0)
    discount: float = Field(0, ge=0, le=100)
    sell_price: Optional[float] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def derive_sell_price(self):
        if self.sell_price is None:
            self.sell_price = round(self.origin_price * (100 - self.discount) / 100, 2)
        return self


class ProductImage(BaseModel):
    url: str
    alt: str = ""


class SEOInfo(BaseModel):
    title: str
    meta_description: str = ""
    keywords: List[str] = []
    canonical: str
    image: str = ""
    og_title: str = ""
    og_description: str = ""
    og_image: str = ""
    og_type: str = "website"
    twitter_title: str = ""
    twitter_description: str = ""
    twitter_image: str = ""


class ProductCreate(BaseModel):
    name: str
    slug: str
    category: str
    price: Price
    images: List[ProductImage] = []
    description: str = ""
    stock: int = Field(0, ge=0)

    @field_validator("name", "slug", "category", mode="before")
    @classmethod
    def not_empty(cls, v):
        return _required_text(v)

    @field_validator("price", mode="before")
    @classmethod
    def plain_price(cls, v):
        # a bare number is the origin price with no discount
        if isinstance(v, (int, float)):
            return {"origin_price": v}
        return v


# Users

class UserName(BaseModel):
    lastname: str
    firstname: str


class UserInfo(BaseModel):
    username: UserName
    phone: str
    address: str

    @field_validator("phone")
    @classmethod
    def valid_phone(cls, v):
        return _phone(v)


class AuthInfo(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)


class RegisterPayload(BaseModel):
    info_user: UserInfo
    info_auth: AuthInfo


class Credentials(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class LoginPayload(Credentials):
    info_auth: Optional[Credentials] = None


class UserNameUpdate(BaseModel):
    lastname: Optional[str] = None
    firstname: Optional[str] = None


class UserInfoUpdate(BaseModel):
    username: Optional[UserNameUpdate] = None
    phone: Optional[str] = None
    address: Optional[str] = None


class ProfileUpdate(BaseModel):
    info_user: Optional[UserInfoUpdate] = None


class PasswordChange(CamelModel):
    current_password: Optional[str] = None
    new_password: Optional[str] = None


# Reviews

class ReviewCreate(CamelModel):
    product_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: str

    @field_validator("comment", mode="before")
    @classmethod
    def not_empty(cls, v):
        return _required_text(v)


class ReviewUpdate(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: str

    @field_validator("comment", mode="before")
    @classmethod
    def not_empty(cls, v):
        return _required_text(v)


# Blog

class BlogCreate(BaseModel):
    title: str
    slug: str
    tags: List[str] = Field(..., min_length=1)
    content: str
    author: str
    blog_image: str
    meta: Optional[SEOInfo] = None

    @field_validator("title", "slug", "content", "author", "blog_image", mode="before")
    @classmethod
    def not_empty(cls, v):
        return _required_text(v)


class BlogUpdate(BaseModel):
    title: Optional[str] = None
    slug: Optional[str] = None
    tags: Optional[List[str]] = None
    content: Optional[str] = None
    author: Optional[str] = None
    blog_image: Optional[str] = None
    meta: Optional[SEOInfo] = None
