"""
Database Schemas for the Sparkle Crackers store

Each top-level Pydantic model corresponds to one MongoDB collection.
Collection name is the lowercase of the class name.

Models accept camelCase keys from the storefront (``productId``,
``shippingAddress``) as well as the snake_case names they are stored under.
"""
from datetime import datetime
from typing import Dict, List, Literal, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

PINCODE_PATTERN = r"^[1-9][0-9]{5}$"
PHONE_PATTERN = r"^[+]?[1-9][\d\s\-()]{8,15}$"

OrderStatus = Literal["pending", "confirmed", "processing", "shipped", "delivered", "cancelled"]
PaymentMethod = Literal["cod", "card", "upi", "online"]
PaymentStatus = Literal["pending", "paid", "failed"]
SoundLevel = Literal["Low", "Medium", "High", "Mixed"]
Role = Literal["user", "admin"]


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _check_object_id(value: str, what: str) -> str:
    if not isinstance(value, str) or not ObjectId.is_valid(value):
        raise ValueError(f"Invalid {what} format: {value}")
    return value


# ----------------------- Catalog -----------------------
class Category(ApiModel):
    name: str = Field(..., min_length=1, description="Unique category name")
    description: Optional[str] = None
    hero_image: Optional[str] = None
    icon: Optional[str] = None


class CategoryUpdate(ApiModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    hero_image: Optional[str] = None
    icon: Optional[str] = None


class Product(ApiModel):
    category_id: str
    name: str = Field(..., min_length=1)
    images: List[str] = Field(..., min_length=1)
    description: str
    short_description: str
    mrp: float = Field(..., ge=0, description="List price")
    price: float = Field(..., ge=0, description="Selling price, never above mrp")
    rating: float = Field(0, ge=0, le=5)
    review_count: int = Field(0, ge=0)
    sound_level: SoundLevel
    burn_time: Optional[str] = None
    stock: int = Field(0, ge=0)
    features: List[str] = []
    specifications: Dict[str, str] = {}
    tags: List[str] = []
    is_new_arrival: bool = False
    is_best_seller: bool = False
    is_on_sale: bool = False

    @field_validator("category_id")
    @classmethod
    def _category_id(cls, v):
        return _check_object_id(v, "Category ID")

    @model_validator(mode="after")
    def _price_within_mrp(self):
        if self.price > self.mrp:
            raise ValueError("Price cannot be greater than MRP")
        return self


class ProductUpdate(ApiModel):
    """Omitted fields are left unchanged."""

    category_id: Optional[str] = None
    name: Optional[str] = Field(None, min_length=1)
    images: Optional[List[str]] = None
    description: Optional[str] = None
    short_description: Optional[str] = None
    mrp: Optional[float] = Field(None, ge=0)
    price: Optional[float] = Field(None, ge=0)
    rating: Optional[float] = Field(None, ge=0, le=5)
    review_count: Optional[int] = Field(None, ge=0)
    sound_level: Optional[SoundLevel] = None
    burn_time: Optional[str] = None
    stock: Optional[int] = Field(None, ge=0)
    features: Optional[List[str]] = None
    specifications: Optional[Dict[str, str]] = None
    tags: Optional[List[str]] = None
    is_new_arrival: Optional[bool] = None
    is_best_seller: Optional[bool] = None
    is_on_sale: Optional[bool] = None

    @field_validator("category_id")
    @classmethod
    def _category_id(cls, v):
        return v if v is None else _check_object_id(v, "Category ID")


# ----------------------- Users -----------------------
class Address(ApiModel):
    label: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    pincode: str = Field(..., pattern=PINCODE_PATTERN)
    phone: str = Field(..., pattern=PHONE_PATTERN)
    is_default: Optional[bool] = None


class CartEntry(ApiModel):
    product_id: str
    quantity: int = Field(1, ge=1)


class User(ApiModel):
    first_name: str
    last_name: str
    email: EmailStr
    phone: str
    password_hash: str = Field(..., description="Salted password hash")
    role: Role = "user"
    is_active: bool = True
    addresses: List[dict] = []
    cart: List[CartEntry] = []
    wishlist: List[str] = []
    reset_password_token: Optional[str] = None
    reset_password_expires: Optional[datetime] = None


class ProfileUpdate(ApiModel):
    first_name: Optional[str] = Field(None, min_length=1)
    last_name: Optional[str] = Field(None, min_length=1)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, min_length=1)
    password: Optional[str] = Field(None, min_length=6)


class AdminUserUpdate(ApiModel):
    first_name: Optional[str] = Field(None, min_length=1)
    last_name: Optional[str] = Field(None, min_length=1)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, min_length=1)
    role: Optional[Role] = None
    is_active: Optional[bool] = None


# ----------------------- Orders -----------------------
class OrderItemIn(ApiModel):
    product_id: str
    quantity: int = Field(..., strict=True, gt=0)

    @field_validator("product_id")
    @classmethod
    def _product_id(cls, v):
        return _check_object_id(v, "Product ID")


class ShippingAddress(ApiModel):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    email: EmailStr
    phone: str = Field(..., min_length=1)
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    pincode: str = Field(..., min_length=1)


class OrderItem(BaseModel):
    """Line item with product fields captured at order time."""

    product_id: str
    quantity: int = Field(..., ge=1)
    price_at_order: float = Field(..., ge=0)
    name_at_order: str
    image_at_order: str


class PaymentProof(ApiModel):
    gateway_order_id: str = Field(..., min_length=1)
    gateway_payment_id: str = Field(..., min_length=1)
    signature: str = Field(..., min_length=1)


class PaymentResult(BaseModel):
    gateway_order_id: str
    gateway_payment_id: str
    signature: str
    status: PaymentStatus = "paid"
    update_time: datetime


class Order(BaseModel):
    user_id: str
    items: List[OrderItem] = Field(..., min_length=1)
    shipping_address: ShippingAddress
    payment_method: PaymentMethod
    payment_status: PaymentStatus = "pending"
    status: OrderStatus = "pending"
    subtotal: float = Field(..., ge=0)
    shipping_fee: float = Field(..., ge=0)
    total: float = Field(..., ge=0)
    tracking_number: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    payment_result: Optional[PaymentResult] = None
