"""
Schemas for the MobileHub storefront

Request bodies, the filter configuration and the records written to the
document store. Collections: users, products, orders.
"""
from datetime import datetime
from typing import List, Literal, Optional, Set, Union

from pydantic import BaseModel, Field

from config import DEFAULT_COUNTRY, PRICE_RANGE_MAX

Condition = Literal["new", "like-new", "good", "fair"]
Category = Literal["smartphone", "tablet", "smartwatch", "earbuds", "accessories"]
SortKey = Literal["newest", "priceHigh", "priceLow", "rating", "featured"]


class SignupRequest(BaseModel):
    name: str = ""
    email: str = ""
    password: str = ""
    confirm_password: str = ""
    phone: str = ""
    address: Optional[str] = None
    role: str = Field("", description="customer or admin")


class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None


class PriceRange(BaseModel):
    min: float = 0
    max: float = PRICE_RANGE_MAX


class FilterState(BaseModel):
    """Catalog filters. Empty sets mean unconstrained, never 'exclude all'."""

    brands: Set[str] = Field(default_factory=set)
    price_range: PriceRange = Field(default_factory=PriceRange)
    models: Set[str] = Field(default_factory=set)
    conditions: Set[str] = Field(default_factory=set)
    categories: Set[str] = Field(default_factory=set)
    colors: Set[str] = Field(default_factory=set)
    storages: Set[str] = Field(default_factory=set)
    rams: Set[str] = Field(default_factory=set)
    operating_systems: Set[str] = Field(default_factory=set)
    screen_sizes: Set[str] = Field(default_factory=set)
    battery_capacities: Set[str] = Field(default_factory=set)
    camera_megapixels: Set[str] = Field(default_factory=set)
    rating: float = Field(0, ge=0, le=5, description="Minimum rating, 0 = any")
    featured: bool = False
    in_stock: bool = False


class ProductForm(BaseModel):
    """Listing form as typed by a seller; numbers may arrive as text."""

    name: str = ""
    brand: str = ""
    model: str = ""
    price: Union[float, str, None] = None
    original_price: Union[float, str, None] = None
    image_url: str = ""
    additional_images: str = Field("", description="Comma-separated image URLs")
    description: str = ""
    condition: Condition = "new"
    category: Category = "smartphone"
    color: str = ""
    storage: str = ""
    ram: str = ""
    operating_system: str = ""
    screen_size: str = ""
    battery_capacity: str = ""
    camera_megapixel: str = ""
    processor: str = ""
    display_type: str = ""
    connectivity: str = ""
    weight: str = ""
    dimensions: str = ""
    warranty: str = ""
    tags: str = Field("", description="Comma-separated tags")
    featured: bool = False


class ProductUpdate(BaseModel):
    name: Optional[str] = None
    brand: Optional[str] = None
    model: Optional[str] = None
    price: Union[float, str, None] = None
    original_price: Union[float, str, None] = None
    image: Optional[str] = None
    description: Optional[str] = None
    condition: Optional[Condition] = None
    category: Optional[Category] = None
    color: Optional[str] = None
    storage: Optional[str] = None
    ram: Optional[str] = None
    operating_system: Optional[str] = None
    screen_size: Optional[str] = None
    battery_capacity: Optional[str] = None
    camera_megapixel: Optional[str] = None
    featured: Optional[bool] = None
    in_stock: Optional[bool] = None
    is_active: Optional[bool] = None


class CartLine(BaseModel):
    """Cart line as persisted on the user document (no product copy)."""

    product_id: str
    quantity: int = Field(1, ge=1)
    added_at: Optional[datetime] = None


class AddToCart(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)


class QuantityUpdate(BaseModel):
    quantity: int = Field(..., description="Zero or less removes the line")


class ShippingInfo(BaseModel):
    name: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    city: str = ""
    zip_code: str = ""
    country: str = DEFAULT_COUNTRY


class CheckoutRequest(BaseModel):
    shipping_info: ShippingInfo
    payment_method: str = Field("card", description="Recorded only, nothing is charged")


class OrderItem(BaseModel):
    product_id: str
    name: str
    brand: str = ""
    price: float
    quantity: int


class Order(BaseModel):
    user_id: Optional[str] = None
    user_email: str
    items: List[OrderItem]
    shipping_info: ShippingInfo
    payment_method: str = "card"
    subtotal: float
    shipping: float
    tax: float
    order_total: float
    status: str = "pending"
    order_number: str
    created_at: datetime
