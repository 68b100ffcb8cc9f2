"""
Seller listings: create, edit and delete devices.

Only members may list. Sellers manage their own devices; admins manage any
device and are the only ones who can mark one as featured.
"""
from datetime import datetime, timezone
from typing import List, Optional

from catalog import PRODUCTS
from errors import NotFoundError, PermissionDeniedError, ValidationError
from logging_config import get_logger
from schemas import ProductForm, ProductUpdate

logger = get_logger("products")

ADMIN = "admin"


def _split_csv(value: str) -> List[str]:
    return [item.strip() for item in (value or "").split(",") if item.strip()]


def parse_price(value, label: str = "price") -> float:
    """Parse a price typed into the form; must be a number greater than 0."""
    try:
        price = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Please enter a valid {label} greater than 0")
    if price != price or price <= 0:
        raise ValidationError(f"Please enter a valid {label} greater than 0")
    return price


def can_edit(product: dict, identity, role: Optional[str]) -> bool:
    if identity is None:
        return False
    if role == ADMIN:
        return True
    return product.get("seller_id") == identity.uid


class ProductService:
    def __init__(self, store, session):
        self.store = store
        self.session = session

    def get(self, product_id: str) -> dict:
        product = self.store.get(PRODUCTS, product_id)
        if product is None:
            raise NotFoundError("Device not found")
        return product

    def create(self, form: ProductForm, identity) -> str:
        if identity is None:
            raise PermissionDeniedError("Only registered members can sell devices")
        if not form.name.strip() or not form.brand.strip() or form.price in (None, "") or not form.image_url.strip():
            raise ValidationError("Please fill in all required fields: Name, Brand, Price, and Image URL")
        price = parse_price(form.price)
        original_price = parse_price(form.original_price, "original price") if form.original_price not in (None, "") else price
        role = self.session.user_role(identity)
        now = datetime.now(timezone.utc)
        product = {
            "name": form.name.strip(),
            "brand": form.brand.strip(),
            "model": form.model.strip(),
            "price": price,
            "original_price": original_price,
            "image": form.image_url.strip(),
            "additional_images": _split_csv(form.additional_images),
            "description": form.description.strip(),
            "condition": form.condition,
            "category": form.category,
            "color": form.color.strip(),
            "storage": form.storage.strip(),
            "ram": form.ram.strip(),
            "operating_system": form.operating_system.strip(),
            "screen_size": form.screen_size.strip(),
            "battery_capacity": form.battery_capacity.strip(),
            "camera_megapixel": form.camera_megapixel.strip(),
            "processor": form.processor.strip(),
            "display_type": form.display_type.strip(),
            "connectivity": form.connectivity.strip(),
            "weight": form.weight.strip(),
            "dimensions": form.dimensions.strip(),
            "warranty": form.warranty.strip(),
            "featured": form.featured if role == ADMIN else False,
            "tags": _split_csv(form.tags),
            "rating": 0,
            "rating_count": 0,
            "views": 0,
            "likes": 0,
            "seller_id": identity.uid,
            "seller_email": identity.email,
            "seller_role": role,
            "created_at": now,
            "updated_at": now,
            "is_active": True,
            "in_stock": True,
        }
        product_id = self.store.add(PRODUCTS, product)
        logger.info("Product %s listed by %s", product_id, identity.uid)
        return product_id

    def _check_permission(self, product: dict, identity, action: str) -> str:
        role = self.session.user_role(identity)
        if not can_edit(product, identity, role):
            raise PermissionDeniedError(f"You can only {action} your own devices")
        return role

    def update(self, product_id: str, changes: ProductUpdate, identity) -> dict:
        product = self.get(product_id)
        role = self._check_permission(product, identity, "edit")
        data = changes.model_dump(exclude_unset=True)
        if "price" in data:
            data["price"] = parse_price(data["price"])
        if data.get("original_price") not in (None, ""):
            data["original_price"] = parse_price(data["original_price"], "original price")
        elif "original_price" in data:
            data["original_price"] = data.get("price", product.get("price"))
        for key in ("name", "brand"):
            if key in data and not (data[key] or "").strip():
                raise ValidationError(f"{key.capitalize()} cannot be empty")
        if "featured" in data and role != ADMIN:
            data.pop("featured")
        data = {k: v.strip() if isinstance(v, str) else v for k, v in data.items()}
        data["updated_at"] = datetime.now(timezone.utc)
        self.store.update(PRODUCTS, product_id, data)
        return self.get(product_id)

    def delete(self, product_id: str, identity) -> None:
        product = self.get(product_id)
        self._check_permission(product, identity, "delete")
        self.store.delete(PRODUCTS, product_id)
        logger.info("Product %s removed by %s", product_id, identity.uid)
