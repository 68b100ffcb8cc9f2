import logging
import os
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from pydantic import BaseModel

import config
from cart import CartEngine, now_ms
from catalog import CatalogFeed, active_filter_count, discount_percentage, recompute
from checkout import calculate_totals, place_order
from database import db, default_store
from errors import (
    AuthError,
    MarketplaceError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
    WriteThroughError,
)
from local_cache import FileLocalCache, MemoryLocalCache, NamespacedCache
from logging_config import get_logger, setup_logging
from products import ProductService
from schemas import (
    AddToCart,
    CheckoutRequest,
    FilterState,
    PriceRange,
    ProductForm,
    ProductUpdate,
    ProfileUpdate,
    QuantityUpdate,
    SignupRequest,
    SortKey,
)
from session import Identity, SessionManager
from wishlist import Wishlist

setup_logging(level=getattr(logging, config.LOG_LEVEL, logging.INFO), log_to_file=config.LOG_TO_FILE)
logger = get_logger("api")

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/login", auto_error=False)

app = FastAPI(title="MobileHub API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def configure(store=None, cache=None, clock=now_ms):
    """Wire the capabilities every request uses. Called at import and by tests."""
    previous = getattr(app.state, "catalog", None)
    if previous is not None:
        previous.stop()
    app.state.store = store or default_store()
    if cache is None:
        cache = FileLocalCache(config.LOCAL_CACHE_PATH) if config.LOCAL_CACHE_PATH else MemoryLocalCache()
    app.state.cache = cache
    app.state.clock = clock
    app.state.catalog = CatalogFeed(app.state.store)
    app.state.catalog.start()


configure()


@app.exception_handler(MarketplaceError)
def handle_marketplace_error(request: Request, exc: MarketplaceError):
    if isinstance(exc, ValidationError):
        status = 400
    elif isinstance(exc, AuthError):
        status = 401
    elif isinstance(exc, PermissionDeniedError):
        status = 403
    elif isinstance(exc, NotFoundError):
        status = 404
    else:
        status = 503
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=status, content={"detail": exc.message, "code": exc.code})


# Helpers
class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


def get_session(request: Request) -> SessionManager:
    return SessionManager(request.app.state.store)


def get_identity(token: Optional[str] = Depends(oauth2_scheme), session: SessionManager = Depends(get_session)) -> Optional[Identity]:
    if not token:
        return None
    return session.identity_from_token(token)


def require_identity(identity: Optional[Identity] = Depends(get_identity)) -> Identity:
    if identity is None:
        raise AuthError("Please sign in to continue", "auth/required")
    return identity


def get_cart(
    request: Request,
    identity: Optional[Identity] = Depends(get_identity),
    x_guest_id: Optional[str] = Header(None),
) -> CartEngine:
    state = request.app.state
    device_cache = NamespacedCache(state.cache, x_guest_id or "anonymous")
    cart = CartEngine(state.store, device_cache, clock=state.clock)
    cart.load(identity)
    return cart


def get_products(request: Request, session: SessionManager = Depends(get_session)) -> ProductService:
    return ProductService(request.app.state.store, session)


def with_discount(product: dict) -> dict:
    return {**product, "discount_percentage": discount_percentage(product)}


def cart_response(cart: CartEngine, message: Optional[str] = None) -> dict:
    message = message or cart.error
    lines = cart.lines
    return {
        "items": [{**line, "product": with_discount(line.get("product") or {})} for line in lines],
        "item_count": cart.item_count(),
        "total": cart.total(),
        "summary": calculate_totals(lines),
        "guest": cart.is_guest,
        "synced": message is None,
        "message": message,
    }


def run_cart_command(cart: CartEngine, command, *args) -> dict:
    try:
        command(*args)
    except WriteThroughError as e:
        # the visible cart keeps the change
        return cart_response(cart, e.message)
    return cart_response(cart)


@app.get("/")
def read_root():
    return {"message": "MobileHub backend is running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        if db is not None:
            response["database"] = "✅ Available"
            response["connection_status"] = "Connected"
            try:
                collections = db.list_collection_names()
                response["collections"] = collections[:10]
                response["database"] = "✅ Connected & Working"
            except Exception as e:
                response["database"] = f"⚠️ Connected but Error: {str(e)[:50]}"
        else:
            response["database"] = "⚠️ In-memory store"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:50]}"
    return response


# Auth
@app.post("/api/register", response_model=Token)
def register(payload: SignupRequest, session: SessionManager = Depends(get_session)):
    return Token(access_token=session.sign_up(payload))


@app.post("/api/login", response_model=Token)
def login(form_data: OAuth2PasswordRequestForm = Depends(), session: SessionManager = Depends(get_session)):
    return Token(access_token=session.sign_in(form_data.username, form_data.password))


@app.get("/api/me")
def me(current: Identity = Depends(require_identity), session: SessionManager = Depends(get_session)):
    return session.load_profile(current)


@app.patch("/api/me")
def update_me(payload: ProfileUpdate, current: Identity = Depends(require_identity), session: SessionManager = Depends(get_session)):
    return session.update_profile(current, payload.model_dump(exclude_unset=True))


# Catalog
@app.get("/api/products")
def list_products(
    request: Request,
    q: str = "",
    sort: SortKey = "newest",
    brands: List[str] = Query([]),
    models: List[str] = Query([]),
    conditions: List[str] = Query([]),
    categories: List[str] = Query([]),
    colors: List[str] = Query([]),
    storages: List[str] = Query([]),
    rams: List[str] = Query([]),
    operating_systems: List[str] = Query([]),
    screen_sizes: List[str] = Query([]),
    battery_capacities: List[str] = Query([]),
    camera_megapixels: List[str] = Query([]),
    min_price: float = Query(0, ge=0),
    max_price: float = Query(config.PRICE_RANGE_MAX, ge=0),
    rating: float = Query(0, ge=0, le=5),
    featured: bool = False,
    in_stock: bool = False,
):
    filters = FilterState(
        brands=set(brands),
        price_range=PriceRange(min=min_price, max=max_price),
        models=set(models),
        conditions=set(conditions),
        categories=set(categories),
        colors=set(colors),
        storages=set(storages),
        rams=set(rams),
        operating_systems=set(operating_systems),
        screen_sizes=set(screen_sizes),
        battery_capacities=set(battery_capacities),
        camera_megapixels=set(camera_megapixels),
        rating=rating,
        featured=featured,
        in_stock=in_stock,
    )
    catalog = request.app.state.catalog
    items = recompute(catalog.products, q, filters, sort)
    return {
        "items": [with_discount(p) for p in items],
        "total": len(items),
        "active_filters": active_filter_count(filters),
    }


@app.get("/api/products/facets")
def product_facets(request: Request):
    return request.app.state.catalog.facets()


@app.get("/api/products/{product_id}")
def get_product(product_id: str, products: ProductService = Depends(get_products)):
    return with_discount(products.get(product_id))


@app.post("/api/products")
def create_product(payload: ProductForm, current: Identity = Depends(require_identity), products: ProductService = Depends(get_products)):
    return {"id": products.create(payload, current)}


@app.patch("/api/products/{product_id}")
def update_product(
    product_id: str,
    payload: ProductUpdate,
    current: Identity = Depends(require_identity),
    products: ProductService = Depends(get_products),
):
    return with_discount(products.update(product_id, payload, current))


@app.delete("/api/products/{product_id}")
def delete_product(product_id: str, current: Identity = Depends(require_identity), products: ProductService = Depends(get_products)):
    products.delete(product_id, current)
    return {"deleted": True}


# Cart (guests send X-Guest-Id, members a bearer token)
@app.get("/api/cart")
def read_cart(cart: CartEngine = Depends(get_cart)):
    return cart_response(cart)


@app.post("/api/cart/items")
def add_to_cart(item: AddToCart, cart: CartEngine = Depends(get_cart), products: ProductService = Depends(get_products)):
    product = products.get(item.product_id)
    return run_cart_command(cart, cart.add, product, item.quantity)


@app.patch("/api/cart/items/{product_id}")
def update_cart_item(product_id: str, payload: QuantityUpdate, cart: CartEngine = Depends(get_cart)):
    return run_cart_command(cart, cart.set_quantity, product_id, payload.quantity)


@app.delete("/api/cart/items/{product_id}")
def remove_cart_item(product_id: str, cart: CartEngine = Depends(get_cart)):
    return run_cart_command(cart, cart.remove, product_id)


@app.delete("/api/cart")
def clear_cart(cart: CartEngine = Depends(get_cart)):
    return run_cart_command(cart, cart.clear)


@app.post("/api/cart/merge")
def merge_guest_cart(cart: CartEngine = Depends(get_cart)):
    """Move this device's guest cart into the signed-in member's cart."""
    return run_cart_command(cart, cart.merge_guest_cart)


# Wishlist
@app.get("/api/wishlist")
def read_wishlist(request: Request, current: Identity = Depends(require_identity)):
    items = Wishlist(request.app.state.store, current).load()
    return {"items": [with_discount(p) for p in items]}


@app.post("/api/wishlist/{product_id}")
def like_product(request: Request, product_id: str, current: Identity = Depends(require_identity), products: ProductService = Depends(get_products)):
    products.get(product_id)
    Wishlist(request.app.state.store, current).add(product_id)
    return {"product_id": product_id, "liked": True}


@app.delete("/api/wishlist/{product_id}")
def unlike_product(request: Request, product_id: str, current: Identity = Depends(require_identity)):
    Wishlist(request.app.state.store, current).remove(product_id)
    return {"product_id": product_id, "liked": False}


@app.delete("/api/wishlist")
def clear_wishlist(request: Request, current: Identity = Depends(require_identity)):
    Wishlist(request.app.state.store, current).clear()
    return {"cleared": True}


# Checkout (order record only, nothing is charged)
@app.post("/api/checkout")
def checkout(request: Request, payload: CheckoutRequest, cart: CartEngine = Depends(get_cart)):
    shipping_info = payload.shipping_info
    if cart.identity is not None and not shipping_info.email:
        shipping_info = shipping_info.model_copy(update={"email": cart.identity.email})
    order = place_order(request.app.state.store, cart, shipping_info, payload.payment_method)
    message = f"Thank you for your purchase! Your order number is {order['order_number']}."
    if not order["cart_cleared"]:
        message += " Your cart could not be emptied, please clear it manually."
    return {"order": order, "message": message}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
