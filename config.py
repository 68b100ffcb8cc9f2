"""Centralized configuration for the MobileHub storefront."""

import os

from dotenv import load_dotenv

load_dotenv()

# MongoDB (database-less runs fall back to an in-memory store)
DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

# Auth
SECRET_KEY = os.getenv("SECRET_KEY", "supersecretkey")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(60 * 24 * 7)))

ROLES = ["customer", "admin"]
DEFAULT_ROLE = "customer"

# Guest cart lives on the device only, with a sliding 3 hour window
GUEST_CART_KEY = "mobileHubGuestCart"
GUEST_CART_TTL_MS = 3 * 60 * 60 * 1000
LOCAL_CACHE_PATH = os.getenv("LOCAL_CACHE_PATH")  # unset = in-memory cache
MERGE_GUEST_CART_ON_LOGIN = os.getenv("MERGE_GUEST_CART_ON_LOGIN", "False").lower() == "true"

# Catalog
PRICE_RANGE_MAX = 2000  # upper bound sentinel, means "no upper bound"
CONDITIONS = ["new", "like-new", "good", "fair"]
CATEGORIES = ["smartphone", "tablet", "smartwatch", "earbuds", "accessories"]
SORT_KEYS = ["newest", "priceHigh", "priceLow", "rating", "featured"]

# Checkout
FREE_SHIPPING_THRESHOLD = 100
SHIPPING_FEE = 9.99
TAX_RATE = 0.08
DEFAULT_COUNTRY = "USA"

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_TO_FILE = os.getenv("LOG_TO_FILE", "False").lower() == "true"

PORT = int(os.getenv("PORT", "8000"))
