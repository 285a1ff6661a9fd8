"""Project configuration.

Keep API request shapes centralized here. Runtime settings (keys, radii,
pacing) live on ``SearchConfig`` and are passed explicitly to the search.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import List, Optional

# --- API endpoints ---

PLACES_NEARBY_SEARCH_URL = "https://maps.googleapis.com/maps/api/place/nearbysearch/json"
PLACES_TEXT_SEARCH_URL = "https://maps.googleapis.com/maps/api/place/textsearch/json"
PLACES_FIND_PLACE_URL = "https://maps.googleapis.com/maps/api/place/findplacefromtext/json"
PLACES_DETAILS_URL = "https://maps.googleapis.com/maps/api/place/details/json"
PLACES_PHOTO_URL = "https://maps.googleapis.com/maps/api/place/photo"
GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"
GOOGLE_MAPS_PLACE_URL = "https://www.google.com/maps/place/?q=place_id:{place_id}"

# --- Field lists ---

PLACES_DETAILS_FIELDS = (
    "name,formatted_address,formatted_phone_number,website,url,geometry,"
    "international_phone_number,opening_hours,photos,rating"
)
PLACES_FIND_PLACE_FIELDS = "place_id,name,geometry,formatted_address,types"
PHOTO_MAX_WIDTH = 400

# --- Provider statuses ---

STATUS_OK = "OK"
STATUS_ZERO_RESULTS = "ZERO_RESULTS"
STATUS_INVALID_REQUEST = "INVALID_REQUEST"
NON_FATAL_STATUSES = {STATUS_OK, STATUS_ZERO_RESULTS}

# --- Query shapes ---

DEFAULT_PLACE_TYPE = "store"
RETAIL_PLACE_TYPES: List[str] = [
    "store",
    "shopping_mall",
    "department_store",
    "supermarket",
    "electronics_store",
    "home_goods_store",
    "clothing_store",
    "furniture_store",
]
MAJOR_RETAIL_CHAINS: List[str] = [
    "walmart",
    "target",
    "best buy",
    "home depot",
    "lowes",
    "costco",
    "whole foods",
    "trader joes",
    "kroger",
    "safeway",
    "publix",
    "walgreens",
    "cvs",
]
EXTENDED_FIND_PLACE_ATTEMPTS = 5
GRID_OFFSET_DEGREES = 0.01

# --- Output ---

NOT_AVAILABLE = "N/A"
RESULT_SOURCE = "Google Places API with Gemini categorization"

# --- Defaults ---

DEFAULT_BASE_RADIUS_M = 5000
DEFAULT_TOKEN_RETRY_DELAY_SECONDS = 2.0
DEFAULT_DETAILS_MAX_WORKERS = 8
DEFAULT_EXTENDED_BATCH_SIZE = 5
DEFAULT_EXTENDED_BATCH_PAUSE_SECONDS = 1.0
DEFAULT_GEMINI_MODEL = "gemini-2.5-flash"

# --- Budgets (per orchestrated call) ---

MAX_SEARCH_REQUESTS_PER_CALL = 12
MAX_DETAILS_REQUESTS_PER_CALL = 60

# --- HTTP ---

HTTP_TIMEOUT_SECONDS = 20
HTTP_RETRY_MAX = 3
HTTP_BACKOFF_BASE = 0.5
HTTP_BACKOFF_MAX = 8.0

# --- Outputs ---

OUTPUT_DIR = "out"


@dataclass(frozen=True)
class SearchConfig:
    google_api_key: str = ""
    gemini_api_key: Optional[str] = None
    gemini_model: str = DEFAULT_GEMINI_MODEL
    base_radius_m: int = DEFAULT_BASE_RADIUS_M
    token_retry_delay_seconds: float = DEFAULT_TOKEN_RETRY_DELAY_SECONDS
    details_max_workers: int = DEFAULT_DETAILS_MAX_WORKERS
    extended_batch_size: int = DEFAULT_EXTENDED_BATCH_SIZE
    extended_batch_pause_seconds: float = DEFAULT_EXTENDED_BATCH_PAUSE_SECONDS
    max_search_requests_per_call: int = MAX_SEARCH_REQUESTS_PER_CALL
    max_details_requests_per_call: int = MAX_DETAILS_REQUESTS_PER_CALL
    http_timeout_seconds: int = HTTP_TIMEOUT_SECONDS
    http_retry_max: int = HTTP_RETRY_MAX
    http_backoff_base: float = HTTP_BACKOFF_BASE
    http_backoff_max: float = HTTP_BACKOFF_MAX

    @classmethod
    def from_env(cls) -> "SearchConfig":
        """Build settings from environment variables (after ``load_env``)."""
        return cls(
            google_api_key=(os.environ.get("GOOGLE_MAPS_API_KEY") or "").strip(),
            gemini_api_key=(os.environ.get("GEMINI_API_KEY") or "").strip() or None,
            gemini_model=os.environ.get("GEMINI_MODEL", DEFAULT_GEMINI_MODEL),
            base_radius_m=_env_int("STORE_SEARCH_BASE_RADIUS_M", DEFAULT_BASE_RADIUS_M),
            token_retry_delay_seconds=_env_float(
                "STORE_SEARCH_TOKEN_DELAY_S", DEFAULT_TOKEN_RETRY_DELAY_SECONDS
            ),
            details_max_workers=_env_int("STORE_SEARCH_DETAILS_WORKERS", DEFAULT_DETAILS_MAX_WORKERS),
        )


def _env_int(name: str, default: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def _env_float(name: str, default: float) -> float:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc
