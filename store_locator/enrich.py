"""Place Details enrichment for search results.

Details lookups for one search call fan out over a thread pool. A failed
lookup only degrades its own place: the store is built from the search
result fields and marked ``verified=False``.
"""
from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional, Sequence
from urllib.parse import urlparse

import requests

from . import config
from .http import BudgetExceededError
from .places_client import PlacesApiError, PlacesClient

logger = logging.getLogger(__name__)

DETAILS_ERRORS = (PlacesApiError, BudgetExceededError, requests.RequestException, ValueError)


def derive_email(website: Optional[str]) -> str:
    if not website:
        return config.NOT_AVAILABLE
    candidate = website.strip()
    if "://" not in candidate:
        candidate = f"http://{candidate}"
    try:
        host = urlparse(candidate).hostname
    except ValueError:
        host = None
    if not host:
        logger.warning("Failed to extract domain from website %s", website)
        return config.NOT_AVAILABLE
    if host.startswith("www."):
        host = host[len("www."):]
    return f"contact@{host}"


def build_store(
    place: Dict[str, Any],
    details: Optional[Dict[str, Any]],
    page: int,
    index: int,
    photo_url: Callable[[str], str],
) -> Dict[str, Any]:
    details = details or {}
    place_id = place["place_id"]
    distance = float(place["distance_km"])

    website = details.get("website") or None
    email = derive_email(website)
    phone = (
        details.get("formatted_phone_number")
        or details.get("international_phone_number")
        or config.NOT_AVAILABLE
    )

    location = (details.get("geometry") or {}).get("location") or {}
    if location.get("lat") is None or location.get("lng") is None:
        location = {"lat": place["lat"], "lng": place["lng"]}

    photos = details.get("photos") or []
    photo_reference = photos[0].get("photo_reference") if photos else place.get("photo_reference")
    opening_hours = details.get("opening_hours") or {}
    open_now = opening_hours.get("open_now") if details else place.get("open_now")
    rating = details.get("rating") if details.get("rating") is not None else place.get("rating")

    return {
        "id": f"place-{page}-{index}",
        "placeId": place_id,
        "name": details.get("name") or place.get("name"),
        "address": details.get("formatted_address") or place.get("vicinity"),
        "phone": phone,
        "email": email,
        "contact": email,
        "website": website,
        "location": {"lat": location["lat"], "lng": location["lng"]},
        "googleMapsUrl": details.get("url") or config.GOOGLE_MAPS_PLACE_URL.format(place_id=place_id),
        "distanceKm": distance,
        "distanceText": f"{distance:.1f} km",
        "openNow": open_now,
        "rating": rating,
        "photoUrl": photo_url(photo_reference) if photo_reference else None,
        "verified": bool(details),
    }


def _lookup(places_client: PlacesClient, place: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    try:
        return places_client.place_details(place["place_id"])
    except DETAILS_ERRORS as exc:
        logger.warning("Failed to get details for place %s: %s", place["place_id"], exc)
        return None


def enrich_places(
    places: Sequence[Dict[str, Any]],
    places_client: PlacesClient,
    page: int,
    max_workers: int = config.DEFAULT_DETAILS_MAX_WORKERS,
    batch_size: Optional[int] = None,
    batch_pause_seconds: float = 0.0,
    sleep: Callable[[float], None] = time.sleep,
) -> List[Dict[str, Any]]:
    """Look up details for ``places`` (already distance-sorted) and build stores.

    With ``batch_size`` set, batches run one after another with a pause in
    between; otherwise all lookups are issued at once.
    """
    if not places:
        return []

    size = batch_size if batch_size and batch_size > 0 else len(places)
    details: List[Optional[Dict[str, Any]]] = []
    workers = max(1, min(max_workers, size))
    with ThreadPoolExecutor(max_workers=workers) as executor:
        for start in range(0, len(places), size):
            if start and batch_pause_seconds > 0:
                sleep(batch_pause_seconds)
            batch = places[start : start + size]
            details.extend(executor.map(lambda p: _lookup(places_client, p), batch))

    return [
        build_store(place, detail, page, index, places_client.photo_url)
        for index, (place, detail) in enumerate(zip(places, details))
    ]
