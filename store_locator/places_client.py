"""Places API client and response parsing."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from . import config
from .http import HttpClient, RequestBudget

logger = logging.getLogger(__name__)


class PlacesApiError(RuntimeError):
    """Raised when a Places call returns a status other than OK/ZERO_RESULTS."""

    def __init__(self, operation: str, status: Optional[str], message: Optional[str] = None) -> None:
        self.operation = operation
        self.status = status
        self.message = message
        detail = message or status or "unknown status"
        super().__init__(f"{operation} failed: {detail}")


class GeocodingError(PlacesApiError):
    pass


def check_status(payload: Dict[str, Any], operation: str) -> Dict[str, Any]:
    status = payload.get("status")
    if status not in config.NON_FATAL_STATUSES:
        logger.error(
            "%s failed: status=%s, error_message=%s", operation, status, payload.get("error_message")
        )
        raise PlacesApiError(operation, status, payload.get("error_message"))
    return payload


class PlacesClient:
    def __init__(self, http_client: HttpClient, budget: Optional[RequestBudget] = None) -> None:
        self.http = http_client
        self.budget = budget

    def with_budget(self, budget: Optional[RequestBudget]) -> "PlacesClient":
        """A client sharing this one's HTTP session but charging ``budget``."""
        return PlacesClient(self.http, budget)

    def _get(self, kind: str, url: str, params: Dict[str, Any]) -> Dict[str, Any]:
        if self.budget is not None:
            self.budget.consume(kind)
        return self.http.get_json(url, params)

    def nearby_search(
        self,
        keyword: str,
        center: Dict[str, float],
        radius_m: int,
        place_type: Optional[str] = None,
    ) -> Dict[str, Any]:
        return self._get(
            "search",
            config.PLACES_NEARBY_SEARCH_URL,
            build_nearby_params(keyword, center, radius_m, place_type),
        )

    def next_page(self, page_token: str) -> Dict[str, Any]:
        return self._get("search", config.PLACES_NEARBY_SEARCH_URL, {"pagetoken": page_token})

    def text_search(
        self,
        query: str,
        center: Dict[str, float],
        radius_m: int,
        place_type: Optional[str] = config.DEFAULT_PLACE_TYPE,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "query": query,
            "location": _format_point(center),
            "radius": int(radius_m),
        }
        if place_type:
            params["type"] = place_type
        return self._get("search", config.PLACES_TEXT_SEARCH_URL, params)

    def find_place(self, text: str, center: Dict[str, float], radius_m: int) -> Dict[str, Any]:
        params = {
            "input": text,
            "inputtype": "textquery",
            "locationbias": f"circle:{int(radius_m)}@{_format_point(center)}",
            "fields": config.PLACES_FIND_PLACE_FIELDS,
        }
        return self._get("search", config.PLACES_FIND_PLACE_URL, params)

    def place_details(self, place_id: str) -> Dict[str, Any]:
        payload = self._get(
            "details",
            config.PLACES_DETAILS_URL,
            {"place_id": place_id, "fields": config.PLACES_DETAILS_FIELDS},
        )
        if payload.get("status") != config.STATUS_OK:
            raise PlacesApiError("place_details", payload.get("status"), payload.get("error_message"))
        return payload.get("result") or {}

    def geocode(self, postal_code: str) -> Dict[str, float]:
        payload = self._get("geocode", config.GEOCODE_URL, {"address": postal_code})
        status = payload.get("status")
        results = payload.get("results") or []
        if status != config.STATUS_OK or not results:
            raise GeocodingError(
                "geocode",
                status,
                payload.get("error_message") or f"Geocoding error: {status}",
            )
        loc = (results[0].get("geometry") or {}).get("location") or {}
        return {"lat": float(loc["lat"]), "lng": float(loc["lng"])}

    def photo_url(self, photo_reference: str) -> str:
        query = urlencode(
            {
                "maxwidth": config.PHOTO_MAX_WIDTH,
                "photoreference": photo_reference,
                "key": self.http.api_key,
            }
        )
        return f"{config.PLACES_PHOTO_URL}?{query}"


def _format_point(point: Dict[str, float]) -> str:
    return f"{point['lat']},{point['lng']}"


def build_nearby_params(
    keyword: str,
    center: Dict[str, float],
    radius_m: int,
    place_type: Optional[str],
) -> Dict[str, Any]:
    params: Dict[str, Any] = {
        "location": _format_point(center),
        "radius": int(radius_m),
    }
    if keyword:
        params["keyword"] = keyword
    if place_type:
        params["type"] = place_type
    return params


# Adapter/mapper for Places response fields

def parse_place(raw: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    place_id = raw.get("place_id") or raw.get("placeId")
    if not place_id:
        return None
    location = (raw.get("geometry") or {}).get("location") or {}
    lat = location.get("lat")
    lng = location.get("lng")
    photos = raw.get("photos") or []
    photo_reference = photos[0].get("photo_reference") if photos else None
    opening_hours = raw.get("opening_hours") or {}
    return {
        "place_id": place_id,
        "name": raw.get("name"),
        "lat": float(lat) if lat is not None else None,
        "lng": float(lng) if lng is not None else None,
        "vicinity": raw.get("vicinity") or raw.get("formatted_address"),
        "types": raw.get("types") or [],
        "rating": raw.get("rating"),
        "open_now": opening_hours.get("open_now"),
        "photo_reference": photo_reference,
    }


def parse_places_response(response: Dict[str, Any], key: str = "results") -> List[Dict[str, Any]]:
    parsed: List[Dict[str, Any]] = []
    for raw in response.get(key) or []:
        place = parse_place(raw)
        if place is not None:
            parsed.append(place)
    return parsed


def next_page_token(response: Dict[str, Any]) -> Optional[str]:
    return response.get("next_page_token") or response.get("nextPageToken") or None
