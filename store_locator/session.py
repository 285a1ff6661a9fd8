"""Search session state and its request/response wire format.

The caller keeps no state of its own: every response carries the fields the
next request must replay (strategy, distance range, seen ids, continuation
token, category, location) and ``decode_request`` rebuilds the session from
them.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

from . import config

STRATEGIES = ("primary", "grid", "keyword", "type", "fallback", "extended")


class InputError(ValueError):
    """Raised for a malformed request; no provider call has been made."""


@dataclass(frozen=True)
class SearchSession:
    postal_code: str
    product: Optional[str] = None
    retail_store: Optional[str] = None
    page: int = 1
    base_radius_m: int = config.DEFAULT_BASE_RADIUS_M
    strategy: str = "primary"
    distance_range: int = 1
    category: Optional[str] = None
    center: Optional[Dict[str, float]] = None
    continuation_token: Optional[str] = None
    seen_place_ids: tuple = field(default_factory=tuple)

    def evolve(self, **changes: Any) -> "SearchSession":
        return replace(self, **changes)

    @property
    def search_terms(self) -> str:
        return self.product or self.retail_store or ""


def _clean_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        value = str(value)
    value = value.strip()
    return value or None


def _positive_int(payload: Dict[str, Any], key: str, default: int) -> int:
    raw = payload.get(key)
    if raw is None or raw == "":
        return default
    if isinstance(raw, bool):
        raise InputError(f"{key} must be a positive integer")
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:
        raise InputError(f"{key} must be a positive integer") from exc
    if value < 1:
        raise InputError(f"{key} must be a positive integer")
    return value


def _decode_location(raw: Any) -> Optional[Dict[str, float]]:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise InputError("location must be an object with lat and lng")
    try:
        return {"lat": float(raw["lat"]), "lng": float(raw["lng"])}
    except (KeyError, TypeError, ValueError) as exc:
        raise InputError("location must be an object with lat and lng") from exc


def _decode_seen_ids(raw: Any) -> tuple:
    if raw is None:
        return ()
    if not isinstance(raw, (list, tuple)):
        raise InputError("seenIds must be a list of place ids")
    seen: Dict[str, None] = {}
    for item in raw:
        if not isinstance(item, str):
            raise InputError("seenIds must be a list of place ids")
        seen.setdefault(item, None)
    return tuple(seen)


def decode_request(payload: Dict[str, Any]) -> SearchSession:
    if not isinstance(payload, dict):
        raise InputError("Request body must be a JSON object")

    product = _clean_text(payload.get("product"))
    retail_store = _clean_text(payload.get("retailStore"))
    postal_code = _clean_text(payload.get("postalCode") or payload.get("zipCode"))

    if not product and not retail_store:
        raise InputError("Product or retailStore is required")
    if not postal_code:
        raise InputError("Postal code is required")

    strategy = _clean_text(payload.get("searchStrategy")) or "primary"
    if strategy not in STRATEGIES:
        raise InputError(f"Unknown searchStrategy: {strategy}")

    return SearchSession(
        postal_code=postal_code,
        product=product,
        retail_store=retail_store,
        page=_positive_int(payload, "page", 1),
        base_radius_m=_positive_int(payload, "baseRadius", config.DEFAULT_BASE_RADIUS_M),
        strategy=strategy,
        distance_range=_positive_int(payload, "currentDistanceRange", 1),
        category=_clean_text(payload.get("category")),
        center=_decode_location(payload.get("location")),
        continuation_token=_clean_text(payload.get("nextPageToken")),
        seen_place_ids=_decode_seen_ids(payload.get("seenIds")),
    )


def encode_response(
    session: SearchSession,
    stores: List[Dict[str, Any]],
    has_more: bool,
    search_query: str,
    debug: Dict[str, Any],
) -> Dict[str, Any]:
    return {
        "results": stores,
        "nextPageToken": session.continuation_token,
        "seenIds": list(session.seen_place_ids),
        "page": session.page,
        "searchQuery": search_query,
        "location": dict(session.center) if session.center else None,
        "searchStrategy": session.strategy,
        "currentDistanceRange": session.distance_range,
        "hasMore": bool(has_more),
        "category": session.category,
        "source": config.RESULT_SOURCE,
        "debug": debug,
    }


def next_request(response: Dict[str, Any], request: Dict[str, Any]) -> Dict[str, Any]:
    """Build the follow-up request a caller sends for "load more"."""
    follow_up = {
        key: request.get(key)
        for key in ("product", "retailStore", "postalCode", "zipCode", "baseRadius")
        if request.get(key) is not None
    }
    follow_up.update(
        {
            "page": int(response["page"]) + 1,
            "seenIds": list(response["seenIds"]),
            "searchStrategy": response["searchStrategy"],
            "currentDistanceRange": response["currentDistanceRange"],
            "category": response["category"],
            "nextPageToken": response["nextPageToken"],
            "location": response["location"],
        }
    )
    return follow_up
