"""Duplicate removal: by place identity across calls, by contact within a call."""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Set

from . import config

logger = logging.getLogger(__name__)


def filter_seen(places: Iterable[Dict[str, Any]], seen_ids: Iterable[str]) -> List[Dict[str, Any]]:
    """Drop places already returned earlier in the session, and repeats within ``places``."""
    seen: Set[str] = set(seen_ids)
    fresh: List[Dict[str, Any]] = []
    for place in places:
        place_id = place["place_id"]
        if place_id in seen:
            continue
        seen.add(place_id)
        fresh.append(place)
    return fresh


def merge_seen_ids(seen_ids: Iterable[str], places: Iterable[Dict[str, Any]]) -> tuple:
    merged: Dict[str, None] = dict.fromkeys(seen_ids)
    for place in places:
        merged.setdefault(place["place_id"], None)
    return tuple(merged)


def store_sort_key(store: Dict[str, Any]) -> tuple:
    return (store["distanceKm"], store["placeId"])


def dedupe_contacts(stores: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Keep the nearest store per phone number and per derived email.

    The ``N/A`` sentinel never collides.
    """
    seen_phones: Set[str] = set()
    seen_emails: Set[str] = set()
    unique: List[Dict[str, Any]] = []

    for store in sorted(stores, key=store_sort_key):
        phone = store.get("phone") or config.NOT_AVAILABLE
        email = store.get("email") or config.NOT_AVAILABLE
        phone_free = phone == config.NOT_AVAILABLE or phone not in seen_phones
        email_free = email == config.NOT_AVAILABLE or email not in seen_emails
        if not (phone_free and email_free):
            logger.info(
                "Filtered out duplicate store: %s (phone: %s, email: %s)",
                store.get("name"),
                phone,
                email,
            )
            continue
        unique.append(store)
        if phone != config.NOT_AVAILABLE:
            seen_phones.add(phone)
        if email != config.NOT_AVAILABLE:
            seen_emails.add(email)

    return unique
