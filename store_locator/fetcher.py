"""Provider calls for one orchestrated search step."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import requests

from . import config
from .dedup import filter_seen
from .http import BudgetExceededError
from .places_client import (
    PlacesApiError,
    PlacesClient,
    check_status,
    next_page_token,
    parse_places_response,
)
from .session import SearchSession
from .strategy import ProviderQuery, primary_keyword

logger = logging.getLogger(__name__)

EXTENDED_STRATEGY = "type"
EXTENDED_MIN_RANGE = 8
EXTENDED_MIN_PAGE = 40
EXTENDED_ERRORS = (PlacesApiError, BudgetExceededError, requests.RequestException, ValueError)


@dataclass(frozen=True)
class TokenRetryPolicy:
    """Retry budget for a continuation token the provider has not activated yet."""

    max_retries: int = 1
    delay_seconds: float = config.DEFAULT_TOKEN_RETRY_DELAY_SECONDS
    not_ready_status: str = config.STATUS_INVALID_REQUEST


@dataclass
class FetchResult:
    places: List[Dict[str, Any]]
    next_page_token: Optional[str]
    used_token: bool
    status: Optional[str]
    retries: int = 0


@dataclass
class ExtendedResult:
    places: List[Dict[str, Any]] = field(default_factory=list)
    path: Optional[str] = None
    attempts: List[str] = field(default_factory=list)


def should_extend(session: SearchSession, new_places: int) -> bool:
    return (
        new_places == 0
        and session.strategy == EXTENDED_STRATEGY
        and session.distance_range > EXTENDED_MIN_RANGE
        and session.page > EXTENDED_MIN_PAGE
    )


def extended_lookup_names(session: SearchSession) -> List[str]:
    names = [
        session.retail_store,
        f"{session.category} store" if session.category else None,
        f"{session.product} retailer" if session.product else None,
        f"{session.product} store" if session.product else None,
    ] + list(config.MAJOR_RETAIL_CHAINS)
    return [n for n in names if n][: config.EXTENDED_FIND_PLACE_ATTEMPTS]


class ResultFetcher:
    def __init__(
        self,
        places_client: PlacesClient,
        retry_policy: Optional[TokenRetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.places_client = places_client
        self.retry_policy = retry_policy or TokenRetryPolicy()
        self.sleep = sleep

    def fetch(self, session: SearchSession, query: ProviderQuery) -> FetchResult:
        token = session.continuation_token
        if token:
            payload, retries = self._fetch_continuation(token)
            operation = "next_page"
        else:
            payload = self.places_client.nearby_search(
                query.keyword, query.center, query.radius_m, query.place_type
            )
            retries = 0
            operation = "nearby_search"

        check_status(payload, operation)
        return FetchResult(
            places=parse_places_response(payload),
            next_page_token=next_page_token(payload),
            used_token=bool(token),
            status=payload.get("status"),
            retries=retries,
        )

    def _fetch_continuation(self, token: str) -> tuple[Dict[str, Any], int]:
        payload = self.places_client.next_page(token)
        retries = 0
        while (
            payload.get("status") == self.retry_policy.not_ready_status
            and retries < self.retry_policy.max_retries
        ):
            logger.info("Page token not ready yet, waiting %.1fs", self.retry_policy.delay_seconds)
            self.sleep(self.retry_policy.delay_seconds)
            payload = self.places_client.next_page(token)
            retries += 1
        return payload, retries

    def extended_search(self, session: SearchSession, radius_m: int) -> ExtendedResult:
        """Text Search, then single-candidate Find Place lookups for known chains.

        Only unseen places are adopted. Failures of individual attempts are
        logged and skipped.
        """
        result = ExtendedResult()
        center = session.center
        query = primary_keyword(session.retail_store, session.category) or session.search_terms

        result.attempts.append("text_search")
        try:
            payload = self.places_client.text_search(query, center, radius_m)
        except EXTENDED_ERRORS as exc:
            logger.warning("Extended text search failed: %s", exc)
        else:
            if payload.get("status") == config.STATUS_OK:
                fresh = filter_seen(parse_places_response(payload), session.seen_place_ids)
                logger.info("Extended text search found %s new places", len(fresh))
                if fresh:
                    result.places = fresh
                    result.path = "text_search"
                    return result

        for name in extended_lookup_names(session):
            result.attempts.append(f"find_place:{name}")
            try:
                payload = self.places_client.find_place(name, center, radius_m)
            except EXTENDED_ERRORS as exc:
                logger.warning("Extended find-place lookup for %r failed: %s", name, exc)
                continue
            if payload.get("status") != config.STATUS_OK:
                continue
            fresh = filter_seen(
                parse_places_response(payload, key="candidates"), session.seen_place_ids
            )
            if fresh:
                logger.info("Extended find-place lookup for %r found %s new places", name, len(fresh))
                result.places = fresh
                result.path = f"find_place:{name}"
                return result

        return result
