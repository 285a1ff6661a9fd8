"""Search orchestration.

One call to ``StoreSearch.run`` takes the replayed session, performs a single
search step against the provider and returns the session the caller must
replay next, together with the stores found on this step.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from . import config
from .classifier import BaseCategoryClassifier, GeminiClassifier
from .dedup import dedupe_contacts, filter_seen, merge_seen_ids, store_sort_key
from .enrich import enrich_places
from .fetcher import ResultFetcher, TokenRetryPolicy, should_extend
from .geo import distance_km, in_distance_range
from .http import HttpClient, RequestBudget, RequestMetrics
from .places_client import PlacesClient
from .session import SearchSession, decode_request, encode_response, next_request
from .strategy import advance, build_query, primary_keyword

logger = logging.getLogger(__name__)


@dataclass
class SearchOutcome:
    session: SearchSession
    stores: List[Dict[str, Any]]
    has_more: bool
    search_query: str
    debug: Dict[str, Any]

    def to_response(self) -> Dict[str, Any]:
        return encode_response(self.session, self.stores, self.has_more, self.search_query, self.debug)


def place_sort_key(place: Dict[str, Any]) -> tuple:
    return (place["distance_km"], place["place_id"])


def with_distances(places: List[Dict[str, Any]], center: Dict[str, float]) -> List[Dict[str, Any]]:
    """Copy ``places`` with ``distance_km`` set; places without coordinates are dropped."""
    located: List[Dict[str, Any]] = []
    for place in places:
        if place.get("lat") is None or place.get("lng") is None:
            logger.debug("Skipping place %s without coordinates", place.get("place_id"))
            continue
        located.append({**place, "distance_km": distance_km(center, place)})
    return located


class StoreSearch:
    def __init__(
        self,
        settings: config.SearchConfig,
        places_client: Optional[PlacesClient] = None,
        classifier: Optional[BaseCategoryClassifier] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings
        if places_client is None:
            if not settings.google_api_key:
                raise ValueError("API key is required when using the real Places client")
            http_client = HttpClient(
                settings.google_api_key,
                timeout=settings.http_timeout_seconds,
                retry_max=settings.http_retry_max,
                backoff_base=settings.http_backoff_base,
                backoff_max=settings.http_backoff_max,
            )
            places_client = PlacesClient(http_client)
        self.places_client = places_client
        self.classifier = classifier or GeminiClassifier.from_config(settings)
        self.sleep = sleep
        self.retry_policy = TokenRetryPolicy(delay_seconds=settings.token_retry_delay_seconds)

    def handle_request(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Decode a wire request, run one search step, encode the response."""
        session = decode_request(payload)
        if "baseRadius" not in payload:
            session = session.evolve(base_radius_m=self.settings.base_radius_m)
        return self.run(session).to_response()

    def _client_for(self, budget: RequestBudget) -> PlacesClient:
        """Per-call view of the shared client that charges this call's ``budget``."""
        bind = getattr(self.places_client, "with_budget", None)
        return bind(budget) if callable(bind) else self.places_client

    def resolve_category(self, session: SearchSession) -> str:
        if session.category:
            return session.category
        if not session.product:
            return ""
        if session.page != 1:
            return session.product
        logger.info("Determining category for product: %s", session.product)
        result = self.classifier.classify(session.product)
        if not result.ok:
            logger.warning(
                "Category classification unavailable (%s%s); using product text",
                result.status,
                f": {result.error}" if result.error else "",
            )
            return session.product
        logger.info("Determined category %r for product %r", result.category, session.product)
        return result.category

    def resolve_center(self, session: SearchSession, places_client: PlacesClient) -> Dict[str, float]:
        if session.center is not None:
            return session.center
        center = places_client.geocode(session.postal_code)
        logger.info("Geocoded %s to lat=%s lng=%s", session.postal_code, center["lat"], center["lng"])
        return center

    def run(self, session: SearchSession) -> SearchOutcome:
        metrics = RequestMetrics()
        budget = RequestBudget(
            max_search=self.settings.max_search_requests_per_call,
            max_details=self.settings.max_details_requests_per_call,
            metrics=metrics,
        )
        places_client = self._client_for(budget)
        fetcher = ResultFetcher(places_client, self.retry_policy, sleep=self.sleep)

        session = session.evolve(
            category=self.resolve_category(session),
            center=self.resolve_center(session, places_client),
        )
        search_query = primary_keyword(session.retail_store, session.category)
        query = build_query(session)
        fetched = fetcher.fetch(session, query)

        new_places = with_distances(filter_seen(fetched.places, session.seen_place_ids), session.center)
        use_filter = query.use_distance_filter or fetched.used_token
        if use_filter:
            new_places = [
                p
                for p in new_places
                if in_distance_range(p["distance_km"], session.distance_range, session.base_radius_m)
            ]
        after_filter = len(new_places)
        new_places.sort(key=place_sort_key)

        returned = list(fetched.places)
        extended_path: Optional[str] = None
        if should_extend(session, len(new_places)):
            logger.info("Attempting extended search to find additional stores")
            extended = fetcher.extended_search(session, query.radius_m)
            returned.extend(extended.places)
            located = sorted(with_distances(extended.places, session.center), key=place_sort_key)
            if located:
                new_places = located
                extended_path = extended.path

        step = advance(
            session,
            new_places=len(new_places),
            has_token=bool(fetched.next_page_token),
            used_token=fetched.used_token,
        )
        next_strategy = "extended" if extended_path else step.strategy

        if extended_path:
            stores = enrich_places(
                new_places,
                places_client,
                session.page,
                max_workers=self.settings.details_max_workers,
                batch_size=self.settings.extended_batch_size,
                batch_pause_seconds=self.settings.extended_batch_pause_seconds,
                sleep=self.sleep,
            )
        else:
            stores = enrich_places(
                new_places,
                places_client,
                session.page,
                max_workers=self.settings.details_max_workers,
            )
        unique_stores = sorted(dedupe_contacts(stores), key=store_sort_key)

        next_session = session.evolve(
            strategy=next_strategy,
            distance_range=step.distance_range,
            continuation_token=fetched.next_page_token,
            seen_place_ids=merge_seen_ids(session.seen_place_ids, returned),
        )

        logger.info(
            "Search step page=%s strategy=%s->%s range=%s->%s found=%s new=%s after_filter=%s "
            "unique=%s token=%s has_more=%s (%s)",
            session.page,
            session.strategy,
            next_session.strategy,
            session.distance_range,
            next_session.distance_range,
            len(fetched.places),
            len(new_places),
            after_filter,
            len(unique_stores),
            bool(fetched.next_page_token),
            step.has_more,
            step.reason,
        )

        debug = {
            "strategy": next_session.strategy,
            "range": next_session.distance_range,
            "keyword": None if fetched.used_token else query.keyword,
            "placeType": None if fetched.used_token else query.place_type,
            "placesFound": len(fetched.places),
            "newPlaces": len(new_places),
            "afterDistanceFilter": after_filter,
            "hasNextPageToken": bool(fetched.next_page_token),
            "uniqueStoresCount": len(unique_stores),
            "extendedSearch": extended_path,
            "advance": step.reason,
            "tokenRetries": fetched.retries,
            "requests": metrics.as_dict(),
        }
        return SearchOutcome(
            session=next_session,
            stores=unique_stores,
            has_more=step.has_more,
            search_query=search_query,
            debug=debug,
        )


@dataclass
class SessionRun:
    stores: List[Dict[str, Any]]
    responses: List[Dict[str, Any]]

    @property
    def last_response(self) -> Optional[Dict[str, Any]]:
        return self.responses[-1] if self.responses else None


def drive_session(
    search: StoreSearch,
    request: Dict[str, Any],
    max_calls: int,
    min_results: Optional[int] = None,
) -> SessionRun:
    """Replay a session call after call, the way a "load more" client does.

    Stops when the search reports ``hasMore = false``, after ``max_calls``
    calls, or once ``min_results`` stores have been collected.
    """
    stores: List[Dict[str, Any]] = []
    responses: List[Dict[str, Any]] = []
    current = dict(request)
    for _ in range(max(0, max_calls)):
        response = search.handle_request(current)
        responses.append(response)
        stores.extend(response["results"])
        if not response["hasMore"]:
            break
        if min_results is not None and len(stores) >= min_results:
            break
        current = next_request(response, current)
    return SessionRun(stores=stores, responses=responses)
