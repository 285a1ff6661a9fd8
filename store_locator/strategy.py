"""Query construction per strategy and the strategy/range state machine.

Strategies run in a fixed order, each widening its distance range before
handing over to the next one::

    primary (ranges 1-15) -> grid -> keyword -> type

``fallback`` and ``extended`` never advance on their own.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional

from . import config
from .geo import offset_point
from .session import SearchSession

PRIMARY_MAX_RANGE = 15
GRID_SIZE = 3
GRID_CELLS = GRID_SIZE * GRID_SIZE
GRID_MAX_RANGE = 10
GRID_SWITCH_PAGE = 18
KEYWORD_VARIANT_CYCLE = 6
KEYWORD_MAX_RANGE = 10
KEYWORD_SWITCH_PAGE = 30
TYPE_CYCLE = len(config.RETAIL_PLACE_TYPES)
TYPE_MAX_RANGE = 12
TYPE_FILTER_MAX_RANGE = 3
EARLY_TOKEN_PAGES = 3
STOP_MIN_RANGE = 12
STOP_AFTER_PAGE = 50


@dataclass(frozen=True)
class ProviderQuery:
    strategy: str
    keyword: str
    center: Dict[str, float]
    radius_m: int
    place_type: Optional[str] = None
    use_distance_filter: bool = True


@dataclass(frozen=True)
class Advance:
    strategy: str
    distance_range: int
    has_more: bool
    reason: str


def primary_keyword(retail_store: Optional[str], category: Optional[str]) -> str:
    return " ".join(part for part in (retail_store, category) if part)


def keyword_variants(category: Optional[str], retail_store: Optional[str]) -> List[str]:
    cat = category or ""
    variants = [
        f"{cat} store",
        f"buy {cat}",
        f"{cat} retailer",
        f"{cat} shop",
        f"purchase {cat}",
        retail_store or "",
    ]
    return [v.strip() for v in variants if v.strip()]


def grid_center(center: Dict[str, float], page: int, distance_range: int) -> Dict[str, float]:
    cell = page % GRID_CELLS
    row, col = divmod(cell, GRID_SIZE)
    step = config.GRID_OFFSET_DEGREES * distance_range
    return offset_point(center, (row - 1) * step, (col - 1) * step)


def build_query(session: SearchSession) -> ProviderQuery:
    if session.center is None:
        raise ValueError("session center must be resolved before building a query")

    center = session.center
    radius_m = session.distance_range * session.base_radius_m
    category = session.category or ""
    strategy = session.strategy

    if strategy == "primary":
        return ProviderQuery(
            strategy=strategy,
            keyword=primary_keyword(session.retail_store, category),
            center=center,
            radius_m=radius_m,
            place_type=config.DEFAULT_PLACE_TYPE,
        )
    if strategy == "grid":
        return ProviderQuery(
            strategy=strategy,
            keyword=primary_keyword(session.retail_store, category),
            center=grid_center(center, session.page, session.distance_range),
            radius_m=radius_m,
            place_type=config.DEFAULT_PLACE_TYPE,
        )
    if strategy == "keyword":
        variants = keyword_variants(category, session.retail_store)
        return ProviderQuery(
            strategy=strategy,
            keyword=variants[session.page % len(variants)],
            center=center,
            radius_m=radius_m,
            place_type=config.DEFAULT_PLACE_TYPE,
        )
    if strategy == "type":
        return ProviderQuery(
            strategy=strategy,
            keyword=category,
            center=center,
            radius_m=radius_m,
            place_type=config.RETAIL_PLACE_TYPES[session.page % TYPE_CYCLE],
            use_distance_filter=session.distance_range <= TYPE_FILTER_MAX_RANGE,
        )
    # fallback, and a replayed "extended" session
    return ProviderQuery(
        strategy=strategy,
        keyword=session.search_terms,
        center=center,
        radius_m=radius_m,
        place_type=None,
        use_distance_filter=False,
    )


def _exhausted_step(session: SearchSession) -> tuple[str, int, str]:
    strategy = session.strategy
    rng = session.distance_range
    page = session.page

    if strategy == "primary":
        if rng < PRIMARY_MAX_RANGE:
            return strategy, rng + 1, "widen_range"
        return "grid", 1, "switch_to_grid"
    if strategy == "grid":
        if rng < GRID_MAX_RANGE and page % GRID_CELLS == 0:
            return strategy, rng + 1, "widen_range"
        if page >= GRID_SWITCH_PAGE:
            return "keyword", rng, "switch_to_keyword"
    elif strategy == "keyword" and page % KEYWORD_VARIANT_CYCLE == 0:
        if rng < KEYWORD_MAX_RANGE:
            return strategy, rng + 1, "widen_range"
        if page >= KEYWORD_SWITCH_PAGE:
            return "type", rng, "switch_to_type"
    elif strategy == "type" and page % TYPE_CYCLE == 0 and rng < TYPE_MAX_RANGE:
        return strategy, rng + 1, "widen_range"
    return strategy, rng, "hold"


def advance(
    session: SearchSession,
    new_places: int,
    has_token: bool,
    used_token: bool,
) -> Advance:
    """Next strategy/range and whether the caller should ask for more.

    ``session`` is the inbound state; ``has_token`` is whether the provider
    issued a continuation token on this call, ``used_token`` whether this call
    itself replayed one.
    """
    strategy, rng, reason = session.strategy, session.distance_range, "results"
    if new_places == 0 and not has_token:
        strategy, rng, reason = _exhausted_step(session)

    changed = strategy != session.strategy or rng != session.distance_range
    has_more = has_token or new_places > 0 or changed

    if used_token:
        has_more = has_token
        # Pagination that dries up this early is treated as provider noise.
        if not has_more and session.page < EARLY_TOKEN_PAGES:
            if session.distance_range < PRIMARY_MAX_RANGE:
                strategy, rng = session.strategy, session.distance_range + 1
            else:
                strategy, rng = "grid", 1
            reason = "early_token_exhaustion"
            has_more = True
    elif (
        session.strategy == "type"
        and new_places == 0
        and session.distance_range >= STOP_MIN_RANGE
        and session.page > STOP_AFTER_PAGE
    ):
        has_more = False
        reason = "exhausted"

    return Advance(strategy=strategy, distance_range=rng, has_more=has_more, reason=reason)
