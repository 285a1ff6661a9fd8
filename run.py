"""CLI entrypoint."""
from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests
from dotenv import load_dotenv

from store_locator import config
from store_locator.http import BudgetExceededError
from store_locator.pipeline import SessionRun, StoreSearch, drive_session
from store_locator.places_client import PlacesApiError
from store_locator.reporting import ensure_dir, render_summary, utc_now_iso, write_json_object
from store_locator.session import InputError


def _repo_root() -> Path:
    return Path(__file__).resolve().parent


def load_env(path: str = ".env", root_dir: Optional[Path] = None) -> None:
    """Optionally load a repo-root .env file without overriding real env vars."""
    root = Path(root_dir) if root_dir else _repo_root()
    env_path = (root / path).resolve()
    if not env_path.exists():
        return
    load_dotenv(dotenv_path=env_path, override=False)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Find retail stores carrying a product near a postal code")
    parser.add_argument("--product", type=str, default=None, help="Product to look for")
    parser.add_argument("--retail-store", type=str, default=None, help="Retail store name to look for")
    parser.add_argument("--postal-code", type=str, required=True)
    parser.add_argument(
        "--base-radius",
        type=int,
        default=None,
        help=f"Width of each distance range in meters (default: {config.DEFAULT_BASE_RADIUS_M})",
    )
    parser.add_argument("--max-calls", type=int, default=10, help="Maximum search calls (default: 10)")
    parser.add_argument(
        "--min-results",
        type=int,
        default=None,
        help="Stop once at least this many stores were collected",
    )
    parser.add_argument("--out", type=str, default=config.OUTPUT_DIR)
    return parser.parse_args(argv)


def build_request(args: argparse.Namespace) -> Dict[str, Any]:
    request: Dict[str, Any] = {"postalCode": args.postal_code, "page": 1}
    if args.product:
        request["product"] = args.product
    if args.retail_store:
        request["retailStore"] = args.retail_store
    if args.base_radius is not None:
        request["baseRadius"] = args.base_radius
    return request


def build_summary(request: Dict[str, Any], session_run: SessionRun) -> Dict[str, Any]:
    last = session_run.last_response or {}
    requests_total: Dict[str, int] = {}
    for response in session_run.responses:
        for kind, count in ((response.get("debug") or {}).get("requests") or {}).items():
            requests_total[kind] = requests_total.get(kind, 0) + int(count)
    nearest = sorted(session_run.stores, key=lambda s: (s["distanceKm"], s["placeId"]))[:5]
    return {
        "postal_code": request.get("postalCode"),
        "search_query": last.get("searchQuery"),
        "category": last.get("category"),
        "calls": len(session_run.responses),
        "stores": len(session_run.stores),
        "seen_places": len(last.get("seenIds") or []),
        "strategy": last.get("searchStrategy"),
        "distance_range": last.get("currentDistanceRange"),
        "has_more": last.get("hasMore"),
        "requests": requests_total,
        "nearest": nearest,
    }


def main(argv: Optional[List[str]] = None) -> int:
    load_env()
    args = parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    try:
        settings = config.SearchConfig.from_env()
    except ValueError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 1
    if not settings.google_api_key:
        print("Missing GOOGLE_MAPS_API_KEY in environment", file=sys.stderr)
        return 1

    request = build_request(args)
    try:
        search = StoreSearch(settings)
        session_run = drive_session(search, request, max_calls=args.max_calls, min_results=args.min_results)
    except InputError as exc:
        print(f"Invalid search: {exc}", file=sys.stderr)
        return 2
    except (PlacesApiError, BudgetExceededError, requests.RequestException) as exc:
        print(f"Search failed: {exc}", file=sys.stderr)
        return 1

    summary = build_summary(request, session_run)
    ensure_dir(args.out)
    out_path = os.path.join(args.out, "stores.json")
    write_json_object(
        out_path,
        {
            "generated_at": utc_now_iso(),
            "request": request,
            "stores": session_run.stores,
            "last_response": session_run.last_response,
        },
    )

    for line in render_summary(summary):
        print(line)
    print(f"Done. Results written to {out_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
