"""Store search HTTP server.

Exposes the search step as ``POST /api/search-stores``; the client replays
the returned session fields to load more results.
"""
from __future__ import annotations

import json
import logging
import sys
from functools import partial
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Dict, Optional

import requests

from store_locator import config
from store_locator.http import BudgetExceededError
from store_locator.pipeline import StoreSearch
from store_locator.places_client import PlacesApiError
from store_locator.session import InputError

from run import load_env

DEFAULT_PORT = 5000
SEARCH_PATH = "/api/search-stores"
HEALTH_PATH = "/api/search-stores/health"

logger = logging.getLogger(__name__)


class SearchHandler(BaseHTTPRequestHandler):
    def __init__(
        self,
        *args: Any,
        search: Optional[StoreSearch] = None,
        settings: Optional[config.SearchConfig] = None,
        **kwargs: Any,
    ) -> None:
        self.search = search
        self.settings = settings or config.SearchConfig()
        super().__init__(*args, **kwargs)

    def do_GET(self) -> None:
        if self.path.split("?", 1)[0] == HEALTH_PATH:
            self._send_json(
                {
                    "status": "ok",
                    "api": config.RESULT_SOURCE,
                    "apiKeyConfigured": bool(self.settings.google_api_key and self.settings.gemini_api_key),
                }
            )
        else:
            self._send_json({"error": "Not found"}, 404)

    def do_POST(self) -> None:
        if self.path.split("?", 1)[0] == SEARCH_PATH:
            self._handle_search()
        else:
            self._send_json({"error": "Not found"}, 404)

    def do_OPTIONS(self) -> None:
        self.send_response(204)
        self._send_cors_headers()
        self.send_header("Content-Length", "0")
        self.end_headers()

    def _send_cors_headers(self) -> None:
        self.send_header("Access-Control-Allow-Origin", "*")
        self.send_header("Access-Control-Allow-Methods", "GET, POST, OPTIONS")
        self.send_header("Access-Control-Allow-Headers", "Content-Type")

    def _read_json_body(self) -> Dict[str, Any]:
        length = int(self.headers.get("Content-Length", 0))
        raw = self.rfile.read(length)
        return json.loads(raw) if raw else {}

    def _send_json(self, data: Dict[str, Any], status: int = 200) -> None:
        body = json.dumps(data).encode("utf-8")
        self.send_response(status)
        self._send_cors_headers()
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _handle_search(self) -> None:
        try:
            payload = self._read_json_body()
        except (ValueError, UnicodeDecodeError):
            self._send_json({"error": "Request body must be valid JSON"}, 400)
            return

        if self.search is None:
            self._send_json({"error": "Server error", "message": "Search is not configured"}, 500)
            return

        try:
            result = self.search.handle_request(payload)
        except InputError as exc:
            self._send_json({"error": str(exc)}, 400)
            return
        except PlacesApiError as exc:
            self._send_json({"error": "Server error", "message": exc.message or str(exc)}, 500)
            return
        except (BudgetExceededError, requests.RequestException) as exc:
            logger.error("Search failed: %s", exc)
            self._send_json({"error": "Server error", "message": str(exc)}, 500)
            return
        except Exception as exc:
            logger.exception("Unexpected search failure")
            self._send_json({"error": "Server error", "message": str(exc)}, 500)
            return
        self._send_json(result)

    def log_message(self, fmt: str, *args: Any) -> None:
        if args and "/api/" in str(args[0]):
            super().log_message(fmt, *args)


def make_server(port: int, settings: config.SearchConfig, search: Optional[StoreSearch] = None) -> HTTPServer:
    if search is None and settings.google_api_key:
        search = StoreSearch(settings)
    if search is None:
        logger.warning("GOOGLE_MAPS_API_KEY is not configured; searches will fail.")
    handler = partial(SearchHandler, search=search, settings=settings)
    return HTTPServer(("", port), handler)


def main() -> int:
    load_env()
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    port = int(sys.argv[1]) if len(sys.argv) > 1 else DEFAULT_PORT

    server = make_server(port, config.SearchConfig.from_env())
    print(f"Store search running at http://localhost:{port}{SEARCH_PATH}")
    print("Press Ctrl+C to stop.\n")

    try:
        server.serve_forever()
    except KeyboardInterrupt:
        print("\nShutting down.")
    server.server_close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
