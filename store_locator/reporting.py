"""Output reporting helpers."""
from __future__ import annotations

import json
import os
import tempfile
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, TextIO


def ensure_dir(path: str) -> None:
    os.makedirs(path, exist_ok=True)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def _fsync_dir(path: str) -> None:
    try:
        dir_fd = os.open(path, os.O_DIRECTORY)
    except OSError:
        return
    try:
        os.fsync(dir_fd)
    except OSError:
        pass
    finally:
        os.close(dir_fd)


@contextmanager
def atomic_writer(
    path: str,
    mode: str = "w",
    encoding: str = "utf-8",
    newline: Optional[str] = None,
) -> Iterator[TextIO]:
    dir_path = os.path.dirname(path) or "."
    base = os.path.basename(path)
    fd, tmp_path = tempfile.mkstemp(prefix=f".{base}.", suffix=".tmp", dir=dir_path)
    try:
        with os.fdopen(fd, mode, encoding=encoding, newline=newline) as f:
            yield f
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
        _fsync_dir(dir_path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def write_json_object(path: str, payload: Dict[str, Any]) -> None:
    with atomic_writer(path, mode="w", encoding="utf-8") as f:
        json.dump(payload, f, ensure_ascii=False, indent=2)


def render_summary(summary: Dict[str, Any]) -> List[str]:
    lines = [
        f"Search: {summary.get('search_query') or '-'} near {summary.get('postal_code')}",
        f"Category: {summary.get('category') or '-'}",
        f"Calls: {summary.get('calls', 0)}",
        f"Stores: {summary.get('stores', 0)}",
        f"Seen places: {summary.get('seen_places', 0)}",
        f"Final state: strategy={summary.get('strategy')} range={summary.get('distance_range')}",
        f"Has more: {summary.get('has_more')}",
    ]
    requests_total = summary.get("requests") or {}
    if requests_total:
        lines.append("Request stats:")
        for kind in sorted(requests_total):
            lines.append(f"- {kind}: {requests_total[kind]}")
    nearest = summary.get("nearest") or []
    if nearest:
        lines.append("Nearest stores:")
        for store in nearest:
            lines.append(f"- {store.get('name')} ({store.get('distanceText')}) {store.get('phone')}")
    return lines
