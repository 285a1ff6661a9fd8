"""Product category classification via Gemini, with a safe no-op fallback.

This module never hard-fails. Callers receive a structured result whose
``status`` is ``ok`` only when a usable category came back; anything else
means the caller should fall back to the raw product text.
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import requests

from . import config

GEMINI_ENDPOINT = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
DEFAULT_TIMEOUT_SECONDS = 30
DEFAULT_MODEL_CHAIN = ["gemini-2.5-flash", "gemini-2.5-pro", "gemini-2.0-flash"]
TRANSPORT_ERRORS = ("http_error", "request_error")
MAX_CATEGORY_LENGTH = 80
MAX_OUTPUT_TOKENS = 64

SYSTEM_INSTRUCTION = (
    "You map shopping requests to Google Maps business categories. "
    "Answer with a short category or search term that finds physical stores."
)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


@dataclass(frozen=True)
class ClassificationResult:
    status: str
    category: Optional[str]
    model: str
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "ok" and bool(self.category)


def build_category_prompt(product: str) -> str:
    return (
        f'Which store category or search keyword best finds stores that sell "{product}"?\n'
        'Reply with JSON only: {"category": "<category or search term>"}'
    )


def _unfence(text: str) -> str:
    return _FENCE_RE.sub("", text.strip())


def _json_fragment(text: str) -> str:
    body = _unfence(text)
    start, end = body.find("{"), body.rfind("}")
    if 0 <= start < end:
        return body[start : end + 1]
    return body


def parse_category(text: str) -> Tuple[Optional[str], Optional[str]]:
    """Pull a category out of model output.

    Accepts the requested JSON object, and tolerates a bare one-line answer.
    """
    try:
        parsed = json.loads(_json_fragment(text))
    except json.JSONDecodeError:
        bare = _unfence(text).strip('"').strip()
        if bare and "\n" not in bare and len(bare) <= MAX_CATEGORY_LENGTH:
            return bare, None
        return None, "json_decode_error"
    if not isinstance(parsed, dict):
        return None, f"json_not_object: {type(parsed).__name__}"
    category = parsed.get("category")
    if not isinstance(category, str) or not category.strip():
        return None, "missing_category"
    return category.strip()[:MAX_CATEGORY_LENGTH], None


def _reply_text(data: Dict[str, Any]) -> Optional[str]:
    for candidate in data.get("candidates") or []:
        parts = (candidate.get("content") or {}).get("parts") or []
        texts = [part["text"] for part in parts if isinstance(part.get("text"), str)]
        if texts:
            return "".join(texts)
    return None


class BaseCategoryClassifier:
    def classify(self, product: str) -> ClassificationResult:
        raise NotImplementedError


class NoopClassifier(BaseCategoryClassifier):
    def __init__(self, reason: str = "skipped_no_api_key") -> None:
        self.reason = reason

    def classify(self, product: str) -> ClassificationResult:
        return ClassificationResult(status=self.reason, category=None, model="noop")


class GeminiClassifier(BaseCategoryClassifier):
    def __init__(
        self,
        api_key: str,
        model: str = config.DEFAULT_GEMINI_MODEL,
        timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, settings: config.SearchConfig) -> BaseCategoryClassifier:
        if not settings.gemini_api_key:
            return NoopClassifier("skipped_no_api_key")
        return cls(api_key=settings.gemini_api_key, model=settings.gemini_model)

    def _redact(self, text: str) -> str:
        if not text:
            return text
        return re.sub(r"(key=)[^&\s()]+", r"\1[REDACTED]", text.replace(self.api_key, "[REDACTED]"))

    def _model_chain(self) -> List[str]:
        preferred = [(self.model or "").strip()] + DEFAULT_MODEL_CHAIN
        return [m for i, m in enumerate(preferred) if m and m not in preferred[:i]]

    def _generate(self, model: str, prompt: str) -> Tuple[Optional[str], Optional[str], Optional[str]]:
        """Returns ``(text, error_status, error_detail)``."""
        body: Dict[str, Any] = {
            "systemInstruction": {"parts": [{"text": SYSTEM_INSTRUCTION}]},
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": 0.0,
                "maxOutputTokens": MAX_OUTPUT_TOKENS,
                "responseMimeType": "application/json",
            },
        }
        try:
            resp = self.session.post(
                GEMINI_ENDPOINT.format(model=model),
                params={"key": self.api_key},
                json=body,
                timeout=self.timeout_seconds,
            )
        except requests.RequestException as exc:
            return None, "request_error", f"request_error: {exc}"
        if resp.status_code >= 400:
            return None, "http_error", f"http_error: {resp.status_code}"
        try:
            data = resp.json()
        except ValueError as exc:
            return None, "invalid_json", f"non_json_response: {exc}"
        text = _reply_text(data if isinstance(data, dict) else {})
        if text is None:
            return None, "invalid_json", "no_text_in_reply"
        return text, None, None

    def classify(self, product: str) -> ClassificationResult:
        prompt = build_category_prompt(product)
        failure = ClassificationResult(status="request_error", category=None, model=self.model)

        for model in self._model_chain():
            text, status, detail = self._generate(model, prompt)
            if status in TRANSPORT_ERRORS:
                # next model
                failure = ClassificationResult(
                    status=status, category=None, model=model, error=self._redact(detail or "")
                )
                continue
            if status:
                return ClassificationResult(
                    status=status, category=None, model=model, error=self._redact(detail or status)
                )
            category, parse_error = parse_category(text or "")
            if parse_error:
                return ClassificationResult(status="invalid_json", category=None, model=model, error=parse_error)
            return ClassificationResult(status="ok", category=category, model=model)

        return failure
