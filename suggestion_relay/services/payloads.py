from __future__ import annotations

import json
from typing import Any

SENSITIVE_KEYS = {"access_token", "api_key", "webhook_secret", "authorization", "token", "secret", "signature"}


def _mask_value(value: Any) -> Any:
    if value is None:
        return None
    text = str(value)
    if len(text) <= 4:
        return "****"
    return f"****{text[-4:]}"


def sanitize_payload(payload: Any) -> Any:
    def _sanitize(value: Any) -> Any:
        if isinstance(value, dict):
            return {key: _sanitize_value(key, inner) for key, inner in value.items()}
        if isinstance(value, list):
            return [_sanitize(item) for item in value]
        return value

    def _sanitize_value(key: str, value: Any) -> Any:
        if str(key).lower() in SENSITIVE_KEYS:
            return _mask_value(value)
        return _sanitize(value)

    return _sanitize(payload)


def safe_json(payload: Any) -> str | None:
    if payload is None:
        return None
    try:
        return json.dumps(payload, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return "{}"


def load_json(raw: str | None, default: Any = None) -> Any:
    if not raw:
        return default
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return {"raw": raw}
