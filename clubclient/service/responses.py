from __future__ import annotations

from typing import Any, Dict

import httpx


def json_body(response: httpx.Response) -> Dict[str, Any]:
    """Decode a JSON object body; anything else comes back as ``{}``."""
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def error_message(body: Dict[str, Any], default: str) -> str:
    for key in ("error", "message"):
        value = body.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return default
