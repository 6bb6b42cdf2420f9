"""Shared HTTP response helpers for route and territory service calls."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Type

import requests

from ..errors import ConflictState, NetworkFailure, TrackerError

RequestsJSONDecodeError: Type[Exception]
if hasattr(requests.exceptions, "JSONDecodeError"):
    RequestsJSONDecodeError = requests.exceptions.JSONDecodeError
else:  # pragma: no cover - fallback for old requests versions
    RequestsJSONDecodeError = ValueError


__all__ = [
    "classify_response_status",
    "extract_error",
]


def classify_response_status(
    response: requests.Response,
    transition: str,
    context: str,
) -> Optional[TrackerError]:
    """Return the error for a non-success status, or None when the call succeeded."""

    status = response.status_code
    if status < 400:
        return None
    detail = extract_error(response)

    def with_detail(message: str) -> str:
        return f"{message} | {detail}" if detail else message

    if status == 409:
        message = with_detail(f"{context} conflicts with the current server state")
        logging.warning(message)
        return ConflictState(message)

    if status in (401, 403):
        message = with_detail(f"{context} not authorised (status {status})")
        logging.warning(message)
        return NetworkFailure(transition, message, status=status)

    if status == 404:
        message = with_detail(f"{context} not found")
        logging.info(message)
        return NetworkFailure(transition, message, status=status)

    if 500 <= status < 600:
        message = with_detail(f"{context} server error {status}")
        logging.error(message)
        return NetworkFailure(transition, message, status=status)

    message = with_detail(f"{context} request failed (status {status})")
    logging.error(message)
    return NetworkFailure(transition, message, status=status)


def extract_error(resp: Optional[requests.Response]) -> Optional[str]:
    """Return a compact error string from the service's JSON body or plain text."""

    if resp is None:
        return None
    data = safe_json(resp)
    if data is None:
        return _extract_error_text(resp)
    if not isinstance(data, dict):
        return None
    parts = _collect_error_parts(data)
    return " | ".join(parts) if parts else None


def safe_json(resp: requests.Response) -> Optional[Any]:
    """Safely parse JSON; return None if parsing fails."""

    try:
        return resp.json()
    except (
        ValueError,
        RequestsJSONDecodeError,
    ) as exc:  # pragma: no cover - logging path
        logging.debug(
            "Failed to decode JSON from %s: %s", getattr(resp, "url", "?"), exc
        )
        return None


def _extract_error_text(resp: requests.Response) -> Optional[str]:
    """Best-effort plain-text extraction when JSON parsing fails."""

    text = getattr(resp, "text", "")
    if not isinstance(text, str):
        return None
    trimmed = text.strip()
    if not trimmed:
        return None
    return (trimmed[:297] + "...") if len(trimmed) > 300 else trimmed


def _collect_error_parts(data: Dict[str, Any]) -> List[str]:
    """Build error snippets from ``message``/``error`` strings and ``detail`` entries."""

    parts: List[str] = []
    for key in ("message", "error"):
        value = data.get(key)
        if isinstance(value, str) and value:
            parts.append(value)
    detail = data.get("detail")
    if isinstance(detail, str) and detail:
        parts.append(detail)
    elif isinstance(detail, list):
        for item in detail:
            if not isinstance(item, dict):
                continue
            msg = item.get("msg")
            loc = item.get("loc")
            field = ".".join(str(p) for p in loc) if isinstance(loc, list) else None
            if msg and field:
                parts.append(f"{field}:{msg}")
            elif msg:
                parts.append(str(msg))
    return parts
