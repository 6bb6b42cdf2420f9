"""Shared request plumbing for the service clients."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests

from ..config import REQUEST_TIMEOUT, TRACKER_API_BASE_URL
from ..errors import NetworkFailure
from .response_handling import classify_response_status
from .session import get_default_session

LOGGER = logging.getLogger(__name__)


class ServiceClient:
    """One request per call; errors come back as tracker exceptions."""

    def __init__(
        self,
        *,
        base_url: str = TRACKER_API_BASE_URL,
        session: requests.Session | None = None,
        timeout: int = REQUEST_TIMEOUT,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._session = session or get_default_session()
        self._timeout = timeout
        self._headers = dict(headers or {})

    def _request(
        self,
        method: str,
        path: str,
        *,
        transition: str,
        context: str,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = self._session.request(
                method,
                url,
                params=params,
                json=json,
                headers=self._headers or None,
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            message = f"{context} network error: {exc.__class__.__name__}"
            LOGGER.error(message)
            raise NetworkFailure(transition, message) from exc

        error = classify_response_status(response, transition, context)
        if error is not None:
            raise error
        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            message = f"{context} returned a non-JSON payload"
            LOGGER.error(message)
            raise NetworkFailure(
                transition, message, status=response.status_code
            ) from exc


__all__ = ["ServiceClient"]
