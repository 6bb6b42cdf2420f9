"""Route service client."""

from __future__ import annotations

import logging
from typing import Any, Dict, Sequence
from urllib.parse import quote

from ..errors import NetworkFailure
from ..models import ActiveRoute, CompletionResult, Coordinate, RouteMetadata
from .base import ServiceClient
from .data_normalizers import extract_route_id, normalize_active_route, normalize_completion

LOGGER = logging.getLogger(__name__)


def _route_path(route_id: str, suffix: str = "") -> str:
    return f"/routes/{quote(route_id, safe='')}{suffix}"


class RouteServiceClient(ServiceClient):
    def create_route(self, user_id: str, metadata: RouteMetadata | None = None) -> str:
        data = self._request(
            "POST",
            "/routes/start",
            transition="start",
            context="Start route",
            params={"user_id": user_id},
            json=(metadata or RouteMetadata()).to_payload(),
        )
        route_id = extract_route_id(data)
        if route_id is None:
            raise NetworkFailure("start", "Route service did not return a route id")
        LOGGER.info("Started route %s for user %s", route_id, user_id)
        return route_id

    def add_coordinates(
        self, route_id: str, user_id: str, coordinates: Sequence[Coordinate]
    ) -> None:
        if not coordinates:
            return
        self._request(
            "POST",
            _route_path(route_id, "/coordinates"),
            transition="upload",
            context=f"Upload {len(coordinates)} coordinates to route {route_id}",
            params={"user_id": user_id},
            json={"coordinates": [c.to_payload() for c in coordinates]},
        )

    def complete_route(
        self,
        route_id: str,
        user_id: str,
        *,
        name: str | None = None,
        end_coordinate: Coordinate | None = None,
    ) -> CompletionResult:
        body: Dict[str, Any] = {}
        if name:
            body["name"] = name
        if end_coordinate is not None:
            body["end_coordinate"] = end_coordinate.to_payload()
        data = self._request(
            "POST",
            _route_path(route_id, "/complete"),
            transition="complete",
            context=f"Complete route {route_id}",
            params={"user_id": user_id},
            json=body,
        )
        return normalize_completion(data, route_id)

    def delete_route(self, route_id: str, user_id: str) -> None:
        self._request(
            "DELETE",
            _route_path(route_id),
            transition="cancel",
            context=f"Delete route {route_id}",
            params={"user_id": user_id},
        )

    def get_active_route(self, user_id: str) -> ActiveRoute | None:
        try:
            data = self._request(
                "GET",
                "/routes/active",
                transition="poll",
                context="Fetch active route",
                params={"user_id": user_id},
            )
        except NetworkFailure as exc:
            if exc.status == 404:
                return None
            raise
        return normalize_active_route(data)

    def cleanup_stuck_routes(self, user_id: str, max_age_minutes: int) -> int:
        data = self._request(
            "POST",
            "/routes/cleanup-stuck",
            transition="cleanup",
            context="Clean up stuck routes",
            params={"user_id": user_id, "max_age_minutes": max_age_minutes},
        )
        if not isinstance(data, dict):
            return 0
        for key in ("cleaned_count", "cleaned", "count"):
            value = data.get(key)
            if isinstance(value, int):
                return value
        return 0


__all__ = ["RouteServiceClient"]
