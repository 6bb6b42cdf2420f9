"""Territory service client (previews and claims)."""

from __future__ import annotations

from typing import Sequence

from ..models import ClaimResult, Coordinate, TerritoryPreview
from .base import ServiceClient
from .data_normalizers import normalize_claim, normalize_preview


class TerritoryServiceClient(ServiceClient):
    def get_preview(
        self, route_id: str, coordinates: Sequence[Coordinate]
    ) -> TerritoryPreview:
        data = self._request(
            "POST",
            "/territories/preview",
            transition="preview",
            context=f"Territory preview for route {route_id}",
            json={
                "route_id": route_id,
                "coordinates": [
                    {"latitude": c.latitude, "longitude": c.longitude}
                    for c in coordinates
                ],
            },
        )
        return normalize_preview(data, route_id)

    def claim_from_route(self, route_id: str, user_id: str) -> ClaimResult:
        # The service reads the stored route geometry; no GPS data is re-sent.
        data = self._request(
            "POST",
            "/territories/claim-from-route",
            transition="retry_territory_claim",
            context=f"Claim territory from route {route_id}",
            json={"route_id": route_id, "owner_id": user_id},
        )
        return normalize_claim(data)


__all__ = ["TerritoryServiceClient"]
