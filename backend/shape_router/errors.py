from __future__ import annotations

from dataclasses import dataclass
from typing import Any

FROZEN_REASON_CODES: frozenset[str] = frozenset(
    {
        "road_data_unavailable",
        "road_data_invalid",
        "poi_data_unavailable",
        "graph_unavailable",
        "graph_empty",
        "start_unreachable",
        "template_empty",
        "poi_unmappable",
        "poi_selection_too_long",
        "no_route_candidates",
        "route_generation_timeout",
    }
)

# Reason code -> HTTP status for the API boundary.
REASON_CODE_STATUS: dict[str, int] = {
    "road_data_unavailable": 503,
    "road_data_invalid": 503,
    "poi_data_unavailable": 503,
    "graph_unavailable": 503,
    "graph_empty": 503,
    "start_unreachable": 422,
    "template_empty": 422,
    "poi_unmappable": 422,
    "poi_selection_too_long": 422,
    "no_route_candidates": 422,
    "route_generation_timeout": 504,
}


@dataclass
class RouteGenerationError(ValueError):
    reason_code: str
    message: str
    details: dict[str, Any] | None = None

    def __str__(self) -> str:
        return self.message

    def as_detail(self) -> dict[str, Any]:
        return {
            "reason_code": normalize_reason_code(self.reason_code),
            "message": self.message,
            "details": dict(self.details or {}),
        }


def normalize_reason_code(reason_code: str, *, default: str = "no_route_candidates") -> str:
    code = str(reason_code or "").strip()
    if code in FROZEN_REASON_CODES:
        return code
    return default


def status_for_reason_code(reason_code: str) -> int:
    return REASON_CODE_STATUS.get(normalize_reason_code(reason_code), 500)
