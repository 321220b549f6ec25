from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

POIGroup = Literal["all", "historical", "cultural", "food"]


class LatLng(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)


class POIModel(BaseModel):
    name: str = Field(..., min_length=1)
    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)
    category: str = ""


class LengthRange(BaseModel):
    min_m: float = Field(..., gt=0)
    max_m: float = Field(..., gt=0)

    @model_validator(mode="after")
    def ordered(self) -> "LengthRange":
        if self.min_m > self.max_m:
            raise ValueError("min_m must not exceed max_m")
        return self

    @property
    def target_m(self) -> float:
        return (self.min_m + self.max_m) / 2.0


class RouteGenerateRequest(BaseModel):
    """A shape route request. Unknown shapes fall back to the default variation set."""

    shape: str = "square"
    start: LatLng | None = None
    pois: list[POIModel] = Field(default_factory=list)
    length_range: LengthRange | None = None
    num_candidates: int | None = Field(default=None, ge=1, le=200)
    include_variations: bool = True
    # Accepted for client compatibility; every candidate is fully evaluated.
    top_n_for_precise: int | None = Field(default=None, ge=1)

    @field_validator("shape")
    @classmethod
    def normalise_shape(cls, v: str) -> str:
        return v.strip().lower()


class RouteModel(BaseModel):
    coordinates: list[tuple[float, float]]
    distance_m: float
    cost: float
    node_keys: list[str]
    similarity: float
    score: float
    variation_key: str
    rotation_deg: int
    flip: int
    phase_index: int


class RouteGenerateResponse(BaseModel):
    shape: str
    start: LatLng
    target_length_m: float
    length_range: LengthRange
    fallback_used: bool = False
    template_hash: str
    route: RouteModel
    candidates: list[RouteModel] = Field(default_factory=list)
    evaluated: int = 0
    failed: int = 0
    mapped_pois: int = 0
    warnings: list[str] = Field(default_factory=list)


class POIValidateRequest(BaseModel):
    start: LatLng | None = None
    pois: list[POIModel] = Field(default_factory=list)


class POIValidateResponse(BaseModel):
    valid: bool
    fits_default_range: bool
    straight_line_m: float
    estimated_route_m: float
    tour_m: float
    tour_warning: bool


class POIListResponse(BaseModel):
    group: POIGroup
    count: int
    pois: list[POIModel]


class ShapeInfo(BaseModel):
    id: str
    label: str
    rotations: list[int]
    flips: list[int]


class ShapeListResponse(BaseModel):
    shapes: list[ShapeInfo]


class HealthResponse(BaseModel):
    status: Literal["ok", "degraded"]
    graph: dict[str, object]
    pois: int
    road_data_path: str | None = None
