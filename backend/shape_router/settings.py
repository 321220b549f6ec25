from __future__ import annotations

from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_data_dir() -> str:
    # Road and POI assets live beside the backend package unless overridden.
    return str(Path(__file__).resolve().parents[1] / "data")


class Settings(BaseSettings):
    """Validated settings (env-driven). Tuned constants keep their observed defaults."""

    model_config = SettingsConfigDict(
        # Support both "repo root/.env" and "backend/.env" (local dev)
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    out_dir: str = Field(default="out", alias="OUT_DIR")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    data_dir: str = Field(default_factory=_default_data_dir, alias="DATA_DIR")
    road_data_path: str = Field(default="", alias="ROAD_DATA_PATH")
    road_data_fallback_path: str = Field(default="", alias="ROAD_DATA_FALLBACK_PATH")
    poi_data_path: str = Field(default="", alias="POI_DATA_PATH")
    load_data_on_startup: bool = Field(default=True, alias="LOAD_DATA_ON_STARTUP")

    # Graph construction
    road_weight_penalty_multiplier: float = Field(default=20.0, ge=0.0, alias="ROAD_WEIGHT_PENALTY_MULTIPLIER")
    node_key_precision: int = Field(default=6, ge=1, le=9, alias="NODE_KEY_PRECISION")
    graph_progress_every: int = Field(default=100, ge=1, alias="GRAPH_PROGRESS_EVERY")

    # Nearest-node lookup
    spatial_grid_size_deg: float = Field(default=0.01, gt=0.0, alias="SPATIAL_GRID_SIZE_DEG")
    nearest_node_max_radius_deg: float = Field(default=0.05, gt=0.0, alias="NEAREST_NODE_MAX_RADIUS_DEG")

    # POI handling
    poi_max_mapping_distance_m: float = Field(default=500.0, gt=0.0, alias="POI_MAX_MAPPING_DISTANCE_M")
    poi_detour_threshold_m: float = Field(default=1000.0, ge=0.0, alias="POI_DETOUR_THRESHOLD_M")
    poi_tour_warning_m: float = Field(default=10_000.0, gt=0.0, alias="POI_TOUR_WARNING_M")
    poi_route_estimate_factor: float = Field(default=1.5, ge=1.0, alias="POI_ROUTE_ESTIMATE_FACTOR")

    # Spur cleanup
    spur_max_length_m: float = Field(default=300.0, ge=0.0, alias="SPUR_MAX_LENGTH_M")
    spur_window: int = Field(default=10, ge=1, alias="SPUR_WINDOW")

    # Candidate search
    num_candidates: int = Field(default=12, ge=1, alias="NUM_CANDIDATES")
    max_ranked_candidates: int = Field(default=10, ge=1, alias="MAX_RANKED_CANDIDATES")
    resample_target_points: int = Field(default=40, ge=3, alias="RESAMPLE_TARGET_POINTS")
    resample_curvature_weight: float = Field(default=2.0, ge=0.0, alias="RESAMPLE_CURVATURE_WEIGHT")
    resample_curvature_weight_book: float = Field(default=4.0, ge=0.0, alias="RESAMPLE_CURVATURE_WEIGHT_BOOK")
    rank_similarity_tie_band: float = Field(default=0.1, ge=0.0, alias="RANK_SIMILARITY_TIE_BAND")
    rank_distance_weight: float = Field(default=0.01, ge=0.0, alias="RANK_DISTANCE_WEIGHT")
    # Wall-clock budget for one generate request; 0 disables it.
    route_generation_timeout_s: float = Field(default=120.0, ge=0.0, alias="ROUTE_GENERATION_TIMEOUT_S")

    # Similarity scoring
    similarity_weight_distance: float = Field(default=0.01, ge=0.0, alias="SIMILARITY_WEIGHT_DISTANCE")
    similarity_weight_direction: float = Field(default=0.54, ge=0.0, alias="SIMILARITY_WEIGHT_DIRECTION")
    similarity_weight_order: float = Field(default=0.10, ge=0.0, alias="SIMILARITY_WEIGHT_ORDER")
    similarity_weight_center: float = Field(default=0.35, ge=0.0, alias="SIMILARITY_WEIGHT_CENTER")
    similarity_max_distance_m: float = Field(default=500.0, gt=0.0, alias="SIMILARITY_MAX_DISTANCE_M")
    similarity_max_center_distance_m: float = Field(default=1000.0, gt=0.0, alias="SIMILARITY_MAX_CENTER_DISTANCE_M")
    similarity_order_regression_credit: float = Field(
        default=0.3,
        ge=0.0,
        le=1.0,
        alias="SIMILARITY_ORDER_REGRESSION_CREDIT",
    )

    # Target length windows (meters). The fallback window is tried once when
    # the default window yields no route.
    default_length_min_m: float = Field(default=5000.0, gt=0.0, alias="DEFAULT_LENGTH_MIN_M")
    default_length_max_m: float = Field(default=10_000.0, gt=0.0, alias="DEFAULT_LENGTH_MAX_M")
    fallback_length_min_m: float = Field(default=10_000.0, gt=0.0, alias="FALLBACK_LENGTH_MIN_M")
    fallback_length_max_m: float = Field(default=20_000.0, gt=0.0, alias="FALLBACK_LENGTH_MAX_M")
    hanok_template_length_m: float = Field(default=7500.0, gt=0.0, alias="HANOK_TEMPLATE_LENGTH_M")

    # Service area (Jeonju) and start points
    service_area_min_lat: float = Field(default=35.75, ge=-90, le=90, alias="SERVICE_AREA_MIN_LAT")
    service_area_max_lat: float = Field(default=35.90, ge=-90, le=90, alias="SERVICE_AREA_MAX_LAT")
    service_area_min_lon: float = Field(default=127.05, ge=-180, le=180, alias="SERVICE_AREA_MIN_LON")
    service_area_max_lon: float = Field(default=127.25, ge=-180, le=180, alias="SERVICE_AREA_MAX_LON")
    default_start_lat: float = Field(default=35.8242, ge=-90, le=90, alias="DEFAULT_START_LAT")
    default_start_lon: float = Field(default=127.1480, ge=-180, le=180, alias="DEFAULT_START_LON")
    fallback_start_lat: float = Field(default=35.8447, ge=-90, le=90, alias="FALLBACK_START_LAT")
    fallback_start_lon: float = Field(default=127.1271, ge=-180, le=180, alias="FALLBACK_START_LON")

    @model_validator(mode="after")
    def _check_ranges(self) -> "Settings":
        if self.default_length_min_m > self.default_length_max_m:
            raise ValueError("DEFAULT_LENGTH_MIN_M must not exceed DEFAULT_LENGTH_MAX_M")
        if self.fallback_length_min_m > self.fallback_length_max_m:
            raise ValueError("FALLBACK_LENGTH_MIN_M must not exceed FALLBACK_LENGTH_MAX_M")
        if self.service_area_min_lat > self.service_area_max_lat:
            raise ValueError("SERVICE_AREA_MIN_LAT must not exceed SERVICE_AREA_MAX_LAT")
        if self.service_area_min_lon > self.service_area_max_lon:
            raise ValueError("SERVICE_AREA_MIN_LON must not exceed SERVICE_AREA_MAX_LON")
        return self


settings = Settings()
