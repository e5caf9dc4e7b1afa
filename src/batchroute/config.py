"""Application configuration and settings management."""

from pathlib import Path
from typing import Any, Literal, Optional

import json
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables or defaults."""

    model_config = SettingsConfigDict(
        env_prefix="BR_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    app_name: str = "Batch Route Dispatch API"
    api_prefix: str = "/api"
    data_root: Path = Field(default=Path("data"), description="Root directory for route exports.")
    gazetteer_file: Optional[Path] = Field(
        default=None,
        description="Optional zone table (.json or .xlsx) replacing the built-in gazetteer.",
    )
    unknown_zone: str = Field(default="unknown", description="Sentinel zone for unresolved addresses.")

    # Batch formation
    batch_capacity_kg: float = Field(default=5000.0, gt=0.0)
    ready_threshold_kg: float = Field(default=3500.0, gt=0.0)
    min_order_weight_kg: float = Field(default=1.0, gt=0.0)
    assign_max_retries: int = Field(default=8, ge=1)
    merge_max_distance_km: float = Field(default=10.0, ge=0.0)

    # Depot used when a route request does not carry an origin
    depot_latitude: float = Field(default=8.4542, ge=-90.0, le=90.0)
    depot_longitude: float = Field(default=124.6319, ge=-180.0, le=180.0)
    depot_name: str = "Main Depot"

    # Genetic route search
    ga_population_size: int = Field(default=100, ge=2)
    ga_max_generations: int = Field(default=500, ge=1)
    ga_mutation_rate: float = Field(default=0.02, ge=0.0, le=1.0)
    ga_crossover_rate: float = Field(default=1.0, ge=0.0, le=1.0)
    ga_elite_count: int = Field(default=10, ge=1)
    ga_tournament_size: int = Field(default=5, ge=1)
    ga_stagnation_generations: int = Field(default=50, ge=1)
    ga_convergence_threshold: float = Field(default=0.001, ge=0.0)
    ga_time_budget_seconds: float = Field(default=2.0, gt=0.0)
    ga_seed: Optional[int] = None
    optimizer_workers: int = Field(default=4, ge=1)

    # Route metrics
    return_to_depot: bool = False
    road_distance_factor: float = Field(default=1.2, ge=1.0)
    average_speed_kmh: float = Field(default=30.0, gt=0.0)
    service_minutes_per_stop: float = Field(default=20.0, ge=0.0)
    fuel_km_per_liter: float = Field(default=10.0, gt=0.0)
    fuel_price_per_liter: float = Field(default=60.0, ge=0.0)

    # Live tracking
    deviation_threshold_km: float = Field(default=0.5, gt=0.0)
    arrival_radius_km: float = Field(default=0.05, ge=0.0)
    reconcile_interval_seconds: float = Field(default=60.0, ge=0.0)

    store_backend: Literal["memory", "supabase"] = "memory"
    persist_routes: bool = False

    frontend_allowed_origins: tuple[str, ...] = Field(
        default=(
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ),
        description="Permitted web origins for browser clients (CORS).",
    )

    # Supabase configuration
    supabase_url: Optional[str] = Field(
        default=None,
        description="Supabase project URL (e.g., https://xxx.supabase.co).",
    )
    supabase_key: Optional[str] = Field(
        default=None,
        description="Supabase service role key for backend operations.",
    )

    @field_validator("data_root", "gazetteer_file", mode="before")
    @classmethod
    def _expand_path(cls, value: Any) -> Optional[Path]:
        if value is None or value == "":
            return None
        path_value = value if isinstance(value, Path) else Path(str(value))
        return path_value.expanduser().resolve()

    @field_validator("frontend_allowed_origins", mode="before")
    @classmethod
    def _parse_str_tuple_from_env(cls, value: Any) -> tuple[str, ...]:
        """Parse string tuple from environment variable (comma-separated or JSON array)."""
        if isinstance(value, tuple):
            return value
        if isinstance(value, list):
            return tuple(str(item) for item in value)
        if isinstance(value, str):
            try:
                parsed = json.loads(value)
                if isinstance(parsed, list):
                    return tuple(str(item) for item in parsed)
            except (json.JSONDecodeError, TypeError):
                pass
            if "," in value:
                return tuple(item.strip() for item in value.split(",") if item.strip())
            if value.strip():
                return (value.strip(),)
        return tuple()

    @model_validator(mode="after")
    def _check_thresholds(self) -> "Settings":
        if self.ready_threshold_kg > self.batch_capacity_kg:
            raise ValueError(
                f"ready_threshold_kg ({self.ready_threshold_kg}) must not exceed "
                f"batch_capacity_kg ({self.batch_capacity_kg})"
            )
        return self


settings = Settings()
