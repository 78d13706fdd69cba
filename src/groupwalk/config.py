"""Application configuration and settings management."""

from pathlib import Path
from typing import Any, Optional

import json
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables or defaults."""

    model_config = SettingsConfigDict(
        env_prefix="GW_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    app_name: str = "Group Walk Scheduling API"
    api_prefix: str = "/api"
    data_root: Path = Field(default=Path("data"), description="Root directory for persisted run artifacts.")
    persist_runs: bool = Field(default=True, description="Write summary.json/groups.csv for every optimization run.")

    max_radius_km: float = Field(default=2.0, gt=0.0, description="Maximum internal radius of a group.")
    max_time_gap_minutes: int = Field(default=30, ge=0, description="Maximum time gap between paired bookings.")
    max_dogs_per_group: int = Field(default=4, ge=2, description="Hard cap on dogs in one group visit.")
    min_group_size: int = Field(default=2, ge=2)
    group_discount_rate: float = Field(default=0.15, ge=0.0, lt=1.0)
    pair_radius_multiplier: float = Field(
        default=2.0,
        gt=0.0,
        description="Pairwise distance limit expressed as a multiple of max_radius_km.",
    )
    default_base_price: float = Field(default=18.0, ge=0.0)
    walking_speed_kmh: float = Field(default=5.0, gt=0.0)
    groupable_service_types: tuple[str, ...] = Field(default=("SINGLE_WALK", "GROUP_WALK"))
    optimizable_booking_statuses: tuple[str, ...] = Field(default=("PENDING", "CONFIRMED"))

    geocoding_base_url: str = Field(default="https://nominatim.openstreetmap.org")
    geocoding_user_agent: str = Field(default="GroupWalk/1.0")
    geocoding_country: str = Field(default="Germany")
    geocoding_cache_ttl_seconds: float = Field(default=24 * 60 * 60, ge=0.0)
    geocoding_enabled: bool = Field(
        default=True,
        description="Fill missing pickup coordinates from customer addresses during optimization runs.",
    )

    frontend_allowed_origins: tuple[str, ...] = Field(
        default=(
            "http://localhost:3000",
            "http://127.0.0.1:3000",
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

    @field_validator("data_root", mode="before")
    @classmethod
    def _expand_path(cls, value: Any) -> Path:
        path_value = value if isinstance(value, Path) else Path(str(value))
        return path_value.expanduser().resolve()

    @field_validator(
        "frontend_allowed_origins",
        "groupable_service_types",
        "optimizable_booking_statuses",
        mode="before",
    )
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


settings = Settings()
