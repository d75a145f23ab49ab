from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from stompdeck.app.models.surface import PollMode


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="STOMPDECK_", extra="ignore")

    app_name: str = "Stompdeck Surface API"
    app_version: str = "0.1.0"
    debug: bool = False

    api_prefix: str = "/api"

    gateway_url: str = "http://127.0.0.1:8080"
    gateway_timeout_seconds: float = 3.0

    database_url: str = Field(
        default_factory=lambda: f"sqlite:///{Path(__file__).resolve().parents[3] / 'data' / 'stompdeck.db'}"
    )

    cors_origins: list[str] = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]

    autostart_polling: bool = True
    default_poll_mode: PollMode = PollMode.RESEARCH
    status_poll_interval_seconds: float = Field(default=0.75, gt=0)
    preset_watch_interval_seconds: float = Field(default=0.3, gt=0)

    preset_confirm_attempts: int = Field(default=10, ge=1)
    preset_confirm_interval_seconds: float = Field(default=0.15, ge=0)
    param_confirm_attempts: int = Field(default=12, ge=1)
    param_confirm_interval_seconds: float = Field(default=0.12, ge=0)

    # Engine stages that never show up in the program dump: (plugin, param).
    shadow_channels: list[tuple[str, str]] = [
        ("InputGain", "Gain"),
        ("MasterVolume", "Volume"),
    ]
    shadow_mute_floor: float = -60.0


@lru_cache
def get_settings() -> Settings:
    return Settings()
