from __future__ import annotations

from functools import lru_cache
from typing import Any, List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_env: str = Field(default="dev", alias="APP_ENV")
    app_host: str = Field(default="127.0.0.1", alias="APP_HOST")
    app_port: int = Field(default=8000, alias="APP_PORT")
    # NOTE: Keep as string to avoid pydantic-settings JSON-decoding complex types from .env.
    cors_origins: str = Field(
        default="http://127.0.0.1:5173,http://localhost:5173",
        alias="CORS_ORIGINS",
    )
    db_url: str = Field(default="sqlite+aiosqlite:///./chatlens.db", alias="DB_URL")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_content_max_chars: int = Field(default=160, alias="LOG_CONTENT_MAX_CHARS")

    session_gap_threshold_sec: int = Field(default=1800, alias="SESSION_GAP_THRESHOLD_SEC")
    session_progress_every: int = Field(default=100, alias="SESSION_PROGRESS_EVERY")

    filter_context_size: int = Field(default=10, alias="FILTER_CONTEXT_SIZE")
    filter_page_size: int = Field(default=50, alias="FILTER_PAGE_SIZE")
    export_dir: str = Field(default="./exports", alias="EXPORT_DIR")

    rel_mention_weight: float = Field(default=0.6, alias="REL_MENTION_WEIGHT")
    rel_temporal_weight: float = Field(default=0.4, alias="REL_TEMPORAL_WEIGHT")
    rel_reciprocity_weight: float = Field(default=0.0, alias="REL_RECIPROCITY_WEIGHT")
    rel_window_seconds: float = Field(default=300, alias="REL_WINDOW_SECONDS")
    rel_decay_seconds: float = Field(default=120, alias="REL_DECAY_SECONDS")
    rel_look_ahead: int = Field(default=3, alias="REL_LOOK_AHEAD")
    rel_mode: str = Field(default="lookahead", alias="REL_MODE")
    rel_min_score: float = Field(default=0.12, alias="REL_MIN_SCORE")
    rel_min_temporal_turns: int = Field(default=2, alias="REL_MIN_TEMPORAL_TURNS")
    rel_top_edges: int = Field(default=120, alias="REL_TOP_EDGES")

    model_config = SettingsConfigDict(env_file=(".env", "backend/.env"), extra="ignore")

    def parsed_cors_origins(self) -> List[str]:
        """Return CORS origins parsed from env var.

        Supports comma-delimited strings (recommended) and JSON list strings.
        """

        raw = (self.cors_origins or "").strip()
        if not raw:
            return []
        if raw.startswith("["):
            try:
                import json

                value: Any = json.loads(raw)
                if isinstance(value, list):
                    items = [str(item).strip() for item in value]
                    return [item for item in items if item]
            except ValueError:
                pass
        return [item.strip() for item in raw.split(",") if item.strip()]

    def relationship_defaults(self) -> dict[str, Any]:
        """Return relationship-graph option defaults keyed like the request options."""

        return {
            "mention_weight": self.rel_mention_weight,
            "temporal_weight": self.rel_temporal_weight,
            "reciprocity_weight": self.rel_reciprocity_weight,
            "window_seconds": self.rel_window_seconds,
            "decay_seconds": self.rel_decay_seconds,
            "look_ahead": self.rel_look_ahead,
            "mode": self.rel_mode,
            "min_score": self.rel_min_score,
            "min_temporal_turns": self.rel_min_temporal_turns,
            "top_edges": self.rel_top_edges,
        }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached application settings."""

    return Settings()
