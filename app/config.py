"""
app/config.py — Central configuration loaded from environment variables.
All modules import settings from here; never read os.environ directly elsewhere.

Credentials are optional: a missing LLM key or database URL disables only the
stage that needs it, the pipeline itself still runs.
"""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── LLM ──────────────────────────────────────────────────────────────────
    openrouter_api_key: Optional[str] = Field(
        default=None,
        description="OpenRouter API key. Unset disables AI triage, keyword generation and ranking",
    )
    openrouter_model: str = Field(
        default="openai/gpt-4o-mini",
        description="OpenRouter model identifier",
    )

    # ── Database ──────────────────────────────────────────────────────────────
    database_url: Optional[str] = Field(
        default=None,
        description="SQLAlchemy connection URI (PostgreSQL in production)",
    )

    # ── Subtitle source ───────────────────────────────────────────────────────
    subtitle_base_url: Optional[str] = Field(
        default=None,
        description="HTTP base URL serving <group_id>.srt files",
    )
    subtitle_dir: Optional[str] = Field(
        default=None,
        description="Local directory holding <group_id>.srt files",
    )

    # ── Pipeline tuning ───────────────────────────────────────────────────────
    zero_order_batch_size: int = Field(
        default=10, gt=0,
        description="Rows per LLM request in AI zero-order triage",
    )
    ai_rank_concurrency: int = Field(
        default=3, gt=0,
        description="Max concurrent AI rank judgments",
    )
    first_order_limit: int = Field(
        default=100, ge=0,
        description="Max zero-order survivors sent to evidence extraction (0 = no cap)",
    )
    evidence_padding_sec: int = Field(
        default=30, ge=0,
        description="Seconds added on each side of a topic's time window",
    )
    max_evidence_snippets: int = Field(
        default=10, gt=0,
        description="Max evidence snippets kept per topic",
    )
    keyword_cache_ttl_hours: float = Field(
        default=24.0, gt=0,
        description="How long generated keyword sets stay cached",
    )

    # ── Scheduling guard ──────────────────────────────────────────────────────
    quiet_hours_start: int = Field(default=22, ge=0, le=23)
    quiet_hours_end: int = Field(default=7, ge=0, le=23)
    scheduler_timezone: str = Field(default="Asia/Tokyo")
    min_run_interval_minutes: int = Field(
        default=60, ge=0,
        description="Minimum minutes between scheduled runs for one tenant",
    )
    cron_secret: Optional[str] = Field(
        default=None,
        description="Bearer token required by the scheduled-run endpoint when set",
    )


# Singleton: import this everywhere
settings = Settings()
