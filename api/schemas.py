"""
api/schemas.py — Pydantic request/response models for all API endpoints.

These are the API contract — separate from DB ORM models so we can
control exactly what data is exposed over HTTP.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from app.ingestion.keywords import ServiceKeywordConfig
from app.ingestion.normalizer import NormalizedTopicRow
from app.services.pipeline import PipelineResult


# ── Shared ────────────────────────────────────────────────────────────────────

class OKResponse(BaseModel):
    """Generic success acknowledgement."""
    status: str = "ok"
    message: str


# ── Pipeline ──────────────────────────────────────────────────────────────────

class PipelineRunRequest(BaseModel):
    tenant: str = Field(min_length=1, description="Tenant (company) id")
    records: list[dict[str, Any]] = Field(
        default_factory=list,
        description="Raw export records; English or Japanese column names",
    )
    keyword_config: Optional[ServiceKeywordConfig] = Field(
        default=None,
        description="Use this keyword set instead of resolving one for the tenant",
    )
    limit: int = Field(default=0, ge=0, description="Zero-order cap (0 = no cap)")
    first_order_limit: Optional[int] = Field(default=None, ge=0, description="Evidence-extraction cap (0 = no cap)")
    dry_run: bool = Field(default=False, description="Compute everything, write nothing")
    use_ai: bool = Field(default=True, description="Allow LLM triage and ranking")


class ScheduledRunRequest(PipelineRunRequest):
    force: bool = Field(default=False, description="Bypass quiet hours and minimum interval")


class PipelineRunResponse(BaseModel):
    result: PipelineResult
    rows: list[NormalizedTopicRow]
    skipped: bool = False
    skip_reason: Optional[str] = None


class ScheduleStatus(BaseModel):
    tenant: str
    allowed: bool
    reason: Optional[str] = None
    next_allowed_at: Optional[datetime] = None
    quiet_hours: str
    timezone: str
    min_interval_minutes: int


# ── Location rules ────────────────────────────────────────────────────────────

class ExclusionIn(BaseModel):
    prefecture: Optional[str] = None
    city: Optional[str] = None
    reason: Optional[str] = None


class InclusionIn(BaseModel):
    prefecture: Optional[str] = None
    city: Optional[str] = None
    memo: Optional[str] = None


class ExclusionOut(ExclusionIn):
    id: int
    company_id: str
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class InclusionOut(InclusionIn):
    id: int
    company_id: str
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}
