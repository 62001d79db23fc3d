"""
api/endpoints/pipeline_routes.py — Routes to run the lead pipeline.

POST /pipeline/run            — Run the pipeline on posted raw records
POST /pipeline/scheduled-run  — Same, behind the schedule guard (cron entry point)
GET  /pipeline/schedule       — Whether a scheduled run would be allowed right now
"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query

from app.config import settings
from app.db.session import is_database_configured
from app.ingestion.rows import rows_from_records
from app.services.pipeline import LeadPipeline, PipelineResult, build_default_pipeline
from app.services.schedule_guard import ScheduleGuard
from api.schemas import PipelineRunRequest, PipelineRunResponse, ScheduledRunRequest, ScheduleStatus

logger = logging.getLogger(__name__)
router = APIRouter()


# ── Dependencies ──────────────────────────────────────────────────────────────

def get_pipeline() -> LeadPipeline:
    return build_default_pipeline()


def get_schedule_guard() -> ScheduleGuard:
    if is_database_configured():
        from app.db.stores import SqlRunHistory
        return ScheduleGuard(last_run_lookup=SqlRunHistory().last_run_at)
    return ScheduleGuard()


def verify_cron_secret(authorization: Optional[str] = Header(default=None)) -> None:
    """Require 'Authorization: Bearer <CRON_SECRET>' when a secret is configured."""
    if not settings.cron_secret:
        return
    if authorization != f"Bearer {settings.cron_secret}":
        raise HTTPException(status_code=401, detail="Unauthorized")


async def _execute(request: PipelineRunRequest, pipeline: LeadPipeline) -> PipelineRunResponse:
    rows = rows_from_records(request.records)
    outcome = await pipeline.run(
        rows,
        request.tenant,
        keyword_config=request.keyword_config,
        limit=request.limit,
        first_order_limit=request.first_order_limit,
        dry_run=request.dry_run,
        use_ai=request.use_ai,
    )
    logger.info("Pipeline run for %s: %s", request.tenant, outcome.result.model_dump())
    return PipelineRunResponse(result=outcome.result, rows=outcome.rows)


# ── Routes ────────────────────────────────────────────────────────────────────

@router.post("/run", response_model=PipelineRunResponse, summary="Run the lead pipeline")
async def run_pipeline(
    request: PipelineRunRequest,
    pipeline: LeadPipeline = Depends(get_pipeline),
):
    """
    Filter, triage, attach evidence, rank and store the posted records.

    Stage failures never fail the request; they are listed in result.errors.
    """
    return await _execute(request, pipeline)


@router.post(
    "/scheduled-run",
    response_model=PipelineRunResponse,
    summary="Run the pipeline if the schedule guard allows it",
    dependencies=[Depends(verify_cron_secret)],
)
async def scheduled_run(
    request: ScheduledRunRequest,
    pipeline: LeadPipeline = Depends(get_pipeline),
    guard: ScheduleGuard = Depends(get_schedule_guard),
):
    decision = await asyncio.to_thread(guard.check, request.tenant, force=request.force)
    if not decision.allowed:
        return PipelineRunResponse(
            result=PipelineResult(),
            rows=[],
            skipped=True,
            skip_reason=decision.reason,
        )
    return await _execute(request, pipeline)


@router.get("/schedule", response_model=ScheduleStatus, summary="Schedule guard status")
def schedule_status(
    tenant: str = Query(..., min_length=1),
    guard: ScheduleGuard = Depends(get_schedule_guard),
):
    decision = guard.check(tenant)
    return ScheduleStatus(
        tenant=tenant,
        allowed=decision.allowed,
        reason=decision.reason,
        next_allowed_at=decision.next_allowed_at,
        quiet_hours=f"{guard.quiet_hours_start:02d}:00-{guard.quiet_hours_end:02d}:00",
        timezone=guard.tz.key,
        min_interval_minutes=int(guard.min_interval.total_seconds() // 60),
    )
