"""
app/db/repository.py — All database read/write operations.

Business logic should never write raw SQL or ORM queries directly —
everything goes through this module. This keeps DB logic centralized
and easy to test/mock.
"""

import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from app.db.models import CompanyExclusion, CompanyInclusion, PipelineRun, ServiceRecord, Topic

logger = logging.getLogger(__name__)

# Columns the pipeline must never overwrite on an existing topic
PROTECTED_COLUMNS = {"id", "company_row_key", "status", "dispatch_status", "created_at"}


# ── Location rules ────────────────────────────────────────────────────────────

def get_exclusions(db: Session, company_id: str) -> list[CompanyExclusion]:
    return (
        db.query(CompanyExclusion)
        .filter(CompanyExclusion.company_id == company_id)
        .order_by(CompanyExclusion.id.asc())
        .all()
    )


def get_inclusions(db: Session, company_id: str) -> list[CompanyInclusion]:
    return (
        db.query(CompanyInclusion)
        .filter(CompanyInclusion.company_id == company_id)
        .order_by(CompanyInclusion.id.asc())
        .all()
    )


def add_exclusion(
    db: Session,
    company_id: str,
    prefecture: Optional[str],
    city: Optional[str],
    reason: Optional[str] = None,
) -> CompanyExclusion:
    rule = CompanyExclusion(company_id=company_id, prefecture=prefecture, city=city, reason=reason)
    db.add(rule)
    db.flush()
    logger.info("Added exclusion for %s: %s/%s", company_id, prefecture, city)
    return rule


def add_inclusion(
    db: Session,
    company_id: str,
    prefecture: Optional[str],
    city: Optional[str],
    memo: Optional[str] = None,
) -> CompanyInclusion:
    rule = CompanyInclusion(company_id=company_id, prefecture=prefecture, city=city, memo=memo)
    db.add(rule)
    db.flush()
    logger.info("Added inclusion for %s: %s/%s", company_id, prefecture, city)
    return rule


def delete_exclusion(db: Session, company_id: str, rule_id: int) -> bool:
    """Delete one exclusion rule. Returns False if it does not exist for this tenant."""
    deleted = (
        db.query(CompanyExclusion)
        .filter(CompanyExclusion.company_id == company_id, CompanyExclusion.id == rule_id)
        .delete()
    )
    return deleted > 0


def delete_inclusion(db: Session, company_id: str, rule_id: int) -> bool:
    """Delete one inclusion rule. Returns False if it does not exist for this tenant."""
    deleted = (
        db.query(CompanyInclusion)
        .filter(CompanyInclusion.company_id == company_id, CompanyInclusion.id == rule_id)
        .delete()
    )
    return deleted > 0


# ── Services ──────────────────────────────────────────────────────────────────

def get_service(db: Session, company_id: str) -> Optional[ServiceRecord]:
    """The tenant's first registered service, if any."""
    return (
        db.query(ServiceRecord)
        .filter(ServiceRecord.company_id == company_id)
        .order_by(ServiceRecord.id.asc())
        .first()
    )


# ── Topics ────────────────────────────────────────────────────────────────────

def _insert_for(db: Session):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise NotImplementedError(f"Topic upsert is not supported on {dialect}")


def upsert_topics(db: Session, payload: list[dict[str, Any]]) -> list[int]:
    """
    Insert topics, updating pipeline-derived columns on company_row_key conflict.

    status and dispatch_status are written on insert only. Rows must already
    be unique by company_row_key.

    Returns:
        IDs of every inserted or updated topic.
    """
    if not payload:
        return []

    columns = {c.name for c in Topic.__table__.columns}
    records = [{k: v for k, v in record.items() if k in columns} for record in payload]

    insert = _insert_for(db)
    stmt = insert(Topic).values(records)
    update_cols = {
        name: stmt.excluded[name]
        for name in records[0]
        if name not in PROTECTED_COLUMNS
    }
    update_cols["updated_at"] = func.now()

    stmt = stmt.on_conflict_do_update(
        index_elements=["company_row_key"],
        set_=update_cols,
    ).returning(Topic.id)

    ids = list(db.execute(stmt).scalars().all())
    logger.info("Upserted %d topics.", len(ids))
    return ids


def get_topic_by_key(db: Session, company_row_key: str) -> Optional[Topic]:
    return db.query(Topic).filter(Topic.company_row_key == company_row_key).first()


def count_topics(db: Session, company_id: str) -> int:
    return db.query(Topic).filter(Topic.company_id == company_id).count()


# ── Pipeline runs ─────────────────────────────────────────────────────────────

def record_pipeline_run(
    db: Session,
    company_id: str,
    started_at: datetime,
    dry_run: bool,
    total_fetched: int,
    zero_order_passed: int,
    imported_count: int,
    error_count: int,
) -> PipelineRun:
    run = PipelineRun(
        company_id=company_id,
        started_at=started_at,
        dry_run=dry_run,
        total_fetched=total_fetched,
        zero_order_passed=zero_order_passed,
        imported_count=imported_count,
        error_count=error_count,
    )
    db.add(run)
    db.flush()
    return run


def get_last_run(db: Session, company_id: str, include_dry_runs: bool = False) -> Optional[PipelineRun]:
    query = db.query(PipelineRun).filter(PipelineRun.company_id == company_id)
    if not include_dry_runs:
        query = query.filter(PipelineRun.dry_run == False)  # noqa: E712
    return query.order_by(PipelineRun.started_at.desc()).first()
