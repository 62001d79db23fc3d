"""
app/db/models.py — SQLAlchemy ORM models for the council lead pipeline.

Tables:
  - Topic             → one lead: a council transcript excerpt kept for a tenant
  - CompanyExclusion  → deny-list location rule per tenant
  - CompanyInclusion  → allow-list location rule per tenant
  - ServiceRecord     → the tenant's service description (drives keywords and AI prompts)
  - PipelineRun       → history of pipeline invocations (feeds the schedule guard)
"""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase


# ── Base ─────────────────────────────────────────────────────────────────────

class Base(DeclarativeBase):
    pass


# ── Models ───────────────────────────────────────────────────────────────────

class Topic(Base):
    __tablename__ = "topics"

    id = Column(Integer, primary_key=True, autoincrement=True)
    company_id = Column(String(64), nullable=False, index=True)
    company_row_key = Column(String(512), nullable=False, unique=True)

    prefecture = Column(String(64), nullable=True)
    city = Column(String(128), nullable=True)
    council_date = Column(String(32), nullable=True)
    title = Column(Text, nullable=True)
    summary = Column(Text, nullable=True)
    questioner = Column(String(255), nullable=True)
    answerer = Column(String(255), nullable=True)
    source_url = Column(String(1024), nullable=True)
    group_id = Column(String(255), nullable=True)
    start_sec = Column(Integer, nullable=True)
    end_sec = Column(Integer, nullable=True)
    excerpt_text = Column(Text, nullable=True)            # rendered evidence snippets
    excerpt_range = Column(String(255), nullable=True)
    external_id = Column(String(255), nullable=True)
    category = Column(String(255), nullable=True)
    stance = Column(String(255), nullable=True)

    # Human workflow state: set on insert, never touched by the pipeline afterwards
    status = Column(String(32), nullable=False, default="未着手")
    dispatch_status = Column(String(32), nullable=False, default="NOT_SENT")

    priority = Column(String(1), nullable=False, default="B")   # A | B | C
    ai_rank = Column(String(1), nullable=True)                  # S | A | B | C
    ai_score = Column(Float, nullable=True)                     # 0 – 12
    ai_reasoning = Column(Text, nullable=True)

    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self) -> str:
        return f"<Topic id={self.id} key={self.company_row_key!r} priority={self.priority}>"


class CompanyExclusion(Base):
    __tablename__ = "company_exclusions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    company_id = Column(String(64), nullable=False, index=True)
    prefecture = Column(String(64), nullable=True)
    city = Column(String(128), nullable=True)
    reason = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    def __repr__(self) -> str:
        return f"<CompanyExclusion id={self.id} {self.prefecture or '*'}/{self.city or '*'}>"


class CompanyInclusion(Base):
    __tablename__ = "company_inclusions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    company_id = Column(String(64), nullable=False, index=True)
    prefecture = Column(String(64), nullable=True)
    city = Column(String(128), nullable=True)
    memo = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    def __repr__(self) -> str:
        return f"<CompanyInclusion id={self.id} {self.prefecture or '*'}/{self.city or '*'}>"


class ServiceRecord(Base):
    __tablename__ = "services"

    id = Column(Integer, primary_key=True, autoincrement=True)
    company_id = Column(String(64), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    target_problems = Column(Text, nullable=True)
    target_keywords = Column(Text, nullable=True)          # comma separated
    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    def __repr__(self) -> str:
        return f"<ServiceRecord id={self.id} name={self.name!r}>"


class PipelineRun(Base):
    __tablename__ = "pipeline_runs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    company_id = Column(String(64), nullable=False, index=True)
    started_at = Column(DateTime, nullable=False)
    dry_run = Column(Boolean, default=False, nullable=False)
    total_fetched = Column(Integer, default=0, nullable=False)
    zero_order_passed = Column(Integer, default=0, nullable=False)
    imported_count = Column(Integer, default=0, nullable=False)
    error_count = Column(Integer, default=0, nullable=False)

    def __repr__(self) -> str:
        return f"<PipelineRun id={self.id} company={self.company_id} imported={self.imported_count}>"
