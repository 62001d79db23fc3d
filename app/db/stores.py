"""
app/db/stores.py — Pipeline collaborators backed by the database.

The pipeline talks to small interfaces (rule store, service catalog, topic
store, run history). These adapters implement them over app.db.repository, each opening
its own short session per call.
"""

import logging
from contextlib import AbstractContextManager
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session

from app.db import repository
from app.db.session import get_session
from app.ingestion.filters import LocationRule
from app.ingestion.keywords import ServiceContext

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractContextManager[Session]]


class SqlRuleStore:
    def __init__(self, session_factory: SessionFactory = get_session):
        self.session_factory = session_factory

    def get_exclusion_rules(self, tenant: str) -> list[LocationRule]:
        with self.session_factory() as db:
            return [
                LocationRule(prefecture=r.prefecture, city=r.city, note=r.reason)
                for r in repository.get_exclusions(db, tenant)
            ]

    def get_inclusion_rules(self, tenant: str) -> list[LocationRule]:
        with self.session_factory() as db:
            return [
                LocationRule(prefecture=r.prefecture, city=r.city, note=r.memo)
                for r in repository.get_inclusions(db, tenant)
            ]


class SqlServiceCatalog:
    def __init__(self, session_factory: SessionFactory = get_session):
        self.session_factory = session_factory

    def get_service_context(self, tenant: str) -> Optional[ServiceContext]:
        with self.session_factory() as db:
            service = repository.get_service(db, tenant)
            if service is None:
                logger.info("No service registered for %s.", tenant)
                return None
            return ServiceContext(
                id=str(service.id),
                name=service.name,
                description=service.description or "",
                target_problems=service.target_problems or "",
                target_keywords=service.target_keywords or "",
            )


class SqlTopicStore:
    def __init__(self, session_factory: SessionFactory = get_session):
        self.session_factory = session_factory

    def upsert(self, payload: list[dict[str, Any]]) -> list[int]:
        with self.session_factory() as db:
            return repository.upsert_topics(db, payload)


class SqlRunHistory:
    def __init__(self, session_factory: SessionFactory = get_session):
        self.session_factory = session_factory

    def record(self, tenant: str, started_at: datetime, dry_run: bool, result) -> None:
        with self.session_factory() as db:
            repository.record_pipeline_run(
                db,
                company_id=tenant,
                started_at=started_at.astimezone(timezone.utc).replace(tzinfo=None),
                dry_run=dry_run,
                total_fetched=result.total_fetched,
                zero_order_passed=result.zero_order_passed,
                imported_count=result.imported_count,
                error_count=len(result.errors),
            )

    def last_run_at(self, tenant: str) -> Optional[datetime]:
        with self.session_factory() as db:
            run = repository.get_last_run(db, tenant)
            # Stored as naive UTC
            return run.started_at.replace(tzinfo=timezone.utc) if run else None
