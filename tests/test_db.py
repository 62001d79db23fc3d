"""
tests/test_db.py — Unit tests for the repository and database layer.

Uses an in-memory SQLite database (via SQLAlchemy) so no real Postgres
connection is required. Tests run fast and fully in isolation.

NOTE: conftest.py injects dummy env vars before any app module is imported,
preventing pydantic-settings from picking up a real DATABASE_URL.
"""

import pytest
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.models import Base, ServiceRecord, Topic
from app.db.repository import (
    add_exclusion,
    add_inclusion,
    count_topics,
    delete_exclusion,
    delete_inclusion,
    get_exclusions,
    get_inclusions,
    get_last_run,
    get_topic_by_key,
    record_pipeline_run,
    upsert_topics,
)
from app.db.stores import SqlRuleStore, SqlRunHistory, SqlServiceCatalog, SqlTopicStore
from app.ingestion.first_order import FirstOrderResult
from app.ingestion.normalizer import normalize_result, to_upsert_payload
from app.services.pipeline import PipelineResult


# ── In-memory DB Fixtures ─────────────────────────────────────────────────────

@pytest.fixture
def engine():
    # StaticPool keeps one connection, so every session sees the same in-memory DB
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    """Provide a fresh in-memory SQLite session for each test."""
    Session = sessionmaker(bind=engine, expire_on_commit=False)
    session = Session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def session_factory(engine):
    """Same contract as app.db.session.get_session, bound to the test engine."""
    Session = sessionmaker(bind=engine, expire_on_commit=False)

    @contextmanager
    def _factory():
        session = Session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    return _factory


def _payload(make_row, tenant="acme", **overrides):
    row = make_row(**overrides)
    result = FirstOrderResult(row=row, zero_order_score=8)
    return to_upsert_payload([normalize_result(result, tenant)])


# ── Topics ────────────────────────────────────────────────────────────────────

class TestTopicUpsert:
    def test_insert_sets_workflow_defaults(self, db, make_row):
        ids = upsert_topics(db, _payload(make_row, summary=""))
        db.commit()

        topic = get_topic_by_key(db, "acme_g1_100_160")
        assert ids == [topic.id]
        assert topic.status == "未着手"
        assert topic.dispatch_status == "NOT_SENT"
        assert topic.priority == "B"
        assert topic.summary is None        # empty string stored as NULL

    def test_upsert_is_idempotent(self, db, make_row):
        first = upsert_topics(db, _payload(make_row))
        second = upsert_topics(db, _payload(make_row))
        db.commit()

        assert first == second
        assert count_topics(db, "acme") == 1

    def test_conflict_updates_content_not_workflow(self, db, make_row):
        upsert_topics(db, _payload(make_row, title="old title"))
        db.commit()

        topic = get_topic_by_key(db, "acme_g1_100_160")
        topic.status = "対応中"
        topic.dispatch_status = "SENT"
        db.commit()

        upsert_topics(db, _payload(make_row, title="new title"))
        db.commit()
        db.expire_all()

        topic = get_topic_by_key(db, "acme_g1_100_160")
        assert topic.title == "new title"
        assert topic.status == "対応中"
        assert topic.dispatch_status == "SENT"

    def test_distinct_windows_are_distinct_topics(self, db, make_row):
        upsert_topics(db, _payload(make_row, start_sec=100, end_sec=160))
        upsert_topics(db, _payload(make_row, start_sec=200, end_sec=260))
        db.commit()
        assert count_topics(db, "acme") == 2

    def test_unknown_keys_ignored(self, db, make_row):
        payload = _payload(make_row)
        payload[0]["not_a_column"] = "x"
        assert len(upsert_topics(db, payload)) == 1

    def test_empty_payload(self, db):
        assert upsert_topics(db, []) == []


# ── Location rules ────────────────────────────────────────────────────────────

class TestLocationRules:
    def test_add_list_delete_exclusion(self, db):
        rule = add_exclusion(db, "acme", "神奈川県", "横浜市", reason="既存顧客")
        add_exclusion(db, "other", "東京都", None)
        db.commit()

        rules = get_exclusions(db, "acme")
        assert [(r.prefecture, r.city, r.reason) for r in rules] == [("神奈川県", "横浜市", "既存顧客")]

        assert delete_exclusion(db, "acme", rule.id) is True
        assert delete_exclusion(db, "acme", rule.id) is False
        assert get_exclusions(db, "acme") == []

    def test_delete_is_tenant_scoped(self, db):
        rule = add_inclusion(db, "acme", "東京都", None, memo="重点")
        db.commit()

        assert delete_inclusion(db, "other", rule.id) is False
        assert len(get_inclusions(db, "acme")) == 1

    def test_rule_store_maps_notes(self, db, session_factory):
        add_exclusion(db, "acme", None, "港区", reason="契約済み")
        add_inclusion(db, "acme", "東京都", None, memo="重点")
        db.commit()

        store = SqlRuleStore(session_factory=session_factory)
        exclusion = store.get_exclusion_rules("acme")[0]
        inclusion = store.get_inclusion_rules("acme")[0]

        assert (exclusion.prefecture, exclusion.city, exclusion.note) == (None, "港区", "契約済み")
        assert (inclusion.prefecture, inclusion.note) == ("東京都", "重点")


# ── Services ──────────────────────────────────────────────────────────────────

class TestServiceCatalog:
    def test_first_service_is_used(self, db, session_factory):
        db.add(ServiceRecord(company_id="acme", name="窓口DX", target_keywords="窓口"))
        db.add(ServiceRecord(company_id="acme", name="second"))
        db.commit()

        service = SqlServiceCatalog(session_factory=session_factory).get_service_context("acme")

        assert service.name == "窓口DX"
        assert service.target_keywords == "窓口"
        assert service.description == ""

    def test_no_service(self, session_factory):
        assert SqlServiceCatalog(session_factory=session_factory).get_service_context("acme") is None


# ── Stores ────────────────────────────────────────────────────────────────────

class TestTopicStore:
    def test_upsert_commits(self, db, make_row, session_factory):
        ids = SqlTopicStore(session_factory=session_factory).upsert(_payload(make_row))
        assert len(ids) == 1
        assert db.query(Topic).count() == 1


# ── Pipeline runs ─────────────────────────────────────────────────────────────

class TestRunHistory:
    def test_last_run_ignores_dry_runs(self, db):
        base = datetime(2024, 6, 10, 9, 0)
        record_pipeline_run(db, "acme", base, False, 10, 3, 2, 0)
        record_pipeline_run(db, "acme", base + timedelta(hours=1), True, 10, 3, 0, 0)
        db.commit()

        assert get_last_run(db, "acme").started_at == base
        assert get_last_run(db, "acme", include_dry_runs=True).started_at == base + timedelta(hours=1)
        assert get_last_run(db, "other") is None

    def test_store_round_trips_utc(self, session_factory):
        history = SqlRunHistory(session_factory=session_factory)
        started = datetime(2024, 6, 10, 18, 30, tzinfo=timezone(timedelta(hours=9)))
        result = PipelineResult(total_fetched=5, zero_order_passed=2, imported_count=1, errors=["x"])

        history.record("acme", started, False, result)

        last = history.last_run_at("acme")
        assert last == datetime(2024, 6, 10, 9, 30, tzinfo=timezone.utc)
        assert last.tzinfo is not None

    def test_store_without_history(self, session_factory):
        assert SqlRunHistory(session_factory=session_factory).last_run_at("acme") is None
