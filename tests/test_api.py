"""
tests/test_api.py — HTTP tests for the FastAPI app.

Dependencies are overridden with in-memory fakes and an in-memory SQLite
session, so no external service is touched.
"""

import pytest
from datetime import datetime, timezone
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from api.endpoints.pipeline_routes import get_pipeline, get_schedule_guard
from api.main import app
from app.config import settings
from app.db.models import Base
from app.db.session import get_db
from app.services.pipeline import LeadPipeline
from app.services.schedule_guard import ScheduleGuard
from fakes import FakeTopicStore

DAYTIME = datetime(2024, 6, 10, 3, 0, tzinfo=timezone.utc)      # 12:00 in Tokyo
NIGHT = datetime(2024, 6, 10, 14, 0, tzinfo=timezone.utc)       # 23:00 in Tokyo

RECORDS = [
    {
        "グループID": "g1", "都道府県": "神奈川県", "市町村": "横浜市",
        "タイトル": "alpha beta", "開始秒数": "100", "終了秒数": "160",
    },
    {"group_id": "g2", "title": "unrelated", "start_sec": "0", "end_sec": "10"},
]
KEYWORDS = {"must": ["alpha", "beta"], "should": ["budget"], "not": ["nope"]}


# ── Fixtures ──────────────────────────────────────────────────────────────────

@pytest.fixture
def topics():
    return FakeTopicStore()


@pytest.fixture
def client(topics):
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine, expire_on_commit=False)

    def _get_db():
        db = Session()
        try:
            yield db
            db.commit()
        finally:
            db.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_pipeline] = lambda: LeadPipeline(topic_store=topics)
    app.dependency_overrides[get_schedule_guard] = lambda: ScheduleGuard(
        quiet_hours_start=22, quiet_hours_end=7, timezone_name="Asia/Tokyo",
        min_interval_minutes=60, clock=lambda: DAYTIME,
    )
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    engine.dispose()


def _night_guard():
    return ScheduleGuard(quiet_hours_start=22, quiet_hours_end=7, timezone_name="Asia/Tokyo", clock=lambda: NIGHT)


# ── Health ────────────────────────────────────────────────────────────────────

def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["llm_configured"] is True
    assert body["database_configured"] is False


# ── Pipeline ──────────────────────────────────────────────────────────────────

class TestPipelineRoutes:
    def test_run_writes_rows(self, client, topics):
        response = client.post("/pipeline/run", json={
            "tenant": "acme", "records": RECORDS, "keyword_config": KEYWORDS,
        })

        assert response.status_code == 200
        body = response.json()
        assert body["result"]["total_fetched"] == 2
        assert body["result"]["zero_order_passed"] == 1
        assert body["result"]["imported_count"] == 1
        assert body["rows"][0]["company_row_key"] == "acme_g1_100_160"
        assert body["skipped"] is False
        assert len(topics.payloads) == 1

    def test_dry_run_writes_nothing(self, client, topics):
        response = client.post("/pipeline/run", json={
            "tenant": "acme", "records": RECORDS, "keyword_config": KEYWORDS, "dry_run": True,
        })
        assert response.json()["result"]["imported_count"] == 0
        assert len(response.json()["rows"]) == 1
        assert topics.payloads == []

    def test_invalid_request(self, client):
        response = client.post("/pipeline/run", json={"tenant": "", "records": []})
        assert response.status_code == 422

    def test_scheduled_run_allowed(self, client):
        response = client.post("/pipeline/scheduled-run", json={
            "tenant": "acme", "records": RECORDS, "keyword_config": KEYWORDS,
        })
        assert response.status_code == 200
        assert response.json()["result"]["imported_count"] == 1

    def test_scheduled_run_skipped_in_quiet_hours(self, client, topics):
        app.dependency_overrides[get_schedule_guard] = _night_guard

        response = client.post("/pipeline/scheduled-run", json={"tenant": "acme", "records": RECORDS})

        body = response.json()
        assert body["skipped"] is True
        assert "quiet hours" in body["skip_reason"]
        assert body["result"]["total_fetched"] == 0
        assert topics.payloads == []

    def test_scheduled_run_force(self, client):
        app.dependency_overrides[get_schedule_guard] = _night_guard

        response = client.post("/pipeline/scheduled-run", json={
            "tenant": "acme", "records": RECORDS, "keyword_config": KEYWORDS, "force": True,
        })
        assert response.json()["skipped"] is False

    def test_cron_secret_required(self, client, monkeypatch):
        monkeypatch.setattr(settings, "cron_secret", "s3cret")
        body = {"tenant": "acme", "records": RECORDS, "keyword_config": KEYWORDS}

        assert client.post("/pipeline/scheduled-run", json=body).status_code == 401
        assert client.post(
            "/pipeline/scheduled-run", json=body, headers={"Authorization": "Bearer wrong"},
        ).status_code == 401
        assert client.post(
            "/pipeline/scheduled-run", json=body, headers={"Authorization": "Bearer s3cret"},
        ).status_code == 200

    def test_schedule_status(self, client):
        response = client.get("/pipeline/schedule", params={"tenant": "acme"})
        body = response.json()
        assert body["allowed"] is True
        assert body["quiet_hours"] == "22:00-07:00"
        assert body["timezone"] == "Asia/Tokyo"
        assert body["min_interval_minutes"] == 60


# ── Rules ─────────────────────────────────────────────────────────────────────

class TestRuleRoutes:
    def test_exclusion_lifecycle(self, client):
        created = client.post("/rules/acme/exclusions", json={"city": "港区", "reason": "契約済み"})
        assert created.status_code == 201
        rule = created.json()
        assert rule["company_id"] == "acme"
        assert rule["reason"] == "契約済み"

        listed = client.get("/rules/acme/exclusions").json()
        assert [r["id"] for r in listed] == [rule["id"]]
        assert client.get("/rules/other/exclusions").json() == []

        assert client.delete(f"/rules/acme/exclusions/{rule['id']}").status_code == 200
        assert client.delete(f"/rules/acme/exclusions/{rule['id']}").status_code == 404

    def test_inclusion_lifecycle(self, client):
        created = client.post("/rules/acme/inclusions", json={"prefecture": "東京都", "memo": "重点"})
        assert created.status_code == 201
        rule_id = created.json()["id"]

        assert client.get("/rules/acme/inclusions").json()[0]["memo"] == "重点"
        assert client.delete(f"/rules/other/inclusions/{rule_id}").status_code == 404
        assert client.delete(f"/rules/acme/inclusions/{rule_id}").status_code == 200

    def test_rule_without_location_rejected(self, client):
        assert client.post("/rules/acme/exclusions", json={"reason": "x"}).status_code == 422
        assert client.post("/rules/acme/inclusions", json={"city": "  "}).status_code == 422
