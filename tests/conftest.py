"""
tests/conftest.py — Shared pytest configuration and fixtures.

Sets dummy environment variables BEFORE any app module is imported,
so settings load predictably. Fake collaborators live in tests/fakes.py so no
test ever reaches OpenRouter, a subtitle server or a real database.
"""

import os
import pytest

# ── Set dummy env vars before any app module is imported ─────────────────────
# This runs at collection time, before tests execute.
os.environ.setdefault("OPENROUTER_API_KEY", "test-key")
os.environ.setdefault("OPENROUTER_MODEL", "test-model")
os.environ.pop("DATABASE_URL", None)
os.environ.pop("SUBTITLE_BASE_URL", None)
os.environ.pop("SUBTITLE_DIR", None)
os.environ.pop("CRON_SECRET", None)

from app.ingestion.rows import RawCandidateRow  # noqa: E402


# ── Fixtures ──────────────────────────────────────────────────────────────────

@pytest.fixture
def make_row():
    """Factory for RawCandidateRow with sensible defaults."""
    def _make(**overrides):
        fields = {
            "prefecture": "神奈川県",
            "city": "横浜市",
            "council_date": "2024-06-10",
            "title": "議題",
            "summary": "",
            "group_id": "g1",
            "start_sec": 100,
            "end_sec": 160,
        }
        fields.update(overrides)
        return RawCandidateRow(**fields)
    return _make


@pytest.fixture
def srt_text():
    """Subtitle with segments at [50,60], [65,75], [120,130] and [300,310]."""
    return (
        "1\n00:00:50,000 --> 00:01:00,000\nデジタル化について質問します\n\n"
        "2\n00:01:05,000 --> 00:01:15,000\nシステム導入の予算を来年度に計上します\n\n"
        "3\n00:02:00,000 --> 00:02:10,000\nDX推進計画を策定中です\n\n"
        "4\n00:05:00,000 --> 00:05:10,000\nシステム導入は範囲外\n"
    )
