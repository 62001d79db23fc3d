"""
app/ingestion/rows.py — Raw council-transcript rows entering the pipeline.

Takes loosely structured export records (dicts keyed by English or Japanese
column names) and returns clean, immutable RawCandidateRow models.
"""

import logging
import re
from typing import Any, Optional

from bs4 import BeautifulSoup
from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)


# ── Row schema ───────────────────────────────────────────────────────────────

class RawCandidateRow(BaseModel):
    """One transcript excerpt: where, when, what was said, and its video window."""

    model_config = ConfigDict(frozen=True)

    prefecture: str = ""                    # region
    city: str = ""                          # locality
    council_date: str = ""
    title: str = ""
    summary: str = ""
    questioner: str = ""
    answerer: str = ""
    source_url: str = ""
    group_id: str = ""                      # links the row to its subtitle track
    start_sec: int = 0
    end_sec: int = 0
    external_id: Optional[str] = None
    category: Optional[str] = None
    stance: Optional[str] = None

    @property
    def matching_text(self) -> str:
        """Title and summary joined; the text zero-order triage looks at."""
        return " ".join(p for p in (self.title, self.summary) if p)


# Accepted column names per field, first non-empty wins
FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "group_id": ("group_id", "グループid", "グループID"),
    "prefecture": ("prefecture", "region", "都道府県"),
    "city": ("city", "locality", "市町村", "市区町村"),
    "council_date": ("council_date", "meeting_date", "議会日付"),
    "title": ("title", "タイトル", "議題タイトル"),
    "summary": ("summary", "概要", "議題概要"),
    "questioner": ("questioner", "質問者"),
    "answerer": ("answerer", "回答者"),
    "source_url": ("source_url", "url", "ソースurl", "ソースURL"),
    "start_sec": ("start_sec", "開始秒数"),
    "end_sec": ("end_sec", "終了秒数"),
    "external_id": ("external_id", "議題id", "議題ID"),
    "category": ("category", "カテゴリ"),
    "stance": ("stance", "立場"),
}


# ── Helpers ──────────────────────────────────────────────────────────────────

def _strip_html(raw: str) -> str:
    """Remove HTML tags, decode entities and collapse whitespace."""
    if not raw:
        return ""
    if "<" not in raw and "&" not in raw:
        return re.sub(r"\s+", " ", raw).strip()
    soup = BeautifulSoup(raw, "lxml")
    text = soup.get_text(separator=" ")
    return re.sub(r"\s+", " ", text).strip()


def _normalize_key(key: str) -> str:
    return re.sub(r"\s+", "_", str(key).strip().lower())


def _pick(record: dict[str, Any], field: str) -> str:
    for alias in FIELD_ALIASES[field]:
        value = record.get(_normalize_key(alias))
        if value is not None and str(value).strip():
            return str(value).strip()
    return ""


def _parse_seconds(value: str) -> int:
    """Parse '125', '125.0' or '' into whole seconds."""
    if not value:
        return 0
    try:
        return max(0, int(float(value)))
    except ValueError:
        logger.debug("Unparseable seconds value %r, using 0.", value)
        return 0


# ── Main functions ───────────────────────────────────────────────────────────

def row_from_record(record: dict[str, Any]) -> RawCandidateRow | None:
    """
    Build a RawCandidateRow from one export record.

    Returns None if the record has neither a title nor a summary.
    """
    normalized = {_normalize_key(k): v for k, v in record.items() if k is not None}

    title = _strip_html(_pick(normalized, "title"))
    summary = _strip_html(_pick(normalized, "summary"))
    if not title and not summary:
        logger.debug("Skipping record %s — no title or summary.", record.get("group_id"))
        return None

    return RawCandidateRow(
        group_id=_pick(normalized, "group_id"),
        prefecture=_pick(normalized, "prefecture"),
        city=_pick(normalized, "city"),
        council_date=_pick(normalized, "council_date"),
        title=title,
        summary=summary,
        questioner=_pick(normalized, "questioner"),
        answerer=_pick(normalized, "answerer"),
        source_url=_pick(normalized, "source_url"),
        start_sec=_parse_seconds(_pick(normalized, "start_sec")),
        end_sec=_parse_seconds(_pick(normalized, "end_sec")),
        external_id=_pick(normalized, "external_id") or None,
        category=_pick(normalized, "category") or None,
        stance=_pick(normalized, "stance") or None,
    )


def rows_from_records(records: list[dict[str, Any]]) -> list[RawCandidateRow]:
    """Convert a batch of export records. Skips empty entries."""
    rows = []
    for record in records:
        row = row_from_record(record)
        if row:
            rows.append(row)

    logger.info("Parsed %d / %d records into candidate rows.", len(rows), len(records))
    return rows
