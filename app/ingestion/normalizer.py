"""
app/ingestion/normalizer.py — Renders pipeline survivors into storage-ready topic rows.

Takes first-order results (optionally with an AI rank) and returns
NormalizedTopicRow models keyed by the canonical company_row_key.
"""

import logging
from typing import Any, Optional

from pydantic import BaseModel

from app.ingestion.first_order import EvidenceSnippet, FirstOrderResult, format_time
from app.ingestion.keys import compute_row_key, dedupe_by_key

logger = logging.getLogger(__name__)

DEFAULT_STATUS = "未着手"
DEFAULT_DISPATCH_STATUS = "NOT_SENT"
DEFAULT_PRIORITY = "B"


# ── Output schema ─────────────────────────────────────────────────────────────

class NormalizedTopicRow(BaseModel):
    company_id: str
    company_row_key: str
    prefecture: str = ""
    city: str = ""
    council_date: str = ""
    title: str = ""
    summary: str = ""
    questioner: str = ""
    answerer: str = ""
    source_url: str = ""
    group_id: str = ""
    start_sec: int = 0
    end_sec: int = 0
    excerpt_text: str = ""          # time-sorted evidence snippets
    excerpt_range: str = ""         # "HH:MM:SS - HH:MM:SS (N snippets)"
    external_id: Optional[str] = None
    category: Optional[str] = None
    stance: Optional[str] = None
    priority: str = DEFAULT_PRIORITY
    ai_rank: Optional[str] = None
    ai_score: Optional[float] = None
    ai_reasoning: Optional[str] = None


# ── Rendering ─────────────────────────────────────────────────────────────────

def format_excerpt_text(snippets: tuple[EvidenceSnippet, ...] | list[EvidenceSnippet]) -> str:
    """'[HH:MM:SS] text (matched: k1, k2)' per snippet, time-sorted, blank-line separated."""
    ordered = sorted(snippets, key=lambda s: s.start_sec)
    return "\n\n".join(
        f"[{format_time(s.start_sec)}] {s.text} (matched: {', '.join(s.matched_keywords)})"
        for s in ordered
    )


def format_excerpt_range(snippets: tuple[EvidenceSnippet, ...] | list[EvidenceSnippet]) -> str:
    if not snippets:
        return ""
    first = min(s.start_sec for s in snippets)
    last = max(s.end_sec for s in snippets)
    return f"{format_time(first)} - {format_time(last)} ({len(snippets)} snippets)"


def normalize_result(result: FirstOrderResult, tenant: str, ai_rank=None) -> NormalizedTopicRow:
    """
    Build a NormalizedTopicRow from one first-order result.

    ai_rank is an AiRankResult or None; without it priority stays B.
    """
    row = result.row
    fields = row.model_dump()

    return NormalizedTopicRow(
        **fields,
        company_id=tenant,
        company_row_key=compute_row_key(tenant, row),
        excerpt_text=format_excerpt_text(result.evidence_snippets),
        excerpt_range=format_excerpt_range(result.evidence_snippets),
        priority=ai_rank.priority if ai_rank else DEFAULT_PRIORITY,
        ai_rank=ai_rank.rank if ai_rank else None,
        ai_score=ai_rank.score if ai_rank else None,
        ai_reasoning=ai_rank.reasoning if ai_rank else None,
    )


def dedupe_topic_rows(rows: list[NormalizedTopicRow]) -> list[NormalizedTopicRow]:
    """Keep the first row per company_row_key."""
    unique = dedupe_by_key(rows, lambda r: r.company_row_key)
    if len(unique) < len(rows):
        logger.info("[normalizer] Dedup: %d → %d rows.", len(rows), len(unique))
    return unique


def to_upsert_payload(rows: list[NormalizedTopicRow]) -> list[dict[str, Any]]:
    """
    Convert rows to dicts for the topics upsert.

    Empty strings become None. New rows start as 未着手 / NOT_SENT; the
    repository never overwrites those two columns on conflict.
    """
    payload = []
    for row in rows:
        record = {k: (v if v != "" else None) for k, v in row.model_dump().items()}
        record["status"] = DEFAULT_STATUS
        record["dispatch_status"] = DEFAULT_DISPATCH_STATUS
        payload.append(record)
    return payload
