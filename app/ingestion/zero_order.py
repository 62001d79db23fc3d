"""
app/ingestion/zero_order.py — Zero-order triage, before any subtitle is fetched.

Two variants with the same output contract (passing rows, score-descending,
capped by limit where 0 means uncapped):

  run_zero_order_filter     — pure keyword scoring: must*4 + should*2 - not*10 + meta
  run_ai_zero_order_filter  — LLM answers three yes/no questions per row, in batches
"""

import logging
from dataclasses import dataclass
from typing import Any, Literal, Optional

from app.config import settings
from app.ingestion.keys import dedupe_rows
from app.ingestion.keywords import ServiceContext, ServiceKeywordConfig
from app.ingestion.rows import RawCandidateRow
from app.services.scoring import passes_zero_order, zero_order_score

logger = logging.getLogger(__name__)

# Score given to a row the LLM did not (or could not) judge; always passes
DEFAULT_AI_SCORE = 5


@dataclass(frozen=True)
class ZeroOrderResult:
    row: RawCandidateRow
    must_count: int
    should_count: int
    not_count: int
    meta_score: float
    score: float
    passed: bool
    variant: Literal["keyword", "ai"] = "keyword"


# ── Shared helpers ───────────────────────────────────────────────────────────

def _rank_and_cap(results: list[ZeroOrderResult], limit: int, label: str) -> list[ZeroOrderResult]:
    passed = [r for r in results if r.passed]
    # sorted() is stable: equal scores keep input order
    passed = sorted(passed, key=lambda r: r.score, reverse=True)
    top = passed[:limit] if limit > 0 else passed

    if limit > 0 and len(passed) > limit:
        logger.info("[%s] Capped %d passing rows to top %d.", label, len(passed), limit)

    if top:
        scores = [r.score for r in top]
        logger.info(
            "[%s] Score stats: max=%s min=%s avg=%.1f",
            label, max(scores), min(scores), sum(scores) / len(scores),
        )
    return top


# ── Keyword variant ──────────────────────────────────────────────────────────

def count_keywords(text: str, keywords: list[str]) -> int:
    """Number of distinct keywords present in text (case-insensitive substring)."""
    lowered = text.lower()
    return sum(1 for kw in keywords if kw and kw.lower() in lowered)


def score_row(row: RawCandidateRow, config: ServiceKeywordConfig) -> ZeroOrderResult:
    text = row.matching_text
    must = count_keywords(text, config.must)
    should = count_keywords(text, config.should)
    not_ = count_keywords(text, config.not_)
    score = zero_order_score(must, should, not_, config.meta)

    return ZeroOrderResult(
        row=row,
        must_count=must,
        should_count=should,
        not_count=not_,
        meta_score=config.meta,
        score=score,
        passed=passes_zero_order(must, should, score),
    )


def run_zero_order_filter(
    rows: list[RawCandidateRow],
    config: ServiceKeywordConfig,
    limit: int = 0,
    tenant: str = "",
) -> list[ZeroOrderResult]:
    """
    Keyword triage.

    Args:
        rows:   Candidate rows (deduplicated here by canonical key).
        config: The run's keyword set.
        limit:  Max rows returned; 0 returns every passing row.
        tenant: Tenant id, part of the dedup key.

    Returns:
        Passing ZeroOrderResults, score-descending.
    """
    unique = dedupe_rows(rows, tenant)
    if len(unique) < len(rows):
        logger.info("[zero-order] Dedup: %d → %d rows.", len(rows), len(unique))

    logger.info(
        "[zero-order] Scoring %d rows (must=%d should=%d not=%d meta=%s).",
        len(unique), len(config.must), len(config.should), len(config.not_), config.meta,
    )

    results = [score_row(row, config) for row in unique]
    top = _rank_and_cap(results, limit, "zero-order")
    logger.info("[zero-order] %d / %d rows passed.", len(top), len(unique))
    return top


# ── LLM variant ──────────────────────────────────────────────────────────────

def _default_ai_result(row: RawCandidateRow) -> ZeroOrderResult:
    return ZeroOrderResult(
        row=row,
        must_count=0,
        should_count=0,
        not_count=0,
        meta_score=0,
        score=DEFAULT_AI_SCORE,
        passed=True,
        variant="ai",
    )


def _as_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str) and value.strip().lower() in ("yes", "true"):
        return True
    if isinstance(value, str) and value.strip().lower() in ("no", "false"):
        return False
    return None


def interpret_ai_answer(row: RawCandidateRow, answer: Any) -> ZeroOrderResult:
    """
    Turn one {id, q1, q2, q3} answer into a result.

    Passes when any question is yes; score = yes_count*3 + 1.
    A malformed answer yields the default (score 5, passed).
    """
    if not isinstance(answer, dict):
        return _default_ai_result(row)

    flags = [_as_bool(answer.get(q)) for q in ("q1", "q2", "q3")]
    if any(f is None for f in flags):
        return _default_ai_result(row)

    yes_count = sum(flags)
    score = yes_count * 3 + 1
    return ZeroOrderResult(
        row=row,
        must_count=0,
        should_count=0,
        not_count=0,
        meta_score=0,
        score=score,
        passed=yes_count >= 1,
        variant="ai",
    )


def _answers_by_id(parsed: Any) -> dict[int, Any]:
    entries = parsed.get("results") if isinstance(parsed, dict) else parsed
    if not isinstance(entries, list):
        return {}

    by_id: dict[int, Any] = {}
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        try:
            by_id.setdefault(int(entry.get("id")), entry)
        except (TypeError, ValueError):
            continue
    return by_id


def format_topic_batch(batch: list[RawCandidateRow]) -> str:
    return "\n\n".join(
        f"[{i}] Title: {row.title or 'none'}\nSummary: {row.summary or 'none'}"
        for i, row in enumerate(batch, start=1)
    )


async def run_ai_zero_order_filter(
    rows: list[RawCandidateRow],
    service: ServiceContext,
    judge,
    limit: int = 0,
    tenant: str = "",
    batch_size: int | None = None,
    errors: list[str] | None = None,
) -> list[ZeroOrderResult]:
    """
    LLM triage, biased toward inclusion.

    Batches are judged one after another. A failed batch is not fatal:
    every row in it gets the default score and passes, and the failure
    is appended to `errors` when a list is given.
    """
    # Lazy import to avoid a cycle: processor imports from ingestion
    from app.ai_engine.processor import service_variables
    from app.ai_engine.prompt_templates import ZERO_ORDER_PROMPT

    batch_size = batch_size or settings.zero_order_batch_size
    unique = dedupe_rows(rows, tenant)
    if len(unique) < len(rows):
        logger.info("[ai-zero-order] Dedup: %d → %d rows.", len(rows), len(unique))

    logger.info("[ai-zero-order] Judging %d rows for service %s.", len(unique), service.name)

    base_vars = service_variables(service)
    results: list[ZeroOrderResult] = []

    for start in range(0, len(unique), batch_size):
        batch = unique[start:start + batch_size]
        try:
            parsed = await judge.judge(ZERO_ORDER_PROMPT, {**base_vars, "topics": format_topic_batch(batch)})
        except Exception as e:
            msg = f"AI zero-order batch {start // batch_size + 1} failed, defaulted {len(batch)} rows: {e}"
            logger.error(msg)
            if errors is not None:
                errors.append(msg)
            results.extend(_default_ai_result(row) for row in batch)
            continue

        answers = _answers_by_id(parsed)
        missing = 0
        for i, row in enumerate(batch, start=1):
            if i not in answers:
                missing += 1
            results.append(interpret_ai_answer(row, answers.get(i)))
        if missing:
            logger.warning("[ai-zero-order] %d rows had no answer, defaulted.", missing)

        logger.info("[ai-zero-order] Progress: %d/%d", min(start + batch_size, len(unique)), len(unique))

    top = _rank_and_cap(results, limit, "ai-zero-order")
    logger.info("[ai-zero-order] %d / %d rows passed.", len(top), len(unique))
    return top
