"""
app/ai_engine/ranker.py — Final S/A/B/C lead ranking.

Each first-order survivor is judged on title, summary, its evidence snippets,
the service context and its zero-order score. Up to `concurrency` judgments
run at once; results come back in input order regardless of finish order.

A judgment that fails for any reason becomes rank B / priority B / score 5:
the row is neither dropped nor promoted.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from app.ai_engine.processor import JudgmentParseError
from app.ai_engine.prompt_templates import AI_RANK_PROMPT
from app.ai_engine.utils import truncate_for_context
from app.config import settings
from app.ingestion.first_order import FirstOrderResult, format_time
from app.ingestion.keywords import ServiceContext
from app.services.scoring import VALID_RANKS, rank_to_priority

logger = logging.getLogger(__name__)

DEFAULT_REASONING = "judgment error, default applied"
MAX_SCORE = 12


@dataclass(frozen=True)
class AiRankResult:
    rank: str                       # S | A | B | C
    priority: str                   # A | B | C
    score: float                    # 0 – 12
    reasoning: str
    positive: tuple[str, ...] = field(default_factory=tuple)
    negative: tuple[str, ...] = field(default_factory=tuple)
    defaulted: bool = False


@dataclass(frozen=True)
class RankedResult:
    first_order: FirstOrderResult
    ai_rank: AiRankResult


def default_rank_result() -> AiRankResult:
    return AiRankResult(rank="B", priority="B", score=5, reasoning=DEFAULT_REASONING, defaulted=True)


def parse_rank_response(parsed: Any) -> AiRankResult:
    """
    Validate a rank judgment.

    Raises:
        JudgmentParseError: If the response is not an object with a valid rank.
    """
    if not isinstance(parsed, dict):
        raise JudgmentParseError(f"Expected a JSON object, got: {type(parsed).__name__}")

    rank = str(parsed.get("rank", "")).strip().upper()
    if rank not in VALID_RANKS:
        raise JudgmentParseError(f"Invalid rank: {parsed.get('rank')!r}")

    try:
        score = float(parsed.get("score", 0) or 0)
    except (TypeError, ValueError):
        score = 0.0
    score = min(max(score, 0), MAX_SCORE)

    key_points = parsed.get("keyPoints") or parsed.get("key_points") or {}
    if not isinstance(key_points, dict):
        key_points = {}

    def _points(name: str) -> tuple[str, ...]:
        values = key_points.get(name)
        return tuple(str(v) for v in values) if isinstance(values, list) else ()

    return AiRankResult(
        rank=rank,
        priority=rank_to_priority(rank),
        score=score,
        reasoning=str(parsed.get("reasoning") or ""),
        positive=_points("positive"),
        negative=_points("negative"),
    )


def format_evidence(result: FirstOrderResult) -> str:
    if not result.evidence_snippets:
        return "(no subtitle evidence)"
    lines = [f"[{format_time(s.start_sec)}] {s.text}" for s in result.evidence_snippets]
    return truncate_for_context("\n".join(lines), max_chars=4000)


def format_service_context(service: ServiceContext | None) -> str:
    if service is None:
        return "(no specific service; judge general willingness to adopt systems or services)"
    return (
        f"Name: {service.name}\n"
        f"Description: {truncate_for_context(service.description, max_chars=1000) or '(not set)'}\n"
        f"Problems it solves: {truncate_for_context(service.target_problems, max_chars=1000) or '(not set)'}\n"
        f"Keywords: {service.target_keywords or '(not set)'}"
    )


class AIRanker:
    """Bounded-concurrency S/A/B/C ranking over first-order results."""

    def __init__(
        self,
        judge,
        concurrency: int | None = None,
        on_progress: Optional[Callable[[int, int], None]] = None,
    ):
        self.judge = judge
        self.concurrency = concurrency or settings.ai_rank_concurrency
        self.on_progress = on_progress
        self.errors: list[str] = []

    async def rank_one(self, result: FirstOrderResult, service: ServiceContext | None) -> AiRankResult:
        row = result.row
        try:
            parsed = await self.judge.judge(AI_RANK_PROMPT, {
                "service_context": format_service_context(service),
                "title": row.title or "(none)",
                "summary": truncate_for_context(row.summary, max_chars=2000) or "(none)",
                "zero_order_score": result.zero_order_score,
                "evidence": format_evidence(result),
            })
            return parse_rank_response(parsed)
        except Exception as e:
            msg = f"AI rank failed for '{row.title[:40]}' ({type(e).__name__}), defaulted to B: {e}"
            logger.warning(msg)
            self.errors.append(msg)
            return default_rank_result()

    async def rank_all(
        self,
        results: list[FirstOrderResult],
        service: ServiceContext | None,
    ) -> list[RankedResult]:
        total = len(results)
        logger.info("[ai-rank] Ranking %d rows (concurrency=%d).", total, self.concurrency)

        semaphore = asyncio.Semaphore(self.concurrency)
        done = 0

        async def _rank(result: FirstOrderResult) -> AiRankResult:
            nonlocal done
            async with semaphore:
                rank = await self.rank_one(result, service)
            done += 1
            if self.on_progress:
                self.on_progress(done, total)
            if done % 10 == 0 or done == total:
                logger.info("[ai-rank] Progress: %d/%d", done, total)
            return rank

        # gather returns in argument order, not completion order
        ranks = await asyncio.gather(*(_rank(r) for r in results))
        ranked = [RankedResult(first_order=r, ai_rank=k) for r, k in zip(results, ranks)]

        logger.info("[ai-rank] Done: %s", rank_distribution(ranked))
        return ranked


def rank_distribution(ranked: list[RankedResult]) -> dict[str, int]:
    counts = {rank: 0 for rank in VALID_RANKS}
    for r in ranked:
        counts[r.ai_rank.rank] += 1
    return counts
