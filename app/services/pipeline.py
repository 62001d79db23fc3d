"""
app/services/pipeline.py — Business logic orchestrating the full
location filter → zero-order → first-order → AI rank → normalize → upsert pipeline.

This is the "glue" layer. Every stage failure is recorded in
PipelineResult.errors and the run continues with that stage's safe
fallback; run() always returns a result. Blocking store calls run in
worker threads so the event loop stays free.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

from pydantic import BaseModel, Field

from app.ai_engine.ranker import AIRanker, RankedResult, rank_distribution
from app.config import settings
from app.ingestion.filters import RuleStore, apply_location_filter
from app.ingestion.first_order import FirstOrderResult, run_first_order_filter
from app.ingestion.keywords import (
    KeywordCache,
    KeywordConfigBuilder,
    ServiceContext,
    ServiceKeywordConfig,
    default_keyword_config,
)
from app.ingestion.normalizer import NormalizedTopicRow, dedupe_topic_rows, normalize_result, to_upsert_payload
from app.ingestion.rows import RawCandidateRow
from app.ingestion.subtitles import SubtitleStore
from app.ingestion.zero_order import ZeroOrderResult, run_ai_zero_order_filter, run_zero_order_filter

logger = logging.getLogger(__name__)


# ── Collaborator interfaces ───────────────────────────────────────────────────

class ServiceCatalog(Protocol):
    def get_service_context(self, tenant: str) -> Optional[ServiceContext]: ...


class TopicStore(Protocol):
    def upsert(self, payload: list[dict[str, Any]]) -> list[int]: ...


class RunHistory(Protocol):
    def record(self, tenant: str, started_at: datetime, dry_run: bool, result: "PipelineResult") -> None: ...


# ── Result ────────────────────────────────────────────────────────────────────

class PipelineResult(BaseModel):
    total_fetched: int = 0
    included_count: Optional[int] = None
    excluded_count: Optional[int] = None
    zero_order_passed: int = 0
    first_order_processed: int = 0
    ai_ranked_count: Optional[int] = None
    ai_rank_distribution: Optional[dict[str, int]] = None
    c_rank_excluded: Optional[int] = None
    imported_count: int = 0
    errors: list[str] = Field(default_factory=list)


@dataclass
class PipelineOutcome:
    result: PipelineResult
    rows: list[NormalizedTopicRow] = field(default_factory=list)   # written, or would be in a dry run


# ── Orchestrator ──────────────────────────────────────────────────────────────

class LeadPipeline:
    """
    Runs every stage for one tenant over one batch of raw rows.

    All collaborators are optional. A missing one disables only the stage
    that needs it: no rule store → no location filtering, no judge → keyword
    triage and no AI ranking, no subtitle store → no evidence, no topic
    store → nothing written (reported as an error outside dry runs).
    """

    def __init__(
        self,
        rule_store: RuleStore | None = None,
        subtitle_store: SubtitleStore | None = None,
        judge=None,
        topic_store: TopicStore | None = None,
        service_catalog: ServiceCatalog | None = None,
        keyword_builder: KeywordConfigBuilder | None = None,
        run_history: RunHistory | None = None,
        ai_concurrency: int | None = None,
        zero_order_batch_size: int | None = None,
    ):
        self.rule_store = rule_store
        self.subtitle_store = subtitle_store
        self.judge = judge
        self.topic_store = topic_store
        self.service_catalog = service_catalog
        self.keyword_builder = keyword_builder or KeywordConfigBuilder(judge=judge)
        self.run_history = run_history
        self.ai_concurrency = ai_concurrency or settings.ai_rank_concurrency
        self.zero_order_batch_size = zero_order_batch_size or settings.zero_order_batch_size

    # ── Stage helpers ─────────────────────────────────────────────────────────

    def _fail(self, errors: list[str], stage: str, exc: Exception) -> None:
        msg = f"{stage} failed: {type(exc).__name__}: {exc}"
        logger.error(msg)
        errors.append(msg)

    async def _load_service(self, tenant: str, errors: list[str]) -> Optional[ServiceContext]:
        if self.service_catalog is None:
            return None
        try:
            return await asyncio.to_thread(self.service_catalog.get_service_context, tenant)
        except Exception as e:
            self._fail(errors, "Service lookup", e)
            return None

    async def _keyword_config(
        self,
        service: Optional[ServiceContext],
        errors: list[str],
    ) -> ServiceKeywordConfig:
        try:
            return await self.keyword_builder.build(service, errors)
        except Exception as e:
            self._fail(errors, "Keyword config", e)
            return default_keyword_config()

    async def _zero_order(
        self,
        rows: list[RawCandidateRow],
        tenant: str,
        config: ServiceKeywordConfig,
        service: Optional[ServiceContext],
        limit: int,
        use_ai: bool,
        errors: list[str],
    ) -> list[ZeroOrderResult]:
        if use_ai and service is not None and self.judge is not None:
            try:
                return await run_ai_zero_order_filter(
                    rows, service, self.judge,
                    limit=limit, tenant=tenant,
                    batch_size=self.zero_order_batch_size, errors=errors,
                )
            except Exception as e:
                self._fail(errors, "AI zero-order (falling back to keywords)", e)

        try:
            return run_zero_order_filter(rows, config, limit=limit, tenant=tenant)
        except Exception as e:
            self._fail(errors, "Zero-order", e)
            return []

    # ── Main entry point ──────────────────────────────────────────────────────

    async def run(
        self,
        rows: list[RawCandidateRow],
        tenant: str,
        keyword_config: ServiceKeywordConfig | None = None,
        limit: int = 0,
        first_order_limit: int | None = None,
        dry_run: bool = False,
        use_ai: bool = True,
    ) -> PipelineOutcome:
        """
        Run the full pipeline.

        Args:
            rows:              Raw candidate rows.
            tenant:            Tenant (company) id, part of every row key.
            keyword_config:    Skip keyword resolution and use this set.
            limit:             Zero-order cap (0 = every passing row).
            first_order_limit: Max rows sent to evidence extraction (0 = no cap).
            dry_run:           Compute everything, write nothing.
            use_ai:            False forces keyword triage and skips AI ranking.

        Returns:
            PipelineOutcome with statistics and the rows written (or to be written).
        """
        started_at = datetime.now(timezone.utc)
        if first_order_limit is None:
            first_order_limit = settings.first_order_limit

        outcome = await self._run(rows, tenant, keyword_config, limit, first_order_limit, dry_run, use_ai)

        if self.run_history is not None and not dry_run:
            try:
                await asyncio.to_thread(self.run_history.record, tenant, started_at, dry_run, outcome.result)
            except Exception as e:
                self._fail(outcome.result.errors, "Run history", e)

        return outcome

    async def _run(
        self,
        rows: list[RawCandidateRow],
        tenant: str,
        keyword_config: ServiceKeywordConfig | None,
        limit: int,
        first_order_limit: int,
        dry_run: bool,
        use_ai: bool,
    ) -> PipelineOutcome:
        result = PipelineResult(total_fetched=len(rows))
        errors = result.errors

        logger.info(
            "=== Pipeline start: tenant=%s rows=%d dry_run=%s ===", tenant, len(rows), dry_run,
        )

        # Step 0: service context and keyword set
        service = await self._load_service(tenant, errors)
        if keyword_config is None:
            keyword_config = await self._keyword_config(service, errors)
        logger.info("Keyword set: %s (search query: %s)", keyword_config.service_name, keyword_config.search_query())

        # Step 1: location allow/deny lists
        try:
            filtered = await asyncio.to_thread(apply_location_filter, rows, self.rule_store, tenant)
            candidates = filtered.passed
            result.included_count = filtered.included_count
            result.excluded_count = len(filtered.excluded)
            for row, reason in filtered.excluded[:5]:
                logger.info("  excluded %s %s: %s", row.prefecture, row.city, reason)
        except Exception as e:
            self._fail(errors, "Location filter (all rows passed)", e)
            candidates = list(rows)

        if not candidates:
            errors.append(f"All {len(rows)} rows were filtered out")
            logger.info("Nothing left after location filtering, stopping.")
            return PipelineOutcome(result=result)

        # Step 2: zero-order triage
        zero_results = await self._zero_order(candidates, tenant, keyword_config, service, limit, use_ai, errors)
        result.zero_order_passed = len(zero_results)

        if not zero_results:
            errors.append("No rows passed zero-order triage")
            logger.info("Nothing passed zero-order, stopping.")
            return PipelineOutcome(result=result)

        # Step 3: cap before the expensive subtitle fetches
        if first_order_limit > 0 and len(zero_results) > first_order_limit:
            logger.info("First-order cap: %d → top %d.", len(zero_results), first_order_limit)
            zero_results = zero_results[:first_order_limit]

        # Step 4: first-order evidence
        try:
            first_results = await asyncio.to_thread(
                run_first_order_filter, zero_results, keyword_config, self.subtitle_store, errors=errors,
            )
        except Exception as e:
            self._fail(errors, "First-order (continuing without evidence)", e)
            first_results = [FirstOrderResult(row=z.row, zero_order_score=z.score) for z in zero_results]
        result.first_order_processed = len(first_results)

        # Step 5: AI ranking
        ranked: list[RankedResult] | None = None
        if use_ai and self.judge is not None:
            ranker = AIRanker(self.judge, concurrency=self.ai_concurrency)
            try:
                ranked = await ranker.rank_all(first_results, service)
                errors.extend(ranker.errors)
                result.ai_ranked_count = len(ranked)
                result.ai_rank_distribution = rank_distribution(ranked)
            except Exception as e:
                self._fail(errors, "AI ranking (priority left at B)", e)
                ranked = None
        else:
            logger.info("No judgment service — AI ranking skipped.")

        # Step 6: normalize and dedup
        if ranked is not None:
            normalized = [normalize_result(r.first_order, tenant, r.ai_rank) for r in ranked]
        else:
            normalized = [normalize_result(r, tenant) for r in first_results]
        normalized = dedupe_topic_rows(normalized)

        # C-priority rows are counted, never written
        to_write = [row for row in normalized if row.priority != "C"]
        if ranked is not None:
            result.c_rank_excluded = len(normalized) - len(to_write)
            logger.info("C-rank rows left out of the write: %d", result.c_rank_excluded)

        # Step 7: write
        if dry_run:
            logger.info("Dry run — %d rows would be written.", len(to_write))
            return PipelineOutcome(result=result, rows=to_write)

        if self.topic_store is None:
            errors.append("Topic store is not configured; nothing was written")
            return PipelineOutcome(result=result, rows=to_write)

        try:
            ids = await asyncio.to_thread(self.topic_store.upsert, to_upsert_payload(to_write)) if to_write else []
            result.imported_count = len(ids)
        except Exception as e:
            self._fail(errors, "Topic upsert", e)
            return PipelineOutcome(result=result, rows=[])

        logger.info("=== Pipeline done: imported=%d errors=%d ===", result.imported_count, len(errors))
        return PipelineOutcome(result=result, rows=to_write)

    def run_sync(self, rows: list[RawCandidateRow], tenant: str, **kwargs) -> PipelineOutcome:
        """Blocking wrapper for scripts."""
        return asyncio.run(self.run(rows, tenant, **kwargs))


# ── Factory ───────────────────────────────────────────────────────────────────

# Shared by every pipeline built in this process so the TTL spans runs
_keyword_cache = KeywordCache()


def build_default_pipeline(use_ai: bool = True) -> LeadPipeline:
    """Wire the pipeline from settings. Unconfigured collaborators stay None."""
    from app.ai_engine.processor import build_judge
    from app.db.session import is_database_configured
    from app.ingestion.subtitles import build_subtitle_store

    judge = build_judge() if use_ai else None

    rule_store = topic_store = service_catalog = run_history = None
    if is_database_configured():
        from app.db.stores import SqlRuleStore, SqlRunHistory, SqlServiceCatalog, SqlTopicStore
        rule_store = SqlRuleStore()
        topic_store = SqlTopicStore()
        service_catalog = SqlServiceCatalog()
        run_history = SqlRunHistory()
    else:
        logger.info("DATABASE_URL not set — no rules, no service catalog, no writes.")

    return LeadPipeline(
        rule_store=rule_store,
        subtitle_store=build_subtitle_store(),
        judge=judge,
        topic_store=topic_store,
        service_catalog=service_catalog,
        keyword_builder=KeywordConfigBuilder(judge=judge, cache=_keyword_cache),
        run_history=run_history,
    )

