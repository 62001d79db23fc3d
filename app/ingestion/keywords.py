"""
app/ingestion/keywords.py — Per-service must/should/not keyword sets.

KeywordConfigBuilder resolves a ServiceKeywordConfig in three tiers:
  1. LLM-generated from the service description (cached with a TTL)
  2. heuristics over the service record's fields
  3. a static generic default when no service is registered
"""

import logging
import re
import time
from typing import Any, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.config import settings

logger = logging.getLogger(__name__)


# ── Models ───────────────────────────────────────────────────────────────────

class ServiceContext(BaseModel):
    """Service description used by keyword generation, AI triage and ranking."""

    id: str = ""
    name: str
    description: str = ""
    target_problems: str = ""
    target_keywords: str = ""


class ServiceKeywordConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    service_id: str = "default"
    service_name: str = "generic"
    must: list[str] = Field(default_factory=list)       # +4 each
    should: list[str] = Field(default_factory=list)     # +2 each
    not_: list[str] = Field(default_factory=list, alias="not")   # -10 each
    meta: float = 0                                     # flat bias

    def search_query(self, should_limit: int = 5) -> str:
        """All must keywords plus the first few should keywords, space-joined."""
        seen: dict[str, None] = {}
        for kw in [*self.must, *self.should[:should_limit]]:
            if kw:
                seen.setdefault(kw, None)
        return " ".join(seen)

    @property
    def evidence_keywords(self) -> list[str]:
        """Distinct must ∪ should keywords, in declaration order."""
        seen: dict[str, None] = {}
        for kw in [*self.must, *self.should]:
            if kw and kw.strip():
                seen.setdefault(kw, None)
        return list(seen)


GENERIC_SHOULD = ["DX", "システム", "導入", "予算", "来年度"]
GENERIC_NOT = ["導入済み", "稼働中", "契約済み", "入札終了"]


def default_keyword_config() -> ServiceKeywordConfig:
    """Generic set used when the tenant has no registered service."""
    return ServiceKeywordConfig(
        service_id="default",
        service_name="generic",
        must=["システム導入", "DX推進", "デジタル化", "業務改革"],
        should=["予算", "来年度", "新年度", "計画", "効率化", "自動化", "AI", "クラウド"],
        not_=["導入済み", "稼働中", "契約済み", "見送り", "時期尚早"],
        meta=0,
    )


def _tokens(text: str, punctuation: str, min_len: int, max_len: int) -> list[str]:
    cleaned = re.sub(f"[{punctuation}]", " ", text or "")
    return [w for w in cleaned.split() if min_len <= len(w) <= max_len]


def build_keyword_config_from_service(service: ServiceContext) -> ServiceKeywordConfig:
    """
    Heuristic keyword set from the service record, no LLM involved.

    target_keywords (comma separated): first 10 → must, rest → should.
    target_problems: first 5 tokens → must, rest → should.
    description: first 10 tokens of 2–10 chars → should.
    """
    keywords = [k for k in re.split(r"[,、\s]+", service.target_keywords or "") if k]
    problems = _tokens(service.target_problems, "。、・\n", 2, 15)
    description = _tokens(service.description, "。、", 2, 10)

    return ServiceKeywordConfig(
        service_id=service.id or "default",
        service_name=service.name,
        must=[*keywords[:10], *problems[:5]],
        should=[*keywords[10:], *problems[5:], *description[:10], *GENERIC_SHOULD],
        not_=list(GENERIC_NOT),
        meta=1,
    )


def keyword_config_from_llm(service: ServiceContext, parsed: Any) -> ServiceKeywordConfig:
    """
    Validate an LLM keyword response.

    Raises:
        ValueError: If the response is not an object with a non-empty must list.
    """
    if not isinstance(parsed, dict):
        raise ValueError(f"Expected a JSON object, got: {type(parsed).__name__}")

    def _clean(values: Any) -> list[str]:
        if not isinstance(values, list):
            return []
        return [str(v).strip() for v in values if v and str(v).strip()]

    must = _clean(parsed.get("must"))
    if not must:
        raise ValueError("Keyword response has no must keywords")

    return ServiceKeywordConfig(
        service_id=service.id or "default",
        service_name=service.name,
        must=must,
        should=_clean(parsed.get("should")),
        not_=_clean(parsed.get("not")),
        meta=0,
    )


# ── Cache ────────────────────────────────────────────────────────────────────

class KeywordCache:
    """
    Service-id → ServiceKeywordConfig with a time-to-live.

    The clock is injectable so expiry can be tested without sleeping.
    """

    def __init__(self, ttl_seconds: float | None = None, clock: Callable[[], float] = time.monotonic):
        if ttl_seconds is None:
            ttl_seconds = settings.keyword_cache_ttl_hours * 3600
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[ServiceKeywordConfig, float]] = {}

    def get(self, service_id: str) -> Optional[ServiceKeywordConfig]:
        entry = self._entries.get(service_id)
        if entry is None:
            return None
        config, stored_at = entry
        if self._clock() - stored_at >= self.ttl_seconds:
            del self._entries[service_id]
            return None
        return config

    def set(self, service_id: str, config: ServiceKeywordConfig) -> None:
        self._entries[service_id] = (config, self._clock())

    def clear(self, service_id: str | None = None) -> None:
        if service_id is None:
            self._entries.clear()
        else:
            self._entries.pop(service_id, None)

    def stats(self) -> dict[str, Any]:
        return {"size": len(self._entries), "services": list(self._entries)}


# ── Builder ──────────────────────────────────────────────────────────────────

class KeywordConfigBuilder:
    """Resolve the keyword set for one pipeline run."""

    def __init__(self, judge=None, cache: KeywordCache | None = None):
        self.judge = judge
        self.cache = cache if cache is not None else KeywordCache()

    async def build(
        self,
        service: ServiceContext | None,
        errors: list[str] | None = None,
    ) -> ServiceKeywordConfig:
        """A failed generation falls back to service fields and is appended to `errors`."""
        if service is None:
            logger.info("No service registered, using the generic keyword set.")
            return default_keyword_config()

        cache_key = service.id or service.name
        cached = self.cache.get(cache_key)
        if cached is not None:
            logger.info("Keyword cache hit for service %s.", service.name)
            return cached

        if self.judge is not None:
            # Lazy import keeps ingestion importable without the LLM stack configured
            from app.ai_engine.processor import generate_keyword_config
            try:
                config = await generate_keyword_config(self.judge, service)
                self.cache.set(cache_key, config)
                return config
            except Exception as e:
                msg = f"Keyword generation failed for {service.name}, using service fields: {type(e).__name__}: {e}"
                logger.warning(msg)
                if errors is not None:
                    errors.append(msg)

        config = build_keyword_config_from_service(service)
        logger.info(
            "Built keyword set from service fields: must=%d should=%d not=%d.",
            len(config.must), len(config.should), len(config.not_),
        )
        return config
