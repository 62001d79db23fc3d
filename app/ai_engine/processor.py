"""
app/ai_engine/processor.py — The judgment service behind every LLM stage.

OpenRouterJudge runs a prompt template through the OpenRouter chat model and
returns parsed JSON. Callers decide their own fallbacks; the judge only
tells them which way it failed:

  JudgmentUnavailableError — the request itself failed (network, HTTP, client)
  JudgmentParseError       — the model answered, but not with usable JSON
"""

import logging
from typing import Any, Protocol

from langchain_core.prompts import ChatPromptTemplate

from app.ai_engine.prompt_templates import KEYWORD_GENERATION_PROMPT
from app.ai_engine.utils import build_openrouter_llm, is_llm_configured, parse_json_safely, truncate_for_context
from app.ingestion.keywords import ServiceContext, ServiceKeywordConfig, keyword_config_from_llm

logger = logging.getLogger(__name__)


# ── Errors ────────────────────────────────────────────────────────────────────

class JudgmentError(Exception):
    """Base class for judgment-service failures."""


class JudgmentUnavailableError(JudgmentError):
    """The judgment service could not be reached or rejected the request."""


class JudgmentParseError(JudgmentError):
    """The judgment service responded with something that is not the expected JSON."""


# ── Judge ─────────────────────────────────────────────────────────────────────

class Judge(Protocol):
    async def judge(self, prompt: ChatPromptTemplate, variables: dict[str, Any]) -> Any: ...


class OpenRouterJudge:
    """LangChain chain runner returning parsed JSON."""

    def __init__(self, temperature: float = 0.1, max_tokens: int | None = None, llm=None):
        self.llm = llm if llm is not None else build_openrouter_llm(temperature=temperature, max_tokens=max_tokens)

    async def judge(self, prompt: ChatPromptTemplate, variables: dict[str, Any]) -> Any:
        chain = prompt | self.llm
        try:
            response = await chain.ainvoke(variables)
        except Exception as e:
            raise JudgmentUnavailableError(f"{type(e).__name__}: {e}") from e

        raw_text = response.content if hasattr(response, "content") else str(response)
        parsed = parse_json_safely(raw_text)
        if parsed is None:
            raise JudgmentParseError(f"Unparseable response: {raw_text[:200]}")
        return parsed


def build_judge() -> OpenRouterJudge | None:
    """Return a judge, or None when no OpenRouter key is configured."""
    if not is_llm_configured():
        logger.info("OPENROUTER_API_KEY not set — LLM stages disabled.")
        return None
    return OpenRouterJudge()


def service_variables(service: ServiceContext) -> dict[str, str]:
    """Prompt variables shared by every service-aware template."""
    return {
        "service_name": service.name,
        "service_description": truncate_for_context(service.description, max_chars=1000) or "(not set)",
        "target_problems": truncate_for_context(service.target_problems, max_chars=1000) or "(not set)",
        "target_keywords": service.target_keywords or "(not set)",
    }


# ── Keyword Generation ────────────────────────────────────────────────────────

async def generate_keyword_config(judge: Judge, service: ServiceContext) -> ServiceKeywordConfig:
    """
    Ask the LLM for a must/should/not keyword set for the service.

    Raises:
        JudgmentError: If the service fails or answers with unusable JSON.
    """
    logger.info("Generating keyword set for service: %s", service.name)

    parsed = await judge.judge(KEYWORD_GENERATION_PROMPT, service_variables(service))
    try:
        config = keyword_config_from_llm(service, parsed)
    except ValueError as e:
        raise JudgmentParseError(str(e)) from e

    logger.info(
        "Generated keywords for %s: must=%s should=%d not=%d",
        service.name, config.must, len(config.should), len(config.not_),
    )
    return config
