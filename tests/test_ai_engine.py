"""
tests/test_ai_engine.py — Unit tests for the AI engine layer.

Tests helpers, response parsing and the ranker WITHOUT making real LLM API
calls. The judge runs against LangChain's fake chat model or tests/fakes.py.
"""

import asyncio
import pytest
from unittest.mock import MagicMock, patch

from langchain_core.language_models.fake_chat_models import FakeListChatModel
from langchain_core.runnables import RunnableLambda

from app.ai_engine.processor import (
    JudgmentParseError,
    JudgmentUnavailableError,
    OpenRouterJudge,
    build_judge,
    generate_keyword_config,
    service_variables,
)
from app.ai_engine.prompt_templates import AI_RANK_PROMPT, KEYWORD_GENERATION_PROMPT
from app.ai_engine.ranker import (
    DEFAULT_REASONING,
    AIRanker,
    format_evidence,
    format_service_context,
    parse_rank_response,
    rank_distribution,
)
from app.ai_engine.utils import parse_json_safely, truncate_for_context
from app.config import settings
from app.ingestion.first_order import EvidenceSnippet, FirstOrderResult
from app.ingestion.keywords import ServiceContext
from app.services.scoring import passes_zero_order, rank_to_priority, zero_order_score
from fakes import FakeJudge


SERVICE = ServiceContext(
    id="svc-1",
    name="窓口DX",
    description="自治体窓口のオンライン化を支援するクラウドサービス",
    target_problems="窓口の混雑",
    target_keywords="窓口,オンライン申請",
)


def _first_order(make_row, title="議題", snippets=()):
    return FirstOrderResult(
        row=make_row(title=title, group_id=title),
        zero_order_score=8,
        evidence_snippets=tuple(snippets),
        has_subtitle=bool(snippets),
    )


# ── parse_json_safely ─────────────────────────────────────────────────────────

class TestParseJsonSafely:
    def test_parses_clean_json_object(self):
        assert parse_json_safely('{"rank": "A", "score": 9}') == {"rank": "A", "score": 9}

    def test_parses_clean_json_array(self):
        assert parse_json_safely('[{"id": 1, "q1": true}]') == [{"id": 1, "q1": True}]

    def test_strips_markdown_code_fence(self):
        assert parse_json_safely('```json\n{"key": "value"}\n```') == {"key": "value"}

    def test_strips_plain_code_fence(self):
        assert parse_json_safely('```\n{"key": "value"}\n```') == {"key": "value"}

    def test_extracts_json_from_surrounding_text(self):
        assert parse_json_safely('Here is the result:\n{"score": 7}\nDone.') == {"score": 7}

    def test_returns_none_for_invalid_json(self):
        assert parse_json_safely("This is not JSON at all.") is None

    def test_returns_none_for_empty_string(self):
        assert parse_json_safely("") is None

    def test_returns_none_for_none(self):
        assert parse_json_safely(None) is None


# ── truncate_for_context ──────────────────────────────────────────────────────

class TestTruncateForContext:
    def test_short_string_unchanged(self):
        assert truncate_for_context("Short text", max_chars=100) == "Short text"

    def test_long_string_truncated(self):
        result = truncate_for_context("a" * 3000, max_chars=2000)
        assert len(result) == 2003  # 2000 chars + "..."
        assert result.endswith("...")

    def test_exact_length_unchanged(self):
        text = "a" * 2000
        assert truncate_for_context(text, max_chars=2000) == text

    def test_none_returns_empty(self):
        assert truncate_for_context(None, max_chars=100) == ""


# ── scoring ───────────────────────────────────────────────────────────────────

class TestScoring:
    def test_score_formula(self):
        assert zero_order_score(2, 1, 0) == 10
        assert zero_order_score(1, 0, 1, meta=1) == -5

    def test_must_route(self):
        assert passes_zero_order(1, 0, 8) is True
        assert passes_zero_order(1, 0, 7) is False

    def test_should_route(self):
        assert passes_zero_order(0, 3, 7) is True
        assert passes_zero_order(0, 2, 7) is False

    @pytest.mark.parametrize("rank,priority", [("S", "A"), ("A", "A"), ("B", "B"), ("C", "C")])
    def test_rank_to_priority(self, rank, priority):
        assert rank_to_priority(rank) == priority

    def test_unknown_rank_rejected(self):
        with pytest.raises(ValueError):
            rank_to_priority("D")


# ── OpenRouterJudge ───────────────────────────────────────────────────────────

class TestOpenRouterJudge:
    def test_returns_parsed_json(self):
        llm = FakeListChatModel(responses=['```json\n{"must": ["窓口"], "should": [], "not": []}\n```'])
        judge = OpenRouterJudge(llm=llm)

        parsed = asyncio.run(judge.judge(KEYWORD_GENERATION_PROMPT, service_variables(SERVICE)))

        assert parsed == {"must": ["窓口"], "should": [], "not": []}

    def test_unparseable_answer_raises_parse_error(self):
        judge = OpenRouterJudge(llm=FakeListChatModel(responses=["Sorry, I cannot help."]))
        with pytest.raises(JudgmentParseError):
            asyncio.run(judge.judge(KEYWORD_GENERATION_PROMPT, service_variables(SERVICE)))

    def test_request_failure_raises_unavailable(self):
        def _down(_):
            raise ConnectionError("connection refused")

        judge = OpenRouterJudge(llm=RunnableLambda(_down))
        with pytest.raises(JudgmentUnavailableError, match="ConnectionError"):
            asyncio.run(judge.judge(KEYWORD_GENERATION_PROMPT, service_variables(SERVICE)))

    @patch("app.ai_engine.processor.build_openrouter_llm")
    def test_build_judge_with_key(self, mock_build_llm):
        mock_build_llm.return_value = MagicMock()
        assert isinstance(build_judge(), OpenRouterJudge)

    def test_build_judge_without_key(self, monkeypatch):
        monkeypatch.setattr(settings, "openrouter_api_key", None)
        assert build_judge() is None

    def test_service_variables_fill_blanks(self):
        variables = service_variables(ServiceContext(name="x"))
        assert variables["service_description"] == "(not set)"
        assert variables["target_keywords"] == "(not set)"


class TestGenerateKeywordConfig:
    def test_builds_config_from_answer(self):
        judge = FakeJudge(keywords={"must": ["窓口", " "], "should": ["オンライン"], "not": ["導入済み"]})
        config = asyncio.run(generate_keyword_config(judge, SERVICE))

        assert config.service_id == "svc-1"
        assert config.must == ["窓口"]
        assert config.not_ == ["導入済み"]
        assert judge.calls[0][1]["service_name"] == "窓口DX"

    def test_non_object_answer_is_parse_error(self):
        judge = FakeJudge(keywords=["窓口"])
        with pytest.raises(JudgmentParseError):
            asyncio.run(generate_keyword_config(judge, SERVICE))


# ── Rank parsing ──────────────────────────────────────────────────────────────

class TestParseRankResponse:
    def test_valid_response(self):
        result = parse_rank_response({
            "rank": "s",
            "score": 11,
            "reasoning": "予算計上済み",
            "keyPoints": {"positive": ["来年度予算"], "negative": []},
        })
        assert result.rank == "S"
        assert result.priority == "A"
        assert result.score == 11
        assert result.positive == ("来年度予算",)
        assert result.defaulted is False

    def test_score_clamped(self):
        assert parse_rank_response({"rank": "A", "score": 40}).score == 12
        assert parse_rank_response({"rank": "A", "score": -3}).score == 0

    def test_non_numeric_score_becomes_zero(self):
        assert parse_rank_response({"rank": "B", "score": "high"}).score == 0

    def test_invalid_rank_rejected(self):
        with pytest.raises(JudgmentParseError):
            parse_rank_response({"rank": "D", "score": 5})

    def test_non_object_rejected(self):
        with pytest.raises(JudgmentParseError):
            parse_rank_response(["S"])


# ── AIRanker ──────────────────────────────────────────────────────────────────

class SlowJudge:
    """Answers by title after a title-dependent delay; tracks peak concurrency."""

    def __init__(self, ranks, delays):
        self.ranks = ranks
        self.delays = delays
        self.active = 0
        self.peak = 0

    async def judge(self, prompt, variables):
        self.active += 1
        self.peak = max(self.peak, self.active)
        await asyncio.sleep(self.delays[variables["title"]])
        self.active -= 1
        rank = self.ranks[variables["title"]]
        if isinstance(rank, Exception):
            raise rank
        return {"rank": rank, "score": 6, "reasoning": f"rank {rank}"}


class TestAIRanker:
    def test_results_keep_input_order(self, make_row):
        titles = ["t1", "t2", "t3", "t4"]
        judge = SlowJudge(
            ranks={"t1": "S", "t2": "A", "t3": "B", "t4": "C"},
            delays={"t1": 0.04, "t2": 0.01, "t3": 0.03, "t4": 0.0},
        )
        ranker = AIRanker(judge, concurrency=2)

        ranked = asyncio.run(ranker.rank_all([_first_order(make_row, t) for t in titles], SERVICE))

        assert [r.first_order.row.title for r in ranked] == titles
        assert [r.ai_rank.rank for r in ranked] == ["S", "A", "B", "C"]
        assert judge.peak <= 2
        assert rank_distribution(ranked) == {"S": 1, "A": 1, "B": 1, "C": 1}

    def test_failure_defaults_to_b(self, make_row):
        judge = SlowJudge(
            ranks={"ok": "S", "bad": JudgmentUnavailableError("HTTP 503")},
            delays={"ok": 0, "bad": 0},
        )
        ranker = AIRanker(judge, concurrency=3)

        ranked = asyncio.run(ranker.rank_all([_first_order(make_row, "ok"), _first_order(make_row, "bad")], SERVICE))

        bad = ranked[1].ai_rank
        assert (bad.rank, bad.priority, bad.score) == ("B", "B", 5)
        assert bad.reasoning == DEFAULT_REASONING
        assert bad.defaulted is True
        assert ranked[0].ai_rank.rank == "S"
        assert len(ranker.errors) == 1

    def test_malformed_answer_defaults_to_b(self, make_row):
        ranker = AIRanker(FakeJudge(rank={"rank": "Z"}), concurrency=1)
        result = asyncio.run(ranker.rank_one(_first_order(make_row), None))
        assert result.rank == "B"
        assert result.defaulted is True

    def test_progress_callback(self, make_row):
        progress = []
        ranker = AIRanker(FakeJudge(rank={"rank": "A", "score": 9}), concurrency=2,
                          on_progress=lambda done, total: progress.append((done, total)))

        asyncio.run(ranker.rank_all([_first_order(make_row, f"t{i}") for i in range(3)], None))

        assert progress == [(1, 3), (2, 3), (3, 3)]

    def test_prompt_variables(self, make_row):
        judge = FakeJudge(rank={"rank": "A", "score": 9})
        snippet = EvidenceSnippet("DX推進計画を策定中です", 120, 130, ("DX推進",))
        ranker = AIRanker(judge, concurrency=1)

        asyncio.run(ranker.rank_one(_first_order(make_row, "議題", [snippet]), SERVICE))

        variables = judge.calls_for(AI_RANK_PROMPT)[0]
        assert variables["evidence"] == "[00:02:00] DX推進計画を策定中です"
        assert variables["zero_order_score"] == 8
        assert "窓口DX" in variables["service_context"]

    def test_formatters_without_inputs(self, make_row):
        assert format_evidence(_first_order(make_row)) == "(no subtitle evidence)"
        assert format_service_context(None).startswith("(no specific service")

    def test_rank_prompt_renders(self):
        messages = AI_RANK_PROMPT.format_messages(
            service_context="ctx", title="窓口改善", summary="s", zero_order_score=8, evidence="e",
        )
        assert "Title: 窓口改善" in messages[-1].content
        assert '"keyPoints"' in messages[-1].content
