"""
app/ingestion/first_order.py — First-order evidence extraction.

For each zero-order survivor, pull the subtitle segments around its time
window (±30 s by default), keep the ones mentioning a must/should keyword,
and attach up to 10 of them as evidence. Only the selected snippets travel
downstream, never the full transcript range.

A missing subtitle is a degraded case: the row passes with no evidence.
Fetch failures are additionally reported through the caller's error list.
"""

import logging
from dataclasses import dataclass, field

from app.config import settings
from app.ingestion.keywords import ServiceKeywordConfig
from app.ingestion.rows import RawCandidateRow
from app.ingestion.subtitles import SubtitleCache, SubtitleSegment, SubtitleStore, parse_srt
from app.ingestion.zero_order import ZeroOrderResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EvidenceSnippet:
    text: str
    start_sec: float
    end_sec: float
    matched_keywords: tuple[str, ...]


@dataclass(frozen=True)
class FirstOrderResult:
    row: RawCandidateRow
    zero_order_score: float
    evidence_snippets: tuple[EvidenceSnippet, ...] = field(default_factory=tuple)
    has_subtitle: bool = False


def format_time(seconds: float) -> str:
    """83.4 → '00:01:23'"""
    total = int(max(0, seconds))
    h, rem = divmod(total, 3600)
    m, s = divmod(rem, 60)
    return f"{h:02d}:{m:02d}:{s:02d}"


def segments_in_window(
    segments: list[SubtitleSegment],
    start_sec: float,
    end_sec: float,
    padding_sec: float = 30,
) -> list[SubtitleSegment]:
    """
    Segments overlapping [start - padding, end + padding], lower bound clamped at 0.

    Both bounds are inclusive: a segment ending exactly at start - padding is kept.
    """
    range_start = max(0, start_sec - padding_sec)
    range_end = end_sec + padding_sec
    return [seg for seg in segments if seg.end_sec >= range_start and seg.start_sec <= range_end]


def select_snippets(
    segments: list[SubtitleSegment],
    keywords: list[str],
    max_snippets: int = 10,
) -> list[EvidenceSnippet]:
    """
    Keep segments matching at least one keyword, most distinct matches first.

    Ties keep subtitle order.
    """
    lowered = [(kw, kw.lower()) for kw in keywords if kw]
    snippets = []

    for seg in segments:
        text = seg.text.lower()
        matched = tuple(kw for kw, low in lowered if low in text)
        if matched:
            snippets.append(EvidenceSnippet(
                text=seg.text,
                start_sec=seg.start_sec,
                end_sec=seg.end_sec,
                matched_keywords=matched,
            ))

    snippets.sort(key=lambda s: len(s.matched_keywords), reverse=True)
    return snippets[:max_snippets]


def _no_evidence(result: ZeroOrderResult) -> FirstOrderResult:
    return FirstOrderResult(row=result.row, zero_order_score=result.score)


def extract_evidence(
    result: ZeroOrderResult,
    config: ServiceKeywordConfig,
    subtitles: SubtitleCache | None,
    padding_sec: float | None = None,
    max_snippets: int | None = None,
    errors: list[str] | None = None,
) -> FirstOrderResult:
    """
    Attach evidence snippets to a single zero-order survivor.

    A fetch failure is appended to `errors` when a list is given.
    """
    row = result.row
    if not row.group_id or subtitles is None:
        return _no_evidence(result)

    padding_sec = settings.evidence_padding_sec if padding_sec is None else padding_sec
    max_snippets = max_snippets or settings.max_evidence_snippets

    try:
        content = subtitles.get(row.group_id)
    except Exception as e:
        msg = f"Subtitle fetch failed for group {row.group_id}: {type(e).__name__}: {e}"
        logger.error(msg)
        if errors is not None and msg not in errors:
            errors.append(msg)
        return _no_evidence(result)

    if not content:
        logger.debug("No subtitle for group %s.", row.group_id)
        return _no_evidence(result)

    window = segments_in_window(parse_srt(content), row.start_sec, row.end_sec, padding_sec)
    snippets = select_snippets(window, config.evidence_keywords, max_snippets)

    return FirstOrderResult(
        row=row,
        zero_order_score=result.score,
        evidence_snippets=tuple(snippets),
        has_subtitle=True,
    )


def run_first_order_filter(
    results: list[ZeroOrderResult],
    config: ServiceKeywordConfig,
    store: SubtitleStore | None,
    padding_sec: float | None = None,
    max_snippets: int | None = None,
    errors: list[str] | None = None,
) -> list[FirstOrderResult]:
    """
    Run evidence extraction over every survivor, in order.

    Subtitles are fetched once per distinct group id for the whole call,
    and each failed group id is reported once in `errors`.
    """
    logger.info("[first-order] Extracting evidence for %d rows.", len(results))

    if store is None:
        logger.info("[first-order] No subtitle source, every row passes without evidence.")
        return [_no_evidence(r) for r in results]

    cache = SubtitleCache(store)
    processed = []
    for i, result in enumerate(results, start=1):
        processed.append(extract_evidence(result, config, cache, padding_sec, max_snippets, errors))
        if i % 10 == 0:
            logger.info("[first-order] Progress: %d/%d", i, len(results))

    with_subtitle = sum(1 for r in processed if r.has_subtitle)
    with_snippets = sum(1 for r in processed if r.evidence_snippets)
    total_snippets = sum(len(r.evidence_snippets) for r in processed)
    logger.info(
        "[first-order] Done: total=%d with_subtitle=%d with_snippets=%d snippets=%d fetches=%d",
        len(processed), with_subtitle, with_snippets, total_snippets, cache.fetch_count,
    )
    return processed
