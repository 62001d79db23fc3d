"""
app/ingestion/subtitles.py — Subtitle (SRT) sources and parsing.

The pipeline only needs one thing from a subtitle source: the full SRT text
for a group id, or None when there is none. Two sources are provided:

  HttpSubtitleStore       — GET {base_url}/{group_id}.srt, retried with tenacity
  DirectorySubtitleStore  — read {directory}/{group_id}.srt

SubtitleCache wraps either one for the duration of a single pipeline run.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol
from urllib.parse import quote

import requests
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from app.config import settings

logger = logging.getLogger(__name__)

_TIMESTAMP = re.compile(r"(\d{1,2}):(\d{2}):(\d{2})[,.](\d{1,3})")
_TIMING_LINE = re.compile(
    r"(\d{1,2}:\d{2}:\d{2}[,.]\d{1,3})\s*-->\s*(\d{1,2}:\d{2}:\d{2}[,.]\d{1,3})"
)


@dataclass(frozen=True)
class SubtitleSegment:
    index: int
    start_sec: float
    end_sec: float
    text: str


# ── Parsing ──────────────────────────────────────────────────────────────────

def parse_srt_time(value: str) -> float:
    """'00:01:23,456' → 83.456"""
    match = _TIMESTAMP.search(value)
    if not match:
        raise ValueError(f"Bad SRT timestamp: {value!r}")
    h, m, s, ms = match.groups()
    return int(h) * 3600 + int(m) * 60 + int(s) + int(ms.ljust(3, "0")) / 1000


def parse_srt(content: str) -> list[SubtitleSegment]:
    """
    Parse SRT text into segments ordered by start time.

    Blocks without a numeric index, a timing line, or any text are skipped
    one at a time; the rest of the file is still parsed.
    """
    if not content:
        return []

    normalized = content.replace("\ufeff", "").replace("\r\n", "\n").replace("\r", "\n")
    segments = []
    skipped = 0

    for block in re.split(r"\n\s*\n", normalized.strip()):
        lines = [line.strip() for line in block.strip().split("\n")]
        if len(lines) < 3:
            skipped += 1
            continue

        try:
            index = int(lines[0])
        except ValueError:
            skipped += 1
            continue

        timing = _TIMING_LINE.search(lines[1])
        if not timing:
            skipped += 1
            continue

        text = " ".join(line for line in lines[2:] if line)
        if not text:
            skipped += 1
            continue

        segments.append(SubtitleSegment(
            index=index,
            start_sec=parse_srt_time(timing.group(1)),
            end_sec=parse_srt_time(timing.group(2)),
            text=text,
        ))

    if skipped:
        logger.debug("Skipped %d malformed SRT blocks.", skipped)

    return sorted(segments, key=lambda seg: seg.start_sec)


# ── Sources ──────────────────────────────────────────────────────────────────

class SubtitleStore(Protocol):
    def get_subtitle_text(self, group_id: str) -> Optional[str]: ...


class HttpSubtitleStore:
    """Fetch {base_url}/{group_id}.srt over HTTP."""

    def __init__(self, base_url: str, timeout: int = 15):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    @retry(
        retry=retry_if_exception_type(requests.RequestException),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _get(self, url: str) -> Optional[str]:
        response = requests.get(url, timeout=self.timeout)
        if response.status_code == 404:
            return None
        response.raise_for_status()
        response.encoding = response.encoding or "utf-8"
        return response.text

    def get_subtitle_text(self, group_id: str) -> Optional[str]:
        return self._get(f"{self.base_url}/{quote(group_id)}.srt")


class DirectorySubtitleStore:
    """Read {directory}/{group_id}.srt from local disk."""

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    def get_subtitle_text(self, group_id: str) -> Optional[str]:
        path = self.directory / f"{Path(group_id).name}.srt"
        if not path.is_file():
            return None
        return path.read_text(encoding="utf-8-sig")


def build_subtitle_store() -> SubtitleStore | None:
    """Pick the configured subtitle source; None when neither is set."""
    if settings.subtitle_base_url:
        return HttpSubtitleStore(settings.subtitle_base_url)
    if settings.subtitle_dir:
        return DirectorySubtitleStore(settings.subtitle_dir)
    logger.info("No subtitle source configured — evidence extraction disabled.")
    return None


class SubtitleCache:
    """
    Per-run memo over a SubtitleStore, keyed by group id.

    Misses and failures are remembered too, so a broken group is fetched
    at most once per run. Failures re-raise the original error each time.
    """

    def __init__(self, store: SubtitleStore):
        self.store = store
        self._texts: dict[str, Optional[str]] = {}
        self._errors: dict[str, Exception] = {}
        self.fetch_count = 0

    def get(self, group_id: str) -> Optional[str]:
        if group_id in self._errors:
            raise self._errors[group_id]
        if group_id not in self._texts:
            self.fetch_count += 1
            try:
                self._texts[group_id] = self.store.get_subtitle_text(group_id)
            except Exception as e:
                self._errors[group_id] = e
                raise
        return self._texts[group_id]
