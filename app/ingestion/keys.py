"""
app/ingestion/keys.py — Canonical row identity.

compute_row_key() is the only place a topic's natural key is derived.
Zero-order dedup, normalizer dedup and the storage upsert all call it.
"""

import hashlib
import logging
import re
from typing import Callable, Iterable, TypeVar

from app.ingestion.rows import RawCandidateRow

logger = logging.getLogger(__name__)

T = TypeVar("T")

_UNSAFE_KEY_CHARS = re.compile(r"[^\w\-]")


def _sanitize(value: str) -> str:
    return _UNSAFE_KEY_CHARS.sub("_", value)


def compute_row_key(tenant: str, row: RawCandidateRow) -> str:
    """
    Derive the company_row_key for a row.

    Precedence:
      1. group_id present    → tenant_groupId_start_end
      2. external_id present → tenant_externalId_start_end
      3. otherwise           → tenant_<sha1 of location/date/title/window>

    The time window is part of every form: one meeting video can hold
    several distinct agenda items.
    """
    window = f"{row.start_sec}_{row.end_sec}"

    if row.group_id:
        return _sanitize(f"{tenant}_{row.group_id}_{window}")

    if row.external_id:
        return _sanitize(f"{tenant}_{row.external_id}_{window}")

    material = "|".join([
        tenant,
        row.prefecture,
        row.city,
        row.council_date,
        row.title,
        str(row.start_sec),
        str(row.end_sec),
    ])
    digest = hashlib.sha1(material.encode("utf-8")).hexdigest()[:16]
    return _sanitize(f"{tenant}_{digest}")


def dedupe_by_key(items: Iterable[T], key: Callable[[T], str]) -> list[T]:
    """Keep the first item for each key, preserving input order."""
    seen: set[str] = set()
    unique = []
    for item in items:
        k = key(item)
        if k in seen:
            continue
        seen.add(k)
        unique.append(item)
    return unique


def dedupe_rows(rows: Iterable[RawCandidateRow], tenant: str) -> list[RawCandidateRow]:
    """Drop rows whose canonical key was already seen."""
    rows = list(rows)
    unique = dedupe_by_key(rows, lambda r: compute_row_key(tenant, r))
    if len(unique) < len(rows):
        logger.debug("Dedup removed %d duplicate rows.", len(rows) - len(unique))
    return unique
