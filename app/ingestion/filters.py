"""
app/ingestion/filters.py — Location allow-list / deny-list filtering.

Each tenant may register:
  - inclusion rules (allow-list): only these municipalities are worth calling
  - exclusion rules (deny-list):  municipalities already covered or off-limits

Rules name a prefecture, a city, or both. Names are compared after
normalization so "横浜市" matches "横浜" and "Kanagawa Prefecture" matches
"kanagawa".
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Optional, Protocol

from app.ingestion.rows import RawCandidateRow

logger = logging.getLogger(__name__)

OUTSIDE_ALLOW_LIST = "outside allow-list"
DEFAULT_EXCLUSION_REASON = "excluded location"

_ADMIN_SUFFIX = re.compile(r"(県|府|都|道|市|区|町|村|prefecture|city|ward|town|village)$")


# ── Rule types ───────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class LocationRule:
    prefecture: Optional[str] = None
    city: Optional[str] = None
    note: Optional[str] = None      # exclusion reason or inclusion memo


class RuleStore(Protocol):
    def get_exclusion_rules(self, tenant: str) -> list[LocationRule]: ...

    def get_inclusion_rules(self, tenant: str) -> list[LocationRule]: ...


@dataclass
class LocationFilterResult:
    passed: list[RawCandidateRow] = field(default_factory=list)
    excluded: list[tuple[RawCandidateRow, str]] = field(default_factory=list)
    included_count: Optional[int] = None    # None when no allow-list exists


# ── Matching ─────────────────────────────────────────────────────────────────

def normalize_location(name: Optional[str]) -> str:
    """Drop whitespace, casefold, strip one trailing administrative suffix."""
    if not name:
        return ""
    compact = re.sub(r"\s+", "", name).casefold()
    stripped = _ADMIN_SUFFIX.sub("", compact)
    return stripped or compact


def _specificity(rule: LocationRule) -> int:
    if rule.prefecture and rule.city:
        return 0
    if rule.city:
        return 1
    if rule.prefecture:
        return 2
    return 3


def _rule_matches(row: RawCandidateRow, rule: LocationRule) -> bool:
    pref = normalize_location(row.prefecture)
    city = normalize_location(row.city)

    if rule.prefecture and rule.city:
        return pref == normalize_location(rule.prefecture) and city == normalize_location(rule.city)
    if rule.city:
        return city == normalize_location(rule.city)
    if rule.prefecture:
        return pref == normalize_location(rule.prefecture)
    return False


def find_matching_rule(row: RawCandidateRow, rules: list[LocationRule]) -> Optional[LocationRule]:
    """
    Return the most specific rule covering the row's location.

    Order: prefecture+city, then city alone (any prefecture), then
    prefecture alone. Rules with neither field never match.
    """
    for rule in sorted(rules, key=_specificity):
        if _rule_matches(row, rule):
            return rule
    return None


# ── Main filter ──────────────────────────────────────────────────────────────

def apply_location_filter(
    rows: list[RawCandidateRow],
    rule_store: Optional[RuleStore],
    tenant: str,
) -> LocationFilterResult:
    """
    Apply the tenant's allow-list, then its deny-list.

    Args:
        rows:       Raw candidate rows.
        rule_store: Source of rules. None means no rules at all.
        tenant:     Tenant (company) identifier.

    Returns:
        LocationFilterResult with survivors and (row, reason) exclusions.
    """
    if rule_store is None:
        return LocationFilterResult(passed=list(rows))

    inclusions = rule_store.get_inclusion_rules(tenant)
    exclusions = rule_store.get_exclusion_rules(tenant)

    if not inclusions and not exclusions:
        logger.info("Location filter: no rules for %s, all %d rows pass.", tenant, len(rows))
        return LocationFilterResult(passed=list(rows))

    result = LocationFilterResult()
    candidates = list(rows)

    if inclusions:
        allowed = []
        for row in candidates:
            if find_matching_rule(row, inclusions):
                allowed.append(row)
            else:
                result.excluded.append((row, OUTSIDE_ALLOW_LIST))
        result.included_count = len(allowed)
        candidates = allowed

    for row in candidates:
        rule = find_matching_rule(row, exclusions) if exclusions else None
        if rule:
            reason = rule.note or DEFAULT_EXCLUSION_REASON
            logger.debug("Excluded %s %s: %s", row.prefecture, row.city, reason)
            result.excluded.append((row, reason))
        else:
            result.passed.append(row)

    logger.info(
        "Location filter: %d passed, %d excluded (%d allow rules, %d deny rules).",
        len(result.passed), len(result.excluded), len(inclusions), len(exclusions),
    )
    return result
