"""
Alert condition matching
"""
from datetime import datetime, timezone
from typing import Iterable, Optional

from app.models.alert import AlertConditions
from app.models.vulnerability import Vulnerability


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _any_contains(values: Iterable[str], needles: Iterable[str]) -> bool:
    """True if any value contains any needle, ignoring case"""
    lowered = [n.lower() for n in needles]
    return any(
        needle in value.lower()
        for value in values
        for needle in lowered
    )


def matches_conditions(vulnerability: Vulnerability, conditions: Optional[AlertConditions]) -> bool:
    """
    Check whether a vulnerability satisfies every criterion present in the
    rule conditions. Missing criteria are ignored.
    """
    if conditions is None:
        return True

    if conditions.severity and vulnerability.severity not in conditions.severity:
        return False

    if conditions.cvss_score is not None:
        score_range = conditions.cvss_score
        if not score_range.min <= vulnerability.cvss_score <= score_range.max:
            return False

    if conditions.affected_software:
        if not _any_contains(vulnerability.affected_software, conditions.affected_software):
            return False

    if conditions.tags:
        if not _any_contains(vulnerability.tags, conditions.tags):
            return False

    if conditions.exploit_available is not None and vulnerability.exploit_available != conditions.exploit_available:
        return False

    if conditions.patch_available is not None and vulnerability.patch_available != conditions.patch_available:
        return False

    if conditions.kev is not None and vulnerability.kev != conditions.kev:
        return False

    published = _as_utc(vulnerability.published_date)

    if conditions.published_after is not None and published < _as_utc(conditions.published_after):
        return False

    if conditions.published_before is not None and published >= _as_utc(conditions.published_before):
        return False

    return True
