"""
Unit Tests for alert condition matching
"""

from datetime import datetime, timezone

import pytest

from app.models.alert import AlertConditions, CvssRange
from app.models.vulnerability import Severity
from app.services.alert_matcher import matches_conditions

from factories import make_vulnerability


class TestMatchesConditions:
    """Test suite for matches_conditions"""

    @pytest.fixture
    def vulnerability(self):
        return make_vulnerability()

    def test_empty_conditions_match_everything(self, vulnerability):
        assert matches_conditions(vulnerability, AlertConditions()) is True
        assert matches_conditions(vulnerability, None) is True

    def test_critical_rule_matches_critical_vulnerability(self, vulnerability):
        conditions = AlertConditions(
            severity=[Severity.CRITICAL],
            cvss_score=CvssRange(min=9.0, max=10.0),
        )
        assert matches_conditions(vulnerability, conditions) is True

    def test_critical_rule_ignores_high_vulnerability(self):
        conditions = AlertConditions(
            severity=[Severity.CRITICAL],
            cvss_score=CvssRange(min=9.0, max=10.0),
        )
        high = make_vulnerability(severity=Severity.HIGH, cvss_score=9.8)
        assert matches_conditions(high, conditions) is False

    def test_cvss_bounds_are_inclusive(self):
        conditions = AlertConditions(cvss_score=CvssRange(min=7.0, max=9.0))
        assert matches_conditions(make_vulnerability(cvss_score=7.0), conditions) is True
        assert matches_conditions(make_vulnerability(cvss_score=9.0), conditions) is True
        assert matches_conditions(make_vulnerability(cvss_score=9.1), conditions) is False
        assert matches_conditions(make_vulnerability(cvss_score=6.9), conditions) is False

    def test_affected_software_is_case_insensitive_substring(self, vulnerability):
        assert matches_conditions(vulnerability, AlertConditions(affected_software=["apache"])) is True
        assert matches_conditions(vulnerability, AlertConditions(affected_software=["HTTP SERVER"])) is True
        assert matches_conditions(vulnerability, AlertConditions(affected_software=["nginx"])) is False

    def test_any_listed_software_is_enough(self, vulnerability):
        conditions = AlertConditions(affected_software=["nginx", "apache"])
        assert matches_conditions(vulnerability, conditions) is True

    def test_tags(self, vulnerability):
        assert matches_conditions(vulnerability, AlertConditions(tags=["RCE"])) is True
        assert matches_conditions(vulnerability, AlertConditions(tags=["xss"])) is False

    def test_no_software_on_vulnerability_fails_software_condition(self):
        vulnerability = make_vulnerability(affected_software=[])
        assert matches_conditions(vulnerability, AlertConditions(affected_software=["apache"])) is False

    @pytest.mark.parametrize("field", ["exploit_available", "patch_available", "kev"])
    def test_boolean_flags_must_equal(self, field):
        vulnerability = make_vulnerability(**{field: True})
        assert matches_conditions(vulnerability, AlertConditions(**{field: True})) is True
        assert matches_conditions(vulnerability, AlertConditions(**{field: False})) is False

    def test_published_after_is_inclusive(self, vulnerability):
        conditions = AlertConditions(published_after=vulnerability.published_date)
        assert matches_conditions(vulnerability, conditions) is True

        later = AlertConditions(published_after=datetime(2024, 1, 11, tzinfo=timezone.utc))
        assert matches_conditions(vulnerability, later) is False

    def test_published_before_is_exclusive(self, vulnerability):
        conditions = AlertConditions(published_before=vulnerability.published_date)
        assert matches_conditions(vulnerability, conditions) is False

        later = AlertConditions(published_before=datetime(2024, 1, 11, tzinfo=timezone.utc))
        assert matches_conditions(vulnerability, later) is True

    def test_naive_datetimes_are_treated_as_utc(self, vulnerability):
        conditions = AlertConditions(published_after=datetime(2024, 1, 10, 8, 30))
        assert matches_conditions(vulnerability, conditions) is True

        conditions = AlertConditions(published_after=datetime(2024, 1, 10, 8, 31))
        assert matches_conditions(vulnerability, conditions) is False

    def test_all_criteria_must_hold(self, vulnerability):
        conditions = AlertConditions(
            severity=[Severity.CRITICAL, Severity.HIGH],
            affected_software=["apache"],
            exploit_available=True,
            kev=True,
        )
        assert matches_conditions(vulnerability, conditions) is False

    def test_camel_case_conditions(self, vulnerability):
        conditions = AlertConditions.model_validate({
            "severity": ["CRITICAL"],
            "cvssScore": {"min": 9.5, "max": 10},
            "affectedSoftware": ["Apache"],
            "exploitAvailable": True,
        })
        assert matches_conditions(vulnerability, conditions) is True
