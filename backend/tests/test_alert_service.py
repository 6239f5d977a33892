"""
Unit Tests for the alert trigger coordinator
"""

from datetime import datetime, timedelta

import pytest

from app.models.alert import AlertActions, AlertConditions, TriggerStatus
from app.models.vulnerability import Severity
from app.services.alert_service import AlertService
from app.services.notification_dispatcher import NotificationDispatcher

from factories import START, FakeProvider, make_rule, make_vulnerability


class TestAlertService:
    """Test suite for AlertService"""

    @pytest.fixture
    def vulnerability(self):
        return make_vulnerability()

    @pytest.fixture
    def service(self, settings, repository, make_email_service, fake_time):
        email_service = make_email_service(settings, FakeProvider("primary"))
        dispatcher = NotificationDispatcher(settings, repository, email_service, clock=fake_time.now)
        return AlertService(
            repository,
            dispatcher,
            max_rules_per_event=10,
            deferred_delay_seconds=5.0,
            clock=fake_time.now,
            sleep=fake_time.sleep,
        )

    def add_rules(self, repository, *rules):
        for rule in rules:
            repository.rules[rule.id] = rule

    @pytest.mark.asyncio
    async def test_matching_rule_triggers(self, service, repository, vulnerability):
        self.add_rules(repository, make_rule("rule-01", trigger_count=4))

        summary = await service.process_vulnerability(vulnerability)

        assert summary.evaluated == 1
        assert summary.matched == 1
        assert summary.triggered == 1
        assert summary.next_offset is None

        trigger = repository.triggers[summary.trigger_ids[0]]
        assert trigger.alert_rule_id == "rule-01"
        assert trigger.user_id == "user-1"
        assert trigger.vulnerability_id == "CVE-2024-0001"
        assert trigger.triggered_at == START
        assert trigger.status == TriggerStatus.SENT
        assert trigger.attempts == 1
        assert trigger.error is None

        assert repository.rule_updates == [("rule-01", START, 5)]
        assert repository.rules["rule-01"].trigger_count == 5
        assert len(repository.notifications) == 1

    @pytest.mark.asyncio
    async def test_high_vulnerability_does_not_match_critical_rule(self, service, repository):
        rule = make_rule(conditions=AlertConditions(severity=[Severity.CRITICAL]))
        self.add_rules(repository, rule)

        summary = await service.process_vulnerability(make_vulnerability(severity=Severity.HIGH))

        assert summary.matched == 0
        assert repository.triggers == {}
        assert repository.rule_updates == []

    @pytest.mark.asyncio
    async def test_cooldown_suppresses_trigger(self, service, repository, vulnerability):
        self.add_rules(repository, make_rule(last_triggered=START - timedelta(minutes=30), cooldown_minutes=60))

        summary = await service.process_vulnerability(vulnerability)

        assert summary.matched == 1
        assert summary.suppressed == 1
        assert summary.triggered == 0
        assert repository.triggers == {}

    @pytest.mark.asyncio
    async def test_expired_cooldown_allows_trigger(self, service, repository, vulnerability):
        self.add_rules(repository, make_rule(last_triggered=START - timedelta(minutes=61), cooldown_minutes=60))

        summary = await service.process_vulnerability(vulnerability)
        assert summary.triggered == 1

    @pytest.mark.asyncio
    async def test_second_event_within_cooldown_is_suppressed(self, service, repository, vulnerability, fake_time):
        self.add_rules(repository, make_rule())

        first = await service.process_vulnerability(vulnerability)
        fake_time.advance(60)
        second = await service.process_vulnerability(make_vulnerability(cve_id="CVE-2024-0002"))

        assert first.triggered == 1
        assert second.suppressed == 1
        assert len(repository.triggers) == 1

    def test_is_in_cooldown(self, service):
        assert service.is_in_cooldown(make_rule(), START) is False
        assert service.is_in_cooldown(make_rule(last_triggered=START, cooldown_minutes=0), START) is False

        rule = make_rule(last_triggered=START, cooldown_minutes=60)
        assert service.is_in_cooldown(rule, START + timedelta(minutes=59)) is True
        assert service.is_in_cooldown(rule, START + timedelta(minutes=60)) is False

    def test_naive_last_triggered_is_utc(self, service):
        rule = make_rule(last_triggered=datetime(2024, 1, 15, 11, 30), cooldown_minutes=60)
        assert service.is_in_cooldown(rule, START) is True

    @pytest.mark.asyncio
    async def test_one_rule_failure_does_not_stop_others(self, service, repository, vulnerability):
        self.add_rules(repository, make_rule("rule-01"), make_rule("rule-02"), make_rule("rule-03"))
        repository.fail_trigger_for.add("rule-02")

        summary = await service.process_vulnerability(vulnerability)

        assert summary.evaluated == 3
        assert summary.triggered == 2
        assert summary.errors == 1
        assert sorted(t.alert_rule_id for t in repository.triggers.values()) == ["rule-01", "rule-03"]

    @pytest.mark.asyncio
    async def test_rule_listing_failure_is_reported(self, service, repository, vulnerability):
        repository.fail_list = True

        summary = await service.process_vulnerability(vulnerability)

        assert summary.error == "database unavailable"
        assert summary.evaluated == 0

    @pytest.mark.asyncio
    async def test_inactive_rules_are_not_evaluated(self, service, repository, vulnerability):
        self.add_rules(repository, make_rule("rule-01", is_active=False))

        summary = await service.process_vulnerability(vulnerability)
        assert summary.evaluated == 0

    @pytest.mark.asyncio
    async def test_exactly_one_page_has_no_deferral(self, service, repository, vulnerability):
        self.add_rules(repository, *(make_rule(f"rule-{i:02d}") for i in range(10)))

        summary = await service.process_vulnerability(vulnerability)

        assert summary.evaluated == 10
        assert summary.next_offset is None
        assert summary.deferred is False
        assert repository.list_calls == [(11, 0)]

    @pytest.mark.asyncio
    async def test_rules_beyond_limit_are_deferred(self, service, repository, vulnerability, fake_time):
        self.add_rules(repository, *(make_rule(f"rule-{i:02d}") for i in range(25)))

        summaries = await service.process_with_deferral(vulnerability)

        assert [s.offset for s in summaries] == [0, 10, 20]
        assert [s.next_offset for s in summaries] == [10, 20, None]
        assert [s.deferred for s in summaries] == [True, True, False]
        assert [s.evaluated for s in summaries] == [10, 10, 5]
        assert sum(s.triggered for s in summaries) == 25
        assert fake_time.sleeps.count(5.0) == 2
        assert len({t.alert_rule_id for t in repository.triggers.values()}) == 25

    @pytest.mark.asyncio
    async def test_first_page_only_without_deferral(self, service, repository, vulnerability):
        self.add_rules(repository, *(make_rule(f"rule-{i:02d}") for i in range(12)))

        summary = await service.process_vulnerability(vulnerability)

        assert summary.triggered == 10
        assert summary.next_offset == 10
        assert "rule-10" not in {t.alert_rule_id for t in repository.triggers.values()}

    @pytest.mark.asyncio
    async def test_trigger_alert_skips_matching(self, service, repository):
        rule = make_rule(conditions=AlertConditions(severity=[Severity.LOW]))
        self.add_rules(repository, rule)

        trigger = await service.trigger_alert(rule, make_vulnerability())

        assert trigger is not None
        assert rule.trigger_count == 1
        assert rule.last_triggered == START

    @pytest.mark.asyncio
    async def test_trigger_alert_respects_cooldown(self, service, repository):
        rule = make_rule(last_triggered=START, cooldown_minutes=60)

        assert await service.trigger_alert(rule, make_vulnerability()) is None
        assert repository.triggers == {}

    @pytest.mark.asyncio
    async def test_trigger_alert_swallows_storage_errors(self, service, repository):
        rule = make_rule("rule-01")
        repository.fail_trigger_for.add("rule-01")

        assert await service.trigger_alert(rule, make_vulnerability()) is None

    @pytest.mark.asyncio
    async def test_no_channels_marks_trigger_failed(self, service, repository, vulnerability):
        self.add_rules(repository, make_rule(actions=AlertActions()))

        summary = await service.process_vulnerability(vulnerability)

        trigger = repository.triggers[summary.trigger_ids[0]]
        assert trigger.status == TriggerStatus.FAILED
        assert trigger.error == "No notification channels enabled"
        assert trigger.attempts == 1
        # cooldown still starts
        assert repository.rules["rule-01"].last_triggered == START
