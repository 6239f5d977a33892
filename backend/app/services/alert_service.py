"""
Alert Trigger Service
Matches incoming vulnerabilities against active alert rules, applies
cooldowns, records triggers and hands them to the notification dispatcher.
"""
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, List, Optional

from pydantic import BaseModel

from app.core.clock import Clock, utc_now
from app.models.alert import AlertRule, AlertTrigger
from app.models.vulnerability import Vulnerability
from app.services.alert_matcher import matches_conditions
from app.services.alert_repository import AlertRepository
from app.services.notification_dispatcher import DispatchReport, NotificationDispatcher

logger = logging.getLogger(__name__)


class ProcessingSummary(BaseModel):
    """What happened to one page of rules for one vulnerability"""
    cve_id: str
    offset: int = 0
    evaluated: int = 0
    matched: int = 0
    triggered: int = 0
    suppressed: int = 0
    errors: int = 0
    deferred: bool = False
    next_offset: Optional[int] = None
    trigger_ids: List[str] = []
    error: Optional[str] = None


class AlertService:
    """Coordinates rule evaluation and trigger bookkeeping"""

    def __init__(
        self,
        repository: AlertRepository,
        dispatcher: NotificationDispatcher,
        max_rules_per_event: int = 10,
        deferred_delay_seconds: float = 5.0,
        clock: Clock = utc_now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.repository = repository
        self.dispatcher = dispatcher
        self.max_rules_per_event = max_rules_per_event
        self.deferred_delay_seconds = deferred_delay_seconds
        self._clock = clock
        self._sleep = sleep

    def is_in_cooldown(self, rule: AlertRule, now: Optional[datetime] = None) -> bool:
        if rule.last_triggered is None or rule.cooldown_minutes <= 0:
            return False
        now = now or self._clock()
        last_triggered = rule.last_triggered
        if last_triggered.tzinfo is None:
            last_triggered = last_triggered.replace(tzinfo=timezone.utc)
        return now < last_triggered + timedelta(minutes=rule.cooldown_minutes)

    async def process_vulnerability(self, vulnerability: Vulnerability, offset: int = 0) -> ProcessingSummary:
        """
        Evaluate one page of active rules against a new vulnerability.

        At most `max_rules_per_event` rules are handled per call; when more
        exist, `next_offset` in the summary points at the first deferred rule.
        Never raises: failures are logged and reported in the summary.
        """
        summary = ProcessingSummary(cve_id=vulnerability.cve_id, offset=offset)

        try:
            rules = await self.repository.list_active_rules(limit=self.max_rules_per_event + 1, offset=offset)
        except Exception as e:
            logger.error(f"Error processing vulnerability {vulnerability.cve_id} for alerts: {e}")
            summary.error = str(e)
            return summary

        if len(rules) > self.max_rules_per_event:
            rules = rules[:self.max_rules_per_event]
            summary.deferred = True
            summary.next_offset = offset + self.max_rules_per_event
            logger.info(
                f"More than {self.max_rules_per_event} active rules for {vulnerability.cve_id}, "
                f"deferring from offset {summary.next_offset}"
            )

        for rule in rules:
            summary.evaluated += 1
            try:
                if not rule.is_active or not matches_conditions(vulnerability, rule.conditions):
                    continue
                summary.matched += 1

                trigger = await self._trigger(rule, vulnerability)
                if trigger is None:
                    summary.suppressed += 1
                else:
                    summary.triggered += 1
                    summary.trigger_ids.append(trigger.id)
            except Exception as e:
                summary.errors += 1
                logger.error(f"Error triggering alert rule {rule.id} for {vulnerability.cve_id}: {e}")

        logger.info(
            f"Processed {vulnerability.cve_id}: {summary.evaluated} rules, {summary.matched} matched, "
            f"{summary.triggered} triggered, {summary.suppressed} in cooldown, {summary.errors} errors"
        )
        return summary

    async def process_with_deferral(self, vulnerability: Vulnerability) -> List[ProcessingSummary]:
        """Process every page of rules, pausing between pages"""
        summaries = []
        offset = 0
        while True:
            summary = await self.process_vulnerability(vulnerability, offset=offset)
            summaries.append(summary)
            if summary.next_offset is None or summary.error:
                break
            await self._sleep(self.deferred_delay_seconds)
            offset = summary.next_offset
        return summaries

    async def trigger_alert(self, rule: AlertRule, vulnerability: Vulnerability) -> Optional[AlertTrigger]:
        """Trigger a rule without matching. Returns None when suppressed or on failure."""
        try:
            return await self._trigger(rule, vulnerability)
        except Exception as e:
            logger.error(f"Error triggering alert rule {rule.id}: {e}")
            return None

    async def _trigger(self, rule: AlertRule, vulnerability: Vulnerability) -> Optional[AlertTrigger]:
        now = self._clock()
        if self.is_in_cooldown(rule, now):
            logger.debug(f"Alert rule {rule.id} in cooldown, skipping {vulnerability.cve_id}")
            return None

        trigger = AlertTrigger(
            alert_rule_id=rule.id,
            user_id=rule.user_id,
            vulnerability_id=vulnerability.cve_id,
            triggered_at=now,
            conditions=rule.conditions,
            actions=rule.actions,
        )

        # Trigger row and rule state are two writes, not a transaction
        await self.repository.insert_trigger(trigger)
        trigger_count = rule.trigger_count + 1
        await self.repository.update_rule_state(rule.id, now, trigger_count)
        rule.last_triggered = now
        rule.trigger_count = trigger_count

        report = await self.dispatcher.dispatch(trigger, vulnerability, rule.name)
        await self._record_delivery(trigger, report)
        return trigger

    async def _record_delivery(self, trigger: AlertTrigger, report: DispatchReport) -> None:
        trigger.status = report.status
        trigger.attempts += 1
        trigger.last_attempt = self._clock()
        trigger.error = report.error_summary()
        try:
            await self.repository.update_trigger_status(
                trigger.id, trigger.status, trigger.attempts, trigger.last_attempt, trigger.error
            )
        except Exception as e:
            logger.error(f"Failed to record delivery status for trigger {trigger.id}: {e}")
