"""
Notification Dispatcher for VulnScope Alerts
Fans a triggered alert out to email, push, webhook, Slack and Discord
"""
from typing import List, Dict, Any, Optional
from datetime import datetime
from enum import Enum
import asyncio
import hashlib
import hmac
import json
import logging
import re
import uuid

import httpx
from pydantic import BaseModel

from app.core.clock import Clock, utc_now
from app.core.config import Settings
from app.models.alert import (
    AlertTrigger,
    DiscordAction,
    NotificationDeliveryStatus,
    NotificationDeliveryUpdate,
    SlackAction,
    TriggerStatus,
    WebhookAction,
)
from app.models.vulnerability import Severity, Vulnerability
from app.services.alert_repository import AlertRepository, AlertRepositoryError
from app.services.email_service import EmailService

logger = logging.getLogger(__name__)

USER_AGENT = "VulnScope-Alerts/1.0"
FOOTER_TEXT = "VulnScope Security Intelligence"
FOOTER_ICON = "https://vulnscope.com/icon.png"
MISSING_VARIABLE = "[Variable not found]"
TEMPLATE_VARIABLE = re.compile(r"{{\s*(\w+)\s*}}")


class NotificationChannel(str, Enum):
    """Delivery channels of an alert rule"""
    EMAIL = "email"
    PUSH = "push"
    WEBHOOK = "webhook"
    SLACK = "slack"
    DISCORD = "discord"


class ChannelResult(BaseModel):
    channel: NotificationChannel
    success: bool
    error: Optional[str] = None
    detail: Dict[str, Any] = {}


class DispatchReport(BaseModel):
    """Per-channel outcome of one trigger"""
    trigger_id: str
    status: TriggerStatus
    channels: List[ChannelResult] = []

    @property
    def failed_channels(self) -> List[ChannelResult]:
        return [c for c in self.channels if not c.success]

    def error_summary(self) -> Optional[str]:
        if not self.channels:
            return "No notification channels enabled"
        failed = self.failed_channels
        if not failed:
            return None
        return "; ".join(f"{c.channel.value}: {c.error}" for c in failed)


def delivery_status(results: List[ChannelResult]) -> TriggerStatus:
    """SENT if any channel delivered, RETRYING if nothing did but an email sits in the retry queue"""
    if any(r.success for r in results):
        return TriggerStatus.SENT
    if any(r.detail.get("queued") for r in results if r.channel == NotificationChannel.EMAIL):
        return TriggerStatus.RETRYING
    return TriggerStatus.FAILED


SLACK_EMOJI = {
    Severity.CRITICAL: "🔴",
    Severity.HIGH: "🟠",
    Severity.MEDIUM: "🟡",
    Severity.LOW: "🟢",
}

SLACK_COLORS = {
    Severity.CRITICAL: "#ff0000",
    Severity.HIGH: "#ff8800",
    Severity.MEDIUM: "#ffaa00",
    Severity.LOW: "#00aa00",
}

DISCORD_COLORS = {
    Severity.CRITICAL: 0xff0000,
    Severity.HIGH: 0xff8800,
    Severity.MEDIUM: 0xffaa00,
    Severity.LOW: 0x00aa00,
}


def priority_for_severity(severity: Severity) -> str:
    if severity == Severity.CRITICAL:
        return "critical"
    if severity == Severity.HIGH:
        return "high"
    return "medium"


def _truncate(text: str, limit: int) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")


def vulnerability_url(app_url: str, cve_id: str) -> str:
    return f"{app_url.rstrip('/')}/vulnerabilities/{cve_id}"


def render_template(template: str, context: Dict[str, Any]) -> str:
    """Replace {{name}} placeholders; unknown names are marked, None becomes empty"""
    def substitute(match: re.Match) -> str:
        key = match.group(1)
        if key not in context:
            return MISSING_VARIABLE
        value = context[key]
        return "" if value is None else str(value)

    return TEMPLATE_VARIABLE.sub(substitute, template)


def build_template_context(
    trigger: AlertTrigger,
    vulnerability: Vulnerability,
    rule_name: str,
    app_url: str,
    timestamp: datetime,
) -> Dict[str, Any]:
    return {
        "triggerId": trigger.id,
        "ruleId": trigger.alert_rule_id,
        "ruleName": rule_name,
        "userId": trigger.user_id,
        "cveId": vulnerability.cve_id,
        "title": vulnerability.title,
        "description": vulnerability.description,
        "severity": vulnerability.severity.value,
        "cvssScore": vulnerability.cvss_score,
        "publishedDate": vulnerability.published_date.isoformat(),
        "affectedSoftware": ", ".join(vulnerability.affected_software),
        "tags": ", ".join(vulnerability.tags),
        "exploitAvailable": vulnerability.exploit_available,
        "patchAvailable": vulnerability.patch_available,
        "kev": vulnerability.kev,
        "priority": priority_for_severity(vulnerability.severity),
        "url": vulnerability_url(app_url, vulnerability.cve_id),
        "timestamp": timestamp.isoformat(),
    }


def build_webhook_payload(trigger: AlertTrigger, vulnerability: Vulnerability, timestamp: datetime) -> Dict[str, Any]:
    return {
        "triggerId": trigger.id,
        "timestamp": timestamp.isoformat(),
        "vulnerability": {
            "cveId": vulnerability.cve_id,
            "title": vulnerability.title,
            "description": vulnerability.description,
            "severity": vulnerability.severity.value,
            "cvssScore": vulnerability.cvss_score,
            "publishedDate": vulnerability.published_date.isoformat(),
            "affectedSoftware": vulnerability.affected_software,
            "exploitAvailable": vulnerability.exploit_available,
            "patchAvailable": vulnerability.patch_available,
            "kev": vulnerability.kev,
            "tags": vulnerability.tags,
            "references": vulnerability.references,
        },
        "alert": {
            "type": "vulnerability_alert",
            "priority": priority_for_severity(vulnerability.severity),
        },
    }


def build_slack_payload(vulnerability: Vulnerability, slack: SlackAction, app_url: str, timestamp: datetime) -> Dict[str, Any]:
    software = vulnerability.affected_software
    payload = {
        "username": slack.username or "VulnScope Alerts",
        "attachments": [
            {
                "color": SLACK_COLORS.get(vulnerability.severity, "#000000"),
                "title": f"{SLACK_EMOJI.get(vulnerability.severity, '⚠️')} {vulnerability.severity.value} Vulnerability Alert",
                "title_link": vulnerability_url(app_url, vulnerability.cve_id),
                "fields": [
                    {"title": "CVE ID", "value": vulnerability.cve_id, "short": True},
                    {"title": "CVSS Score", "value": str(vulnerability.cvss_score), "short": True},
                    {
                        "title": "Affected Software",
                        "value": ", ".join(software[:3]) + ("..." if len(software) > 3 else ""),
                        "short": False,
                    },
                    {"title": "Exploit Available", "value": "Yes" if vulnerability.exploit_available else "No", "short": True},
                    {"title": "Patch Available", "value": "Yes" if vulnerability.patch_available else "No", "short": True},
                ],
                "text": _truncate(vulnerability.description, 500),
                "footer": FOOTER_TEXT,
                "footer_icon": FOOTER_ICON,
                "ts": int(timestamp.timestamp()),
            }
        ],
    }
    if slack.channel:
        payload["channel"] = slack.channel
    return payload


def build_discord_payload(vulnerability: Vulnerability, discord: DiscordAction, app_url: str, timestamp: datetime) -> Dict[str, Any]:
    software = vulnerability.affected_software
    software_value = "\n".join(software[:5])
    if len(software) > 5:
        software_value += f"\n... and {len(software) - 5} more"

    exploit = "✅ Available" if vulnerability.exploit_available else "❌ Not Available"
    patch = "✅ Available" if vulnerability.patch_available else "❌ Not Available"

    return {
        "username": discord.username or "VulnScope Alerts",
        "embeds": [
            {
                "title": f"{SLACK_EMOJI.get(vulnerability.severity, '⚠️')} {vulnerability.severity.value} Vulnerability Alert",
                "url": vulnerability_url(app_url, vulnerability.cve_id),
                "color": DISCORD_COLORS.get(vulnerability.severity, 0x000000),
                "fields": [
                    {"name": "CVE ID", "value": vulnerability.cve_id, "inline": True},
                    {"name": "CVSS Score", "value": str(vulnerability.cvss_score), "inline": True},
                    {"name": "Published Date", "value": vulnerability.published_date.strftime("%Y-%m-%d"), "inline": True},
                    {"name": "Affected Software", "value": software_value or "N/A", "inline": False},
                    {"name": "Status", "value": f"Exploit: {exploit}\nPatch: {patch}", "inline": True},
                ],
                "description": _truncate(vulnerability.description, 1000),
                "footer": {"text": FOOTER_TEXT, "icon_url": FOOTER_ICON},
                "timestamp": timestamp.isoformat(),
            }
        ],
    }


class NotificationDispatcher:
    """Attempts every enabled channel of a trigger; one failure never blocks another"""

    def __init__(
        self,
        settings: Settings,
        repository: AlertRepository,
        email_service: EmailService,
        publisher=None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Clock = utc_now,
    ):
        self.settings = settings
        self.repository = repository
        self.email_service = email_service
        self.publisher = publisher
        self.timeout = settings.HTTP_TIMEOUT_SECONDS
        self._transport = transport
        self._clock = clock

    async def dispatch(self, trigger: AlertTrigger, vulnerability: Vulnerability, rule_name: str) -> DispatchReport:
        actions = trigger.actions
        jobs = []

        if actions.email:
            jobs.append((NotificationChannel.EMAIL, self._send_email(trigger, vulnerability, rule_name)))
        if actions.push:
            jobs.append((NotificationChannel.PUSH, self._send_push(trigger, vulnerability)))
        if actions.webhook:
            jobs.append((NotificationChannel.WEBHOOK, self._send_webhook(trigger, vulnerability, rule_name, actions.webhook)))
        if actions.slack:
            jobs.append((NotificationChannel.SLACK, self._send_slack(vulnerability, actions.slack)))
        if actions.discord:
            jobs.append((NotificationChannel.DISCORD, self._send_discord(vulnerability, actions.discord)))

        results = await asyncio.gather(*(self._isolate(channel, job) for channel, job in jobs))

        for result in results:
            if result.success:
                logger.info(f"{result.channel.value} alert sent for {vulnerability.cve_id} (trigger {trigger.id})")
            else:
                logger.error(f"Failed to send {result.channel.value} alert for {vulnerability.cve_id}: {result.error}")

        return DispatchReport(trigger_id=trigger.id, status=delivery_status(results), channels=list(results))

    async def _isolate(self, channel: NotificationChannel, job) -> ChannelResult:
        try:
            return await job
        except Exception as e:
            return ChannelResult(channel=channel, success=False, error=str(e) or e.__class__.__name__)

    async def _send_email(self, trigger: AlertTrigger, vulnerability: Vulnerability, rule_name: str) -> ChannelResult:
        profile = await self.repository.get_user_profile(trigger.user_id)
        if profile is None or not profile.email:
            return ChannelResult(
                channel=NotificationChannel.EMAIL,
                success=False,
                error=f"No email address for user {trigger.user_id}",
            )

        result = await self.email_service.send_vulnerability_alert(
            profile.email, vulnerability, rule_name, profile.full_name
        )
        return ChannelResult(
            channel=NotificationChannel.EMAIL,
            success=result.success,
            error=result.error,
            detail={"provider": result.provider.value, "message_id": result.message_id, "queued": result.queued},
        )

    async def _send_push(self, trigger: AlertTrigger, vulnerability: Vulnerability) -> ChannelResult:
        now = self._clock()
        notification = {
            "id": str(uuid.uuid4()),
            "user_id": trigger.user_id,
            "type": "vulnerability_alert",
            "title": f"🚨 {vulnerability.severity.value} Alert: {vulnerability.cve_id}",
            "message": f"{vulnerability.title} - CVSS: {vulnerability.cvss_score}",
            "data": {
                "cveId": vulnerability.cve_id,
                "severity": vulnerability.severity.value,
                "cvssScore": vulnerability.cvss_score,
                "triggerId": trigger.id,
                "action": "view_vulnerability",
                "url": f"/vulnerabilities/{vulnerability.cve_id}",
            },
            "priority": priority_for_severity(vulnerability.severity),
            "is_read": False,
            "created_at": now.isoformat(),
            "delivery_status": NotificationDeliveryStatus.PENDING.value,
            "delivery_attempts": 0,
        }
        await self.repository.insert_notification(notification)

        detail = {"notification_id": notification["id"], "live": False}
        delivery_error = None
        if self.publisher is None:
            delivery_error = "Realtime publisher not available"
        else:
            try:
                await self.publisher.publish(trigger.user_id, notification)
                detail["live"] = True
            except Exception as e:
                # stored notification is still delivered on next dashboard load
                logger.warning(f"Realtime publish failed for user {trigger.user_id}: {e}")
                delivery_error = str(e) or e.__class__.__name__

        update = NotificationDeliveryUpdate(
            delivery_status=NotificationDeliveryStatus.FAILED if delivery_error else NotificationDeliveryStatus.DELIVERED,
            delivery_attempts=1,
            last_delivery_attempt=self._clock(),
            delivery_error=delivery_error,
        )
        try:
            await self.repository.update_notification_delivery(notification["id"], update)
        except AlertRepositoryError as e:
            logger.error(f"Failed to record delivery status for notification {notification['id']}: {e}")
        detail["delivery_status"] = update.delivery_status.value

        return ChannelResult(channel=NotificationChannel.PUSH, success=True, detail=detail)

    async def _send_webhook(
        self,
        trigger: AlertTrigger,
        vulnerability: Vulnerability,
        rule_name: str,
        webhook: WebhookAction,
    ) -> ChannelResult:
        now = self._clock()
        if webhook.template:
            context = build_template_context(trigger, vulnerability, rule_name, self.settings.APP_URL, now)
            body = render_template(webhook.template, context).encode()
        else:
            body = json.dumps(build_webhook_payload(trigger, vulnerability, now)).encode()

        headers = {
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
            **webhook.headers,
        }
        if webhook.secret:
            signature = hmac.new(webhook.secret.encode(), body, hashlib.sha256).hexdigest()
            headers["X-VulnScope-Signature"] = f"sha256={signature}"

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.request(webhook.method.value, webhook.url, content=body, headers=headers)

        if not response.is_success:
            return ChannelResult(
                channel=NotificationChannel.WEBHOOK,
                success=False,
                error=f"Webhook failed with status {response.status_code}",
                detail={"status": response.status_code},
            )
        return ChannelResult(channel=NotificationChannel.WEBHOOK, success=True, detail={"status": response.status_code})

    async def _post_json(self, channel: NotificationChannel, url: str, payload: Dict[str, Any]) -> ChannelResult:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(url, json=payload)

        if not response.is_success:
            return ChannelResult(
                channel=channel,
                success=False,
                error=f"{channel.value.capitalize()} webhook failed with status {response.status_code}",
                detail={"status": response.status_code},
            )
        return ChannelResult(channel=channel, success=True, detail={"status": response.status_code})

    async def _send_slack(self, vulnerability: Vulnerability, slack: SlackAction) -> ChannelResult:
        payload = build_slack_payload(vulnerability, slack, self.settings.APP_URL, self._clock())
        return await self._post_json(NotificationChannel.SLACK, slack.webhook_url, payload)

    async def _send_discord(self, vulnerability: Vulnerability, discord: DiscordAction) -> ChannelResult:
        payload = build_discord_payload(vulnerability, discord, self.settings.APP_URL, self._clock())
        return await self._post_json(NotificationChannel.DISCORD, discord.webhook_url, payload)
