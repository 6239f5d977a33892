"""
Email Delivery Service for VulnScope Alerts
Primary/secondary provider failover, rate limiting and a retry queue
"""
from typing import Awaitable, Callable, List, Optional, Tuple
from datetime import timedelta
import asyncio
import logging
import time

from app.core.clock import Clock, utc_now
from app.core.config import Settings
from app.models.email import (
    DeliveryStats,
    EmailConfigStatus,
    EmailDeliveryResult,
    EmailMessage,
    EmailPriority,
    EmailProviderType,
    EmailTemplate,
    ProviderSlot,
)
from app.models.vulnerability import Vulnerability
from app.services.email_queue import EmailRetryQueue
from app.services.email_templates import (
    SharePermissions,
    render_team_invitation,
    render_vulnerability_alert,
    render_vulnerability_shared,
)
from app.services.providers.base import EmailProvider
from app.services.providers.resend import ResendProvider
from app.services.providers.smtp import SmtpProvider
from app.services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


def parse_provider_type(value: Optional[str]) -> EmailProviderType:
    try:
        return EmailProviderType((value or "none").lower())
    except ValueError:
        logger.warning(f"[EMAIL SERVICE] Unknown email provider '{value}', treating as disabled")
        return EmailProviderType.NONE


def create_email_provider(kind: EmailProviderType, settings: Settings) -> Optional[EmailProvider]:
    """Build a provider for one slot, or None if it is disabled or lacks credentials"""
    if kind == EmailProviderType.RESEND and settings.RESEND_API_KEY:
        return ResendProvider(
            api_key=settings.RESEND_API_KEY,
            from_email=settings.FROM_EMAIL,
            from_name=settings.FROM_NAME,
            base_url=settings.RESEND_API_URL,
            timeout=settings.HTTP_TIMEOUT_SECONDS,
        )
    if kind == EmailProviderType.SMTP and settings.SMTP_HOST and settings.SMTP_USER and settings.SMTP_PASSWORD:
        return SmtpProvider(
            host=settings.SMTP_HOST,
            port=settings.SMTP_PORT,
            username=settings.SMTP_USER,
            password=settings.SMTP_PASSWORD,
            from_email=settings.FROM_EMAIL,
            from_name=settings.FROM_NAME,
            timeout=settings.HTTP_TIMEOUT_SECONDS,
        )
    return None


class EmailService:
    """Sends transactional email with failover between two providers"""

    def __init__(
        self,
        settings: Settings,
        primary: Optional[EmailProvider] = None,
        secondary: Optional[EmailProvider] = None,
        rate_limiter: Optional[RateLimiter] = None,
        queue: Optional[EmailRetryQueue] = None,
        clock: Clock = utc_now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings
        self.primary_type = parse_provider_type(settings.EMAIL_PRIMARY_PROVIDER)
        self.secondary_type = parse_provider_type(settings.EMAIL_SECONDARY_PROVIDER)
        self.primary = primary
        self.secondary = secondary
        self.enable_fallback = settings.EMAIL_ENABLE_FALLBACK
        self.retry_delay = timedelta(milliseconds=settings.EMAIL_RETRY_DELAY_MS)
        self.rate_limiter = rate_limiter or RateLimiter(settings.EMAIL_RATE_LIMIT_PER_SECOND)
        self.queue = queue or EmailRetryQueue(
            max_retries=settings.EMAIL_MAX_RETRIES,
            max_size=settings.EMAIL_QUEUE_MAX_SIZE,
        )
        self.delivery_stats = DeliveryStats()
        self._clock = clock
        self._sleep = sleep
        self._queue_task: Optional[asyncio.Task] = None
        self._sweeping = False

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "EmailService":
        """Initialise providers from configuration"""
        primary_type = parse_provider_type(settings.EMAIL_PRIMARY_PROVIDER)
        secondary_type = parse_provider_type(settings.EMAIL_SECONDARY_PROVIDER)

        primary = create_email_provider(primary_type, settings)
        if primary:
            logger.info(f"[EMAIL SERVICE] Primary {primary_type.value} provider initialized")
        else:
            logger.info("[EMAIL SERVICE] Primary provider not configured or missing credentials")

        secondary = None
        if secondary_type != EmailProviderType.NONE and secondary_type != primary_type:
            secondary = create_email_provider(secondary_type, settings)
            if secondary:
                logger.info(f"[EMAIL SERVICE] Secondary {secondary_type.value} provider initialized")
            else:
                logger.info("[EMAIL SERVICE] Secondary provider not configured or missing credentials")

        return cls(settings, primary=primary, secondary=secondary, **kwargs)

    # Delivery

    async def _attempt(self, slot: ProviderSlot, provider: EmailProvider, message: EmailMessage) -> Tuple[bool, Optional[str], Optional[str]]:
        """One rate-limited provider call. Returns (success, message_id, error)."""
        await self.rate_limiter.acquire()

        stats = self.delivery_stats.primary if slot == ProviderSlot.PRIMARY else self.delivery_stats.secondary
        start = time.monotonic()
        try:
            message_id = await provider.send(message)
        except Exception as e:
            duration = (time.monotonic() - start) * 1000
            logger.error(f"Error sending email via {slot.value} provider ({duration:.0f}ms): {e}")
            stats.failed += 1
            return False, None, str(e) or e.__class__.__name__

        stats.success += 1
        stats.last_used = self._clock()
        return True, message_id, None

    async def _deliver(self, message: EmailMessage, queue_on_failure: bool = True) -> EmailDeliveryResult:
        started = time.monotonic()

        def elapsed() -> float:
            return (time.monotonic() - started) * 1000

        if self.primary is None and self.secondary is None:
            logger.info(f"[EMAIL SERVICE] Email disabled - would send '{message.subject}' to {message.to_email}")
            return EmailDeliveryResult(success=True, provider=ProviderSlot.NONE, message_id="disabled")

        primary_error = "No primary email provider configured"
        if self.primary is not None:
            ok, message_id, error = await self._attempt(ProviderSlot.PRIMARY, self.primary, message)
            if ok:
                return EmailDeliveryResult(
                    success=True, provider=ProviderSlot.PRIMARY, message_id=message_id, delivery_time_ms=elapsed()
                )
            primary_error = error

            if not self.enable_fallback:
                return EmailDeliveryResult(
                    success=False, provider=ProviderSlot.PRIMARY, error=primary_error, delivery_time_ms=elapsed()
                )

        secondary_error = "No secondary email provider configured"
        last_slot = ProviderSlot.PRIMARY
        if self.secondary is not None:
            if self.primary is not None:
                logger.warning(f"⚠️ Primary email provider failed, trying secondary provider: {primary_error}")
            ok, message_id, error = await self._attempt(ProviderSlot.SECONDARY, self.secondary, message)
            if ok:
                return EmailDeliveryResult(
                    success=True, provider=ProviderSlot.SECONDARY, message_id=message_id, delivery_time_ms=elapsed()
                )
            secondary_error = error
            last_slot = ProviderSlot.SECONDARY

        error = f"Both providers failed. Primary: {primary_error}, Secondary: {secondary_error}."
        queued = False
        if queue_on_failure:
            queued = self.queue.enqueue(message, self._clock(), errors=[error]) is not None
            if queued:
                error = f"{error} Queued for retry."

        return EmailDeliveryResult(
            success=False, provider=last_slot, error=error, queued=queued, delivery_time_ms=elapsed()
        )

    async def send_email(
        self,
        to_email: str,
        template: EmailTemplate,
        priority: EmailPriority = EmailPriority.MEDIUM,
    ) -> EmailDeliveryResult:
        """Send a rendered template, falling back and queueing as configured"""
        message = EmailMessage(
            to_email=to_email,
            subject=template.subject,
            html=template.html,
            text=template.text,
            priority=priority,
        )
        return await self._deliver(message)

    async def send_batch(self, messages: List[EmailMessage]) -> List[EmailDeliveryResult]:
        """Send many messages in chunks of EMAIL_BATCH_SIZE with a pause between chunks"""
        batch_size = max(1, self.settings.EMAIL_BATCH_SIZE)
        results: List[EmailDeliveryResult] = []

        for start in range(0, len(messages), batch_size):
            if start:
                await self._sleep(self.settings.EMAIL_BATCH_DELAY_MS / 1000)
            for message in messages[start:start + batch_size]:
                results.append(await self._deliver(message))

        return results

    async def send_vulnerability_alert(
        self,
        to_email: str,
        vulnerability: Vulnerability,
        alert_rule_name: str,
        user_name: Optional[str] = None,
    ) -> EmailDeliveryResult:
        template = render_vulnerability_alert(vulnerability, alert_rule_name, self.settings.APP_URL, user_name)
        return await self.send_email(to_email, template, EmailPriority.HIGH)

    async def send_vulnerability_shared_notification(
        self,
        to_email: str,
        vulnerability: Vulnerability,
        sharer_name: str,
        message: Optional[str] = None,
        permissions: Optional[SharePermissions] = None,
    ) -> EmailDeliveryResult:
        template = render_vulnerability_shared(vulnerability, sharer_name, self.settings.APP_URL, message, permissions)
        return await self.send_email(to_email, template, EmailPriority.MEDIUM)

    async def send_team_invitation(
        self,
        to_email: str,
        team_name: str,
        inviter_name: str,
        role: str,
        team_description: Optional[str] = None,
        invitation_url: Optional[str] = None,
    ) -> EmailDeliveryResult:
        template = render_team_invitation(
            team_name, inviter_name, role, self.settings.APP_URL, team_description, invitation_url
        )
        return await self.send_email(to_email, template, EmailPriority.HIGH)

    # Retry queue

    async def process_queue(self) -> dict:
        """Retry every queued email that is due. Re-sends are never queued again."""
        summary = {"sent": 0, "failed": 0, "dropped": 0}
        if self._sweeping or not len(self.queue):
            return summary

        self._sweeping = True
        try:
            for item in self.queue.due(self._clock(), self.retry_delay):
                try:
                    result = await self._deliver(item.to_message(), queue_on_failure=False)
                except Exception as e:
                    logger.error(f"Error processing queued email {item.id}: {e}")
                    continue

                if result.success:
                    self.queue.remove(item.id)
                    summary["sent"] += 1
                    logger.info(f"✅ Queued email sent successfully: {item.id}")
                    continue

                summary["failed"] += 1
                if self.queue.record_failure(item.id, result.error or "Unknown error", self._clock()):
                    summary["dropped"] += 1
        finally:
            self._sweeping = False

        return summary

    async def _queue_loop(self) -> None:
        interval = self.settings.EMAIL_QUEUE_INTERVAL_SECONDS
        while True:
            await asyncio.sleep(interval)
            try:
                await self.process_queue()
            except Exception as e:
                logger.error(f"Email queue sweep failed: {e}")

    def start_queue_processor(self) -> None:
        if self._queue_task and not self._queue_task.done():
            return
        self._queue_task = asyncio.create_task(self._queue_loop())
        logger.info(f"[EMAIL SERVICE] Retry queue processor started (every {self.settings.EMAIL_QUEUE_INTERVAL_SECONDS}s)")

    async def stop_queue_processor(self) -> None:
        if not self._queue_task:
            return
        self._queue_task.cancel()
        try:
            await self._queue_task
        except asyncio.CancelledError:
            pass
        self._queue_task = None

    # Introspection

    def _provider_details(self, kind: EmailProviderType, provider: Optional[EmailProvider]) -> str:
        if kind == EmailProviderType.NONE:
            return "Not configured"
        if provider is not None:
            return provider.describe()
        if kind == EmailProviderType.RESEND:
            return "Resend API key missing"
        return "SMTP configuration incomplete"

    def is_configured(self) -> bool:
        return self.primary is not None or self.secondary is not None

    def get_config_status(self) -> EmailConfigStatus:
        return EmailConfigStatus(
            configured=self.is_configured(),
            primary_provider=self.primary_type,
            secondary_provider=self.secondary_type,
            fallback_enabled=self.enable_fallback,
            primary_details=self._provider_details(self.primary_type, self.primary),
            secondary_details=self._provider_details(self.secondary_type, self.secondary),
            queue_size=len(self.queue),
            delivery_stats=self.get_delivery_stats(),
        )

    def get_delivery_stats(self) -> DeliveryStats:
        return self.delivery_stats.model_copy(deep=True)

    def reset_delivery_stats(self) -> None:
        self.delivery_stats = DeliveryStats()
        logger.info("📊 Email delivery statistics reset")
