"""
Service wiring: everything the alert engine needs, built once per process
"""
from dataclasses import dataclass
from typing import Optional
import logging

from app.core.config import Settings
from app.core.realtime import RedisNotificationPublisher
from app.services.alert_repository import AlertRepository, HttpAlertRepository, SupabaseAlertRepository
from app.services.alert_service import AlertService
from app.services.email_service import EmailService
from app.services.notification_dispatcher import NotificationDispatcher

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    repository: AlertRepository
    email_service: EmailService
    dispatcher: NotificationDispatcher
    alert_service: AlertService
    publisher: Optional[RedisNotificationPublisher] = None

    async def startup(self):
        if self.publisher is not None:
            try:
                await self.publisher.connect()
                logger.info("✅ Redis notification publisher connected")
            except Exception as e:
                logger.warning(f"Redis unavailable, live push disabled: {e}")
                self.publisher = None
                self.dispatcher.publisher = None

        self.email_service.start_queue_processor()

    async def shutdown(self):
        await self.email_service.stop_queue_processor()
        if self.publisher is not None:
            await self.publisher.disconnect()


def build_repository(settings: Settings) -> AlertRepository:
    """Pick the data path: direct Supabase access or the internal HTTP API"""
    mode = settings.ALERT_DATA_ACCESS.lower()
    if mode == "direct":
        from app.core.supabase_client import get_supabase
        return SupabaseAlertRepository(get_supabase(settings))
    if mode == "http":
        return HttpAlertRepository(
            settings.INTERNAL_API_URL,
            token=settings.INTERNAL_API_TOKEN,
            timeout=settings.HTTP_TIMEOUT_SECONDS,
            api_prefix=settings.API_V1_STR,
        )
    raise ValueError(f"Unknown ALERT_DATA_ACCESS mode: {settings.ALERT_DATA_ACCESS}")


def build_services(
    settings: Settings,
    repository: Optional[AlertRepository] = None,
    email_service: Optional[EmailService] = None,
    publisher: Optional[RedisNotificationPublisher] = None,
) -> ServiceContainer:
    repository = repository or build_repository(settings)
    email_service = email_service or EmailService.from_settings(settings)
    if publisher is None and settings.REALTIME_ENABLED:
        publisher = RedisNotificationPublisher(settings.REDIS_URL)

    dispatcher = NotificationDispatcher(settings, repository, email_service, publisher=publisher)
    alert_service = AlertService(
        repository,
        dispatcher,
        max_rules_per_event=settings.ALERT_MAX_RULES_PER_EVENT,
        deferred_delay_seconds=settings.ALERT_DEFERRED_DELAY_SECONDS,
    )
    return ServiceContainer(
        settings=settings,
        repository=repository,
        email_service=email_service,
        dispatcher=dispatcher,
        alert_service=alert_service,
        publisher=publisher,
    )
