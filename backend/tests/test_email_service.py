"""
Unit Tests for the email delivery service
Failover between providers, retry queue and delivery statistics
"""

import pytest

from app.models.email import EmailMessage, EmailPriority, EmailProviderType, EmailTemplate, ProviderSlot
from app.services.email_service import EmailService, create_email_provider, parse_provider_type
from app.services.providers.base import EmailProviderError
from app.services.providers.resend import ResendProvider
from app.services.providers.smtp import SmtpProvider

from factories import FakeProvider, build_settings, make_vulnerability

TEMPLATE = EmailTemplate(subject="Heads up", html="<p>Heads up</p>", text="Heads up")


class TestProviderSetup:
    """Provider selection from configuration"""

    def test_parse_provider_type(self):
        assert parse_provider_type("Resend") == EmailProviderType.RESEND
        assert parse_provider_type("smtp") == EmailProviderType.SMTP
        assert parse_provider_type(None) == EmailProviderType.NONE
        assert parse_provider_type("sendgrid") == EmailProviderType.NONE

    def test_resend_needs_api_key(self):
        assert create_email_provider(EmailProviderType.RESEND, build_settings()) is None
        provider = create_email_provider(EmailProviderType.RESEND, build_settings(RESEND_API_KEY="re_123"))
        assert isinstance(provider, ResendProvider)

    def test_smtp_needs_host_user_and_password(self):
        partial = build_settings(SMTP_HOST="smtp.example.com", SMTP_USER="mailer")
        assert create_email_provider(EmailProviderType.SMTP, partial) is None

        full = build_settings(SMTP_HOST="smtp.example.com", SMTP_USER="mailer", SMTP_PASSWORD="secret")
        provider = create_email_provider(EmailProviderType.SMTP, full)
        assert isinstance(provider, SmtpProvider)
        assert provider.describe() == "SMTP configured (smtp.example.com)"

    def test_from_settings_primary_and_secondary(self):
        settings = build_settings(
            EMAIL_PRIMARY_PROVIDER="resend",
            EMAIL_SECONDARY_PROVIDER="smtp",
            RESEND_API_KEY="re_123",
            SMTP_HOST="smtp.example.com",
            SMTP_USER="mailer",
            SMTP_PASSWORD="secret",
        )
        service = EmailService.from_settings(settings)

        assert isinstance(service.primary, ResendProvider)
        assert isinstance(service.secondary, SmtpProvider)
        assert service.is_configured() is True

    def test_secondary_of_same_type_is_ignored(self):
        settings = build_settings(
            EMAIL_PRIMARY_PROVIDER="resend",
            EMAIL_SECONDARY_PROVIDER="resend",
            RESEND_API_KEY="re_123",
        )
        service = EmailService.from_settings(settings)
        assert service.primary is not None
        assert service.secondary is None

    def test_legacy_provider_variable(self, monkeypatch):
        monkeypatch.delenv("EMAIL_PRIMARY_PROVIDER", raising=False)
        monkeypatch.setenv("EMAIL_PROVIDER", "smtp")
        settings = build_settings()
        assert settings.EMAIL_PRIMARY_PROVIDER == "smtp"

    def test_config_status_reports_missing_credentials(self):
        settings = build_settings(
            EMAIL_PRIMARY_PROVIDER="resend",
            EMAIL_SECONDARY_PROVIDER="smtp",
            RESEND_API_KEY="re_123",
            EMAIL_ENABLE_FALLBACK=False,
        )
        status = EmailService.from_settings(settings).get_config_status()

        assert status.configured is True
        assert status.primary_provider == EmailProviderType.RESEND
        assert status.secondary_provider == EmailProviderType.SMTP
        assert status.fallback_enabled is False
        assert status.primary_details == "Resend API configured"
        assert status.secondary_details == "SMTP configuration incomplete"
        assert status.queue_size == 0

    def test_unconfigured_status(self):
        status = EmailService.from_settings(build_settings()).get_config_status()
        assert status.configured is False
        assert status.primary_details == "Not configured"


class TestFailover:
    """Primary, secondary and retry queue interplay"""

    @pytest.mark.asyncio
    async def test_primary_success(self, settings, make_email_service):
        primary, secondary = FakeProvider("primary"), FakeProvider("secondary")
        service = make_email_service(settings, primary, secondary)

        result = await service.send_email("analyst@example.com", TEMPLATE)

        assert result.success is True
        assert result.provider == ProviderSlot.PRIMARY
        assert result.message_id == "primary-1"
        assert secondary.sent == []
        stats = service.get_delivery_stats()
        assert stats.primary.success == 1
        assert stats.primary.last_used is not None
        assert stats.secondary.success == 0

    @pytest.mark.asyncio
    async def test_secondary_used_when_primary_fails(self, settings, make_email_service):
        primary = FakeProvider("primary", fail=True)
        secondary = FakeProvider("secondary")
        service = make_email_service(settings, primary, secondary)

        result = await service.send_email("analyst@example.com", TEMPLATE)

        assert result.success is True
        assert result.provider == ProviderSlot.SECONDARY
        assert len(service.queue) == 0
        stats = service.get_delivery_stats()
        assert stats.primary.failed == 1
        assert stats.primary.last_used is None
        assert stats.secondary.success == 1

    @pytest.mark.asyncio
    async def test_both_fail_queues_exactly_once(self, settings, make_email_service):
        primary = FakeProvider("primary", fail=True)
        secondary = FakeProvider("secondary", fail=True)
        service = make_email_service(settings, primary, secondary)

        result = await service.send_email("analyst@example.com", TEMPLATE, EmailPriority.HIGH)

        assert result.success is False
        assert result.queued is True
        assert result.error == (
            "Both providers failed. Primary: primary is down, Secondary: secondary is down. Queued for retry."
        )
        items = service.queue.items()
        assert len(items) == 1
        assert items[0].priority == EmailPriority.HIGH
        assert items[0].errors == ["Both providers failed. Primary: primary is down, Secondary: secondary is down."]

    @pytest.mark.asyncio
    async def test_fallback_disabled(self, make_email_service):
        settings = build_settings(EMAIL_ENABLE_FALLBACK=False)
        primary = FakeProvider("primary", fail=True)
        secondary = FakeProvider("secondary")
        service = make_email_service(settings, primary, secondary)

        result = await service.send_email("analyst@example.com", TEMPLATE)

        assert result.success is False
        assert result.provider == ProviderSlot.PRIMARY
        assert result.queued is False
        assert result.error == "primary is down"
        assert secondary.sent == []
        assert len(service.queue) == 0

    @pytest.mark.asyncio
    async def test_primary_only_failure_is_queued(self, settings, make_email_service):
        service = make_email_service(settings, FakeProvider("primary", fail=True))

        result = await service.send_email("analyst@example.com", TEMPLATE)

        assert result.queued is True
        assert "Secondary: No secondary email provider configured" in result.error

    @pytest.mark.asyncio
    async def test_secondary_only(self, settings, make_email_service):
        secondary = FakeProvider("secondary")
        service = make_email_service(settings, None, secondary)

        result = await service.send_email("analyst@example.com", TEMPLATE)

        assert result.success is True
        assert result.provider == ProviderSlot.SECONDARY

    @pytest.mark.asyncio
    async def test_disabled_email_reports_success(self, settings, make_email_service):
        service = make_email_service(settings)

        result = await service.send_email("analyst@example.com", TEMPLATE)

        assert result.success is True
        assert result.provider == ProviderSlot.NONE
        assert result.message_id == "disabled"
        assert len(service.queue) == 0

    @pytest.mark.asyncio
    async def test_full_queue_is_not_reported_as_queued(self, make_email_service):
        settings = build_settings(EMAIL_QUEUE_MAX_SIZE=1)
        service = make_email_service(settings, FakeProvider("primary", fail=True))

        first = await service.send_email("a@example.com", TEMPLATE)
        second = await service.send_email("b@example.com", TEMPLATE)

        assert first.queued is True
        assert second.queued is False
        assert not second.error.endswith("Queued for retry.")
        assert len(service.queue) == 1

    @pytest.mark.asyncio
    async def test_empty_exception_message_uses_class_name(self, settings, make_email_service):
        primary = FakeProvider("primary", outcomes=[EmailProviderError()])
        service = make_email_service(settings, primary)

        result = await service.send_email("analyst@example.com", TEMPLATE)
        assert "Primary: EmailProviderError" in result.error


class TestRetryQueue:
    """Queue sweeps"""

    @pytest.mark.asyncio
    async def test_retries_until_max_then_drops(self, settings, make_email_service, fake_time):
        primary = FakeProvider("primary", fail=True)
        secondary = FakeProvider("secondary", fail=True)
        service = make_email_service(settings, primary, secondary)
        await service.send_email("analyst@example.com", TEMPLATE)
        item_id = service.queue.items()[0].id

        first = await service.process_queue()
        assert first == {"sent": 0, "failed": 1, "dropped": 0}
        assert service.queue.get(item_id).retry_count == 1

        # still inside the retry delay
        assert await service.process_queue() == {"sent": 0, "failed": 0, "dropped": 0}

        fake_time.advance(6)
        await service.process_queue()
        fake_time.advance(6)
        last = await service.process_queue()

        assert last["dropped"] == 1
        assert len(service.queue) == 0
        # initial attempt plus three retries, never re-queued
        assert len(primary.sent) == 4
        assert len(secondary.sent) == 4

    @pytest.mark.asyncio
    async def test_successful_retry_removes_item(self, settings, make_email_service):
        primary = FakeProvider("primary", outcomes=[EmailProviderError("timeout"), "retry-ok"])
        service = make_email_service(settings, primary)
        await service.send_email("analyst@example.com", TEMPLATE)
        assert len(service.queue) == 1

        summary = await service.process_queue()

        assert summary == {"sent": 1, "failed": 0, "dropped": 0}
        assert len(service.queue) == 0
        assert primary.sent[-1].to_email == "analyst@example.com"

    @pytest.mark.asyncio
    async def test_sweep_processes_high_priority_first(self, settings, make_email_service):
        primary = FakeProvider("primary", outcomes=[EmailProviderError("down"), EmailProviderError("down")])
        service = make_email_service(settings, primary)
        await service.send_email("low@example.com", TEMPLATE, EmailPriority.LOW)
        await service.send_email("high@example.com", TEMPLATE, EmailPriority.HIGH)

        await service.process_queue()

        assert [m.to_email for m in primary.sent[2:]] == ["high@example.com", "low@example.com"]

    @pytest.mark.asyncio
    async def test_empty_queue(self, settings, make_email_service):
        service = make_email_service(settings, FakeProvider("primary"))
        assert await service.process_queue() == {"sent": 0, "failed": 0, "dropped": 0}


class TestBatchAndTemplates:

    @pytest.mark.asyncio
    async def test_batches_pause_between_chunks(self, make_email_service, fake_time):
        settings = build_settings(EMAIL_BATCH_SIZE=5, EMAIL_BATCH_DELAY_MS=1000)
        primary = FakeProvider("primary")
        service = make_email_service(settings, primary)
        messages = [
            EmailMessage(to_email=f"user{i}@example.com", subject="s", html="h", text="t")
            for i in range(7)
        ]

        results = await service.send_batch(messages)

        assert len(results) == 7
        assert all(r.success for r in results)
        assert fake_time.sleeps == [1.0]
        assert [m.to_email for m in primary.sent] == [m.to_email for m in messages]

    @pytest.mark.asyncio
    async def test_rate_limit_spaces_sends(self, make_email_service, fake_time):
        settings = build_settings(EMAIL_RATE_LIMIT_PER_SECOND=1)
        service = make_email_service(settings, FakeProvider("primary"))

        for _ in range(3):
            await service.send_email("analyst@example.com", TEMPLATE)

        assert fake_time.elapsed >= 2.0

    @pytest.mark.asyncio
    async def test_vulnerability_alert_is_high_priority(self, settings, make_email_service):
        primary = FakeProvider("primary")
        service = make_email_service(settings, primary)

        result = await service.send_vulnerability_alert(
            "analyst@example.com", make_vulnerability(), "Critical Apache issues", "Dana"
        )

        assert result.success is True
        sent = primary.sent[0]
        assert sent.priority == EmailPriority.HIGH
        assert sent.subject.startswith("🚨 CRITICAL Alert: CVE-2024-0001")
        assert "https://app.vulnscope.test/vulnerabilities/CVE-2024-0001" in sent.text

    @pytest.mark.asyncio
    async def test_shared_notification_and_invitation_priorities(self, settings, make_email_service):
        primary = FakeProvider("primary")
        service = make_email_service(settings, primary)

        await service.send_vulnerability_shared_notification("a@example.com", make_vulnerability(), "Sam")
        await service.send_team_invitation("b@example.com", "Blue Team", "Alex", "member")

        assert primary.sent[0].priority == EmailPriority.MEDIUM
        assert primary.sent[1].priority == EmailPriority.HIGH


class TestDeliveryStats:

    @pytest.mark.asyncio
    async def test_stats_are_a_snapshot(self, settings, make_email_service):
        service = make_email_service(settings, FakeProvider("primary"))
        await service.send_email("analyst@example.com", TEMPLATE)

        snapshot = service.get_delivery_stats()
        snapshot.primary.success = 99

        assert service.get_delivery_stats().primary.success == 1

    @pytest.mark.asyncio
    async def test_reset(self, settings, make_email_service):
        service = make_email_service(settings, FakeProvider("primary", fail=True))
        await service.send_email("analyst@example.com", TEMPLATE)

        service.reset_delivery_stats()

        stats = service.get_delivery_stats()
        assert stats.primary.success == 0
        assert stats.primary.failed == 0
        assert len(service.queue) == 1
