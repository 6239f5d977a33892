"""
VulnScope Alerts Test Configuration
Pytest fixtures shared by the unit and API tests
"""

import pytest

from app.services.email_service import EmailService
from app.services.rate_limiter import RateLimiter

from factories import FakeAlertRepository, FakeTime, build_settings


@pytest.fixture
def settings():
    return build_settings()


@pytest.fixture
def fake_time():
    return FakeTime()


@pytest.fixture
def repository():
    return FakeAlertRepository()


@pytest.fixture
def make_email_service(fake_time):
    """Factory for an email service running on the fake clock"""

    def factory(settings, primary=None, secondary=None, **kwargs):
        rate_limiter = RateLimiter(
            settings.EMAIL_RATE_LIMIT_PER_SECOND,
            clock=fake_time.monotonic,
            sleep=fake_time.sleep,
        )
        return EmailService(
            settings,
            primary=primary,
            secondary=secondary,
            rate_limiter=rate_limiter,
            clock=fake_time.now,
            sleep=fake_time.sleep,
            **kwargs,
        )

    return factory
