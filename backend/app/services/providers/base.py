from abc import ABC, abstractmethod

from app.models.email import EmailMessage, EmailProviderType


class EmailProviderError(Exception):
    """Raised when a provider could not accept a message"""


class EmailProvider(ABC):
    """Abstract base class for outbound email providers"""

    provider_type: EmailProviderType = EmailProviderType.NONE

    def __init__(self, from_email: str, from_name: str):
        self.from_email = from_email
        self.from_name = from_name

    @abstractmethod
    async def send(self, message: EmailMessage) -> str:
        """Send one message and return the provider message id"""
        pass

    @abstractmethod
    def describe(self) -> str:
        """Human readable configuration summary"""
        pass
