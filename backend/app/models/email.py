"""
Email delivery models
"""
from datetime import datetime
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field
import uuid


class EmailProviderType(str, Enum):
    RESEND = "resend"
    SMTP = "smtp"
    NONE = "none"


class ProviderSlot(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"
    NONE = "none"


class EmailPriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class EmailTemplate(BaseModel):
    """Rendered email content"""
    subject: str
    html: str
    text: str


class EmailMessage(BaseModel):
    """One outbound email"""
    to_email: str
    subject: str
    html: str
    text: str
    priority: EmailPriority = EmailPriority.MEDIUM


class EmailQueueItem(BaseModel):
    """Email waiting for another delivery attempt"""
    id: str = Field(default_factory=lambda: f"email_{uuid.uuid4().hex}")
    to_email: str
    subject: str
    html: str
    text: str
    priority: EmailPriority = EmailPriority.MEDIUM
    retry_count: int = 0
    max_retries: int = 3
    created_at: datetime
    last_attempt: Optional[datetime] = None
    errors: List[str] = []

    def to_message(self) -> EmailMessage:
        return EmailMessage(
            to_email=self.to_email,
            subject=self.subject,
            html=self.html,
            text=self.text,
            priority=self.priority,
        )


class EmailDeliveryResult(BaseModel):
    """Outcome of a send attempt"""
    success: bool
    provider: ProviderSlot
    message_id: Optional[str] = None
    error: Optional[str] = None
    queued: bool = False
    retry_count: Optional[int] = None
    delivery_time_ms: Optional[float] = None


class ProviderStats(BaseModel):
    success: int = 0
    failed: int = 0
    last_used: Optional[datetime] = None


class DeliveryStats(BaseModel):
    """Per-slot delivery counters"""
    primary: ProviderStats = Field(default_factory=ProviderStats)
    secondary: ProviderStats = Field(default_factory=ProviderStats)


class EmailConfigStatus(BaseModel):
    configured: bool
    primary_provider: EmailProviderType
    secondary_provider: EmailProviderType
    fallback_enabled: bool
    primary_details: str
    secondary_details: str
    queue_size: int
    delivery_stats: DeliveryStats
