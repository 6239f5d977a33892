"""
Alert rule and trigger models
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel
import uuid

from app.models.vulnerability import Severity


class CamelModel(BaseModel):
    """Accepts both snake_case and the dashboard's camelCase keys"""

    class Config:
        populate_by_name = True
        alias_generator = to_camel


class CvssRange(CamelModel):
    min: float = Field(0.0, ge=0.0, le=10.0)
    max: float = Field(10.0, ge=0.0, le=10.0)


class AlertConditions(CamelModel):
    """Conjunction of optional criteria; absent fields match anything"""
    severity: Optional[List[Severity]] = None
    cvss_score: Optional[CvssRange] = None
    affected_software: Optional[List[str]] = None
    tags: Optional[List[str]] = None
    exploit_available: Optional[bool] = None
    patch_available: Optional[bool] = None
    kev: Optional[bool] = None
    published_after: Optional[datetime] = None
    published_before: Optional[datetime] = None


class WebhookMethod(str, Enum):
    POST = "POST"
    PUT = "PUT"


class WebhookAction(CamelModel):
    url: str
    method: WebhookMethod = WebhookMethod.POST
    headers: Dict[str, str] = {}
    template: Optional[str] = None
    secret: Optional[str] = None


class SlackAction(CamelModel):
    webhook_url: str
    channel: Optional[str] = None
    username: Optional[str] = None


class DiscordAction(CamelModel):
    webhook_url: str
    username: Optional[str] = None


class AlertActions(CamelModel):
    """Independently enabled delivery channels"""
    email: bool = False
    push: bool = False
    webhook: Optional[WebhookAction] = None
    slack: Optional[SlackAction] = None
    discord: Optional[DiscordAction] = None


class AlertRule(CamelModel):
    """User-defined alert rule"""
    id: str
    user_id: str
    name: str = "Custom Alert Rule"
    description: Optional[str] = None
    conditions: AlertConditions = Field(default_factory=AlertConditions)
    actions: AlertActions = Field(default_factory=AlertActions)
    is_active: bool = True
    cooldown_minutes: int = Field(60, ge=0)
    last_triggered: Optional[datetime] = None
    trigger_count: int = Field(0, ge=0)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class TriggerStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    RETRYING = "retrying"


class AlertTrigger(CamelModel):
    """One rule matching one vulnerability at one point in time"""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    alert_rule_id: str
    user_id: str
    vulnerability_id: str
    triggered_at: datetime
    conditions: AlertConditions
    actions: AlertActions
    status: TriggerStatus = TriggerStatus.PENDING
    attempts: int = 0
    last_attempt: Optional[datetime] = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = {}


class RuleStateUpdate(CamelModel):
    """Cooldown bookkeeping written after a trigger"""
    last_triggered: datetime
    trigger_count: int = Field(..., ge=0)


class TriggerStatusUpdate(CamelModel):
    status: TriggerStatus
    attempts: int = Field(..., ge=0)
    last_attempt: Optional[datetime] = None
    error: Optional[str] = None


class NotificationDeliveryStatus(str, Enum):
    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"


class NotificationDeliveryUpdate(CamelModel):
    """Outcome of pushing a stored in-app notification to live sessions"""
    delivery_status: NotificationDeliveryStatus
    delivery_attempts: int = Field(..., ge=0)
    last_delivery_attempt: Optional[datetime] = None
    delivery_error: Optional[str] = None


class UserProfile(CamelModel):
    """Contact details of a rule owner"""
    id: str
    email: Optional[str] = None
    full_name: Optional[str] = None
