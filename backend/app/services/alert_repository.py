"""
Data access for the alert engine

Two interchangeable implementations: direct Supabase table access for trusted
processes, and the internal HTTP API for everything else.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional
import logging

import httpx

from app.models.alert import (
    AlertRule,
    AlertTrigger,
    NotificationDeliveryUpdate,
    RuleStateUpdate,
    TriggerStatus,
    TriggerStatusUpdate,
    UserProfile,
)

logger = logging.getLogger(__name__)


class AlertRepositoryError(Exception):
    """Raised when the backing store rejects or fails an operation"""


class AlertRepository(ABC):
    """Storage operations needed by the alert engine"""

    @abstractmethod
    async def list_active_rules(self, limit: int, offset: int = 0) -> List[AlertRule]:
        """Active rules ordered by id"""
        pass

    @abstractmethod
    async def get_rule(self, rule_id: str) -> Optional[AlertRule]:
        pass

    @abstractmethod
    async def insert_trigger(self, trigger: AlertTrigger) -> None:
        pass

    @abstractmethod
    async def update_rule_state(self, rule_id: str, last_triggered: datetime, trigger_count: int) -> None:
        pass

    @abstractmethod
    async def update_trigger_status(
        self,
        trigger_id: str,
        status: TriggerStatus,
        attempts: int,
        last_attempt: Optional[datetime] = None,
        error: Optional[str] = None,
    ) -> None:
        pass

    @abstractmethod
    async def get_user_profile(self, user_id: str) -> Optional[UserProfile]:
        pass

    @abstractmethod
    async def insert_notification(self, notification: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    async def update_notification_delivery(self, notification_id: str, update: NotificationDeliveryUpdate) -> None:
        pass


class SupabaseAlertRepository(AlertRepository):
    """Direct table access through the Supabase client"""

    RULES_TABLE = "alert_rules"
    TRIGGERS_TABLE = "alert_triggers"
    PROFILES_TABLE = "user_profiles"
    NOTIFICATIONS_TABLE = "notifications"

    def __init__(self, client):
        self.sb = client

    def _execute(self, query, action: str):
        try:
            return query.execute()
        except Exception as e:
            raise AlertRepositoryError(f"Failed to {action}: {e}") from e

    async def list_active_rules(self, limit: int, offset: int = 0) -> List[AlertRule]:
        query = self.sb.table(self.RULES_TABLE).select("*").eq(
            "is_active", True
        ).order("id").range(offset, offset + limit - 1)
        result = self._execute(query, "list active alert rules")
        return [AlertRule.model_validate(row) for row in (result.data or [])]

    async def get_rule(self, rule_id: str) -> Optional[AlertRule]:
        query = self.sb.table(self.RULES_TABLE).select("*").eq("id", rule_id)
        result = self._execute(query, f"fetch alert rule {rule_id}")
        return AlertRule.model_validate(result.data[0]) if result.data else None

    async def insert_trigger(self, trigger: AlertTrigger) -> None:
        query = self.sb.table(self.TRIGGERS_TABLE).insert(trigger.model_dump(mode="json"))
        self._execute(query, f"insert alert trigger {trigger.id}")

    async def update_rule_state(self, rule_id: str, last_triggered: datetime, trigger_count: int) -> None:
        query = self.sb.table(self.RULES_TABLE).update({
            "last_triggered": last_triggered.isoformat(),
            "trigger_count": trigger_count,
        }).eq("id", rule_id)
        self._execute(query, f"update alert rule {rule_id}")

    async def update_trigger_status(
        self,
        trigger_id: str,
        status: TriggerStatus,
        attempts: int,
        last_attempt: Optional[datetime] = None,
        error: Optional[str] = None,
    ) -> None:
        query = self.sb.table(self.TRIGGERS_TABLE).update({
            "status": status.value,
            "attempts": attempts,
            "last_attempt": last_attempt.isoformat() if last_attempt else None,
            "error": error,
        }).eq("id", trigger_id)
        self._execute(query, f"update alert trigger {trigger_id}")

    async def get_user_profile(self, user_id: str) -> Optional[UserProfile]:
        query = self.sb.table(self.PROFILES_TABLE).select("id, email, full_name").eq("id", user_id)
        result = self._execute(query, f"fetch profile {user_id}")
        return UserProfile.model_validate(result.data[0]) if result.data else None

    async def insert_notification(self, notification: Dict[str, Any]) -> None:
        query = self.sb.table(self.NOTIFICATIONS_TABLE).insert(notification)
        self._execute(query, "insert notification")

    async def update_notification_delivery(self, notification_id: str, update: NotificationDeliveryUpdate) -> None:
        query = self.sb.table(self.NOTIFICATIONS_TABLE).update(update.model_dump(mode="json")).eq("id", notification_id)
        self._execute(query, f"update notification {notification_id}")


class HttpAlertRepository(AlertRepository):
    """Same operations over the internal alerts API"""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 30.0,
        api_prefix: str = "/api/v1",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = f"{base_url.rstrip('/')}{api_prefix}/alerts"
        self.timeout = timeout
        self.headers = {"Content-Type": "application/json"}
        if token:
            self.headers["X-Internal-Token"] = token
        self._transport = transport

    async def _request(self, method: str, path: str, **kwargs) -> Optional[httpx.Response]:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                headers=self.headers,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise AlertRepositoryError(f"{method} {path} failed: {e!r}") from e

        if response.status_code == 404:
            return None
        if response.is_error:
            raise AlertRepositoryError(f"{method} {path} returned {response.status_code}: {response.text}")
        return response

    async def list_active_rules(self, limit: int, offset: int = 0) -> List[AlertRule]:
        response = await self._request(
            "GET", "/rules", params={"is_active": "true", "limit": limit, "offset": offset}
        )
        if response is None:
            return []
        return [AlertRule.model_validate(row) for row in response.json()]

    async def get_rule(self, rule_id: str) -> Optional[AlertRule]:
        response = await self._request("GET", f"/rules/{rule_id}")
        return AlertRule.model_validate(response.json()) if response is not None else None

    async def insert_trigger(self, trigger: AlertTrigger) -> None:
        await self._request("POST", "/triggers", json=trigger.model_dump(mode="json"))

    async def update_rule_state(self, rule_id: str, last_triggered: datetime, trigger_count: int) -> None:
        body = RuleStateUpdate(last_triggered=last_triggered, trigger_count=trigger_count)
        response = await self._request("PATCH", f"/rules/{rule_id}", json=body.model_dump(mode="json"))
        if response is None:
            raise AlertRepositoryError(f"Alert rule {rule_id} not found")

    async def update_trigger_status(
        self,
        trigger_id: str,
        status: TriggerStatus,
        attempts: int,
        last_attempt: Optional[datetime] = None,
        error: Optional[str] = None,
    ) -> None:
        body = TriggerStatusUpdate(status=status, attempts=attempts, last_attempt=last_attempt, error=error)
        await self._request("PATCH", f"/triggers/{trigger_id}", json=body.model_dump(mode="json"))

    async def get_user_profile(self, user_id: str) -> Optional[UserProfile]:
        response = await self._request("GET", f"/users/{user_id}/profile")
        return UserProfile.model_validate(response.json()) if response is not None else None

    async def insert_notification(self, notification: Dict[str, Any]) -> None:
        await self._request("POST", "/notifications", json=notification)

    async def update_notification_delivery(self, notification_id: str, update: NotificationDeliveryUpdate) -> None:
        await self._request("PATCH", f"/notifications/{notification_id}", json=update.model_dump(mode="json"))
