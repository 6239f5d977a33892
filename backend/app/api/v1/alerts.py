"""
Alerts API endpoints
Vulnerability intake, manual triggers, the internal data path used by
HttpAlertRepository, and email delivery introspection
"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from pydantic import BaseModel

from app.core.dependencies import get_services, require_internal_token
from app.core.services import ServiceContainer
from app.models.alert import (
    AlertRule,
    AlertTrigger,
    NotificationDeliveryUpdate,
    RuleStateUpdate,
    TriggerStatusUpdate,
    UserProfile,
)
from app.models.email import DeliveryStats, EmailConfigStatus
from app.models.vulnerability import Vulnerability

router = APIRouter(
    prefix="/alerts",
    tags=["alerts"],
    dependencies=[Depends(require_internal_token)],
)


class ProcessAccepted(BaseModel):
    status: str = "accepted"
    cve_id: str


class TriggerResponse(BaseModel):
    triggered: bool
    trigger: Optional[AlertTrigger] = None


RULES_PAGE_LIMIT = 100


def max_rules_page(services: ServiceContainer) -> int:
    """Largest page GET /rules serves; never smaller than one coordinator batch plus the look-ahead rule"""
    return max(RULES_PAGE_LIMIT, services.settings.ALERT_MAX_RULES_PER_EVENT + 1)


# Processing
@router.post("/process", response_model=ProcessAccepted, status_code=status.HTTP_202_ACCEPTED)
async def process_vulnerability(
    vulnerability: Vulnerability,
    background_tasks: BackgroundTasks,
    services: ServiceContainer = Depends(get_services),
):
    """
    Queue a newly ingested vulnerability for alert matching.
    Fire-and-forget: failures are logged, never returned to the caller.
    """
    background_tasks.add_task(services.alert_service.process_with_deferral, vulnerability)
    return ProcessAccepted(cve_id=vulnerability.cve_id)


@router.post("/rules/{rule_id}/trigger", response_model=TriggerResponse)
async def trigger_rule(
    rule_id: str,
    vulnerability: Vulnerability,
    services: ServiceContainer = Depends(get_services),
):
    """Trigger a rule for a vulnerability without condition matching (cooldown still applies)"""
    rule = await services.repository.get_rule(rule_id)
    if rule is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Alert rule not found")

    trigger = await services.alert_service.trigger_alert(rule, vulnerability)
    return TriggerResponse(triggered=trigger is not None, trigger=trigger)


# Internal data path
@router.get("/rules", response_model=List[AlertRule])
async def list_rules(
    is_active: bool = Query(True),
    limit: int = Query(10, ge=1),
    offset: int = Query(0, ge=0),
    services: ServiceContainer = Depends(get_services),
):
    if not is_active:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Only active rules are served")
    page_limit = max_rules_page(services)
    if limit > page_limit:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"limit must not exceed {page_limit}",
        )
    return await services.repository.list_active_rules(limit=limit, offset=offset)


@router.get("/rules/{rule_id}", response_model=AlertRule)
async def get_rule(rule_id: str, services: ServiceContainer = Depends(get_services)):
    rule = await services.repository.get_rule(rule_id)
    if rule is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Alert rule not found")
    return rule


@router.patch("/rules/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def update_rule_state(
    rule_id: str,
    update: RuleStateUpdate,
    services: ServiceContainer = Depends(get_services),
):
    if await services.repository.get_rule(rule_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Alert rule not found")
    await services.repository.update_rule_state(rule_id, update.last_triggered, update.trigger_count)


@router.post("/triggers", response_model=AlertTrigger, status_code=status.HTTP_201_CREATED)
async def create_trigger(trigger: AlertTrigger, services: ServiceContainer = Depends(get_services)):
    await services.repository.insert_trigger(trigger)
    return trigger


@router.patch("/triggers/{trigger_id}", status_code=status.HTTP_204_NO_CONTENT)
async def update_trigger(
    trigger_id: str,
    update: TriggerStatusUpdate,
    services: ServiceContainer = Depends(get_services),
):
    await services.repository.update_trigger_status(
        trigger_id, update.status, update.attempts, update.last_attempt, update.error
    )


@router.get("/users/{user_id}/profile", response_model=UserProfile)
async def get_user_profile(user_id: str, services: ServiceContainer = Depends(get_services)):
    profile = await services.repository.get_user_profile(user_id)
    if profile is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return profile


@router.post("/notifications", status_code=status.HTTP_201_CREATED)
async def create_notification(notification: Dict[str, Any], services: ServiceContainer = Depends(get_services)):
    await services.repository.insert_notification(notification)
    return {"id": notification.get("id")}


@router.patch("/notifications/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
async def update_notification_delivery(
    notification_id: str,
    update: NotificationDeliveryUpdate,
    services: ServiceContainer = Depends(get_services),
):
    await services.repository.update_notification_delivery(notification_id, update)


# Email delivery introspection
@router.get("/email/status", response_model=EmailConfigStatus)
async def email_status(services: ServiceContainer = Depends(get_services)):
    return services.email_service.get_config_status()


@router.get("/email/stats", response_model=DeliveryStats)
async def email_stats(services: ServiceContainer = Depends(get_services)):
    return services.email_service.get_delivery_stats()


@router.post("/email/stats/reset", response_model=DeliveryStats)
async def reset_email_stats(services: ServiceContainer = Depends(get_services)):
    services.email_service.reset_delivery_stats()
    return services.email_service.get_delivery_stats()


@router.post("/email/queue/process")
async def process_email_queue(services: ServiceContainer = Depends(get_services)):
    """Run one retry sweep now instead of waiting for the next interval"""
    return await services.email_service.process_queue()
