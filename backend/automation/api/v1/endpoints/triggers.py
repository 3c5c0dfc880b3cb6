from typing import Optional
from fastapi import APIRouter, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession

from automation.api.deps import get_db, get_organization_id, get_runtime
from automation.schemas.trigger import ServiceCompletedRequest, TriggerResult, WebhookTriggerRequest
from automation.services.runtime import AutomationRuntime

router = APIRouter()


@router.post("/customers/{customer_id}/created", response_model=TriggerResult, summary="Customer created")
async def customer_created(
    customer_id: str = Path(..., title="The ID of the new customer"),
    organization_id: str = Depends(get_organization_id),
    db: AsyncSession = Depends(get_db),
    runtime: AutomationRuntime = Depends(get_runtime),
):
    return await runtime.dispatcher.on_customer_created(db, organization_id, customer_id)


@router.post(
    "/customers/{customer_id}/service-completed", response_model=TriggerResult, summary="Service completed"
)
async def service_completed(
    completed_in: Optional[ServiceCompletedRequest] = None,
    customer_id: str = Path(..., title="The ID of the customer"),
    organization_id: str = Depends(get_organization_id),
    db: AsyncSession = Depends(get_db),
    runtime: AutomationRuntime = Depends(get_runtime),
):
    service_type = completed_in.service_type if completed_in else None
    return await runtime.dispatcher.on_service_completed(db, organization_id, customer_id, service_type)


@router.post(
    "/review-requests/{review_request_id}/completed", response_model=TriggerResult, summary="Review completed"
)
async def review_request_completed(
    review_request_id: str = Path(..., title="The ID of the review request"),
    organization_id: str = Depends(get_organization_id),
    db: AsyncSession = Depends(get_db),
    runtime: AutomationRuntime = Depends(get_runtime),
):
    return await runtime.dispatcher.on_review_request_completed(db, organization_id, review_request_id)


@router.post("/webhooks/{webhook_key}", response_model=TriggerResult, summary="Inbound webhook")
async def webhook_received(
    webhook_in: WebhookTriggerRequest,
    webhook_key: str = Path(..., title="Key the workflows are matched on"),
    organization_id: str = Depends(get_organization_id),
    db: AsyncSession = Depends(get_db),
    runtime: AutomationRuntime = Depends(get_runtime),
):
    return await runtime.dispatcher.on_webhook_received(
        db, organization_id, webhook_key, webhook_in.customer_id, webhook_in.payload
    )
