from typing import List, Optional
from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from automation.api.deps import get_db, get_organization_id, get_runtime
from automation.schemas.execution import ExecutionListResponse, ExecutionResponse
from automation.schemas.workflow import (
    BulkTriggerRequest,
    BulkTriggerResponse,
    WorkflowCreate,
    WorkflowMetricsResponse,
    WorkflowPreviewResponse,
    WorkflowResponse,
    WorkflowStatusUpdate,
    WorkflowTestRequest,
    WorkflowTriggerRequest,
    WorkflowUpdate,
)
from automation.services import executions as execution_service
from automation.services import workflows as workflow_service
from automation.services.runtime import AutomationRuntime

router = APIRouter()


@router.get("", response_model=List[WorkflowResponse], summary="List workflows")
async def list_workflows(
    business_id: Optional[str] = None,
    active_only: bool = True,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=100),
    organization_id: str = Depends(get_organization_id),
    db: AsyncSession = Depends(get_db),
):
    return await workflow_service.list_workflows(
        db, organization_id, business_id=business_id, active_only=active_only, skip=skip, limit=limit
    )


@router.post("", response_model=WorkflowResponse, status_code=status.HTTP_201_CREATED, summary="Create a workflow")
async def create_workflow(
    workflow_in: WorkflowCreate,
    organization_id: str = Depends(get_organization_id),
    db: AsyncSession = Depends(get_db),
):
    workflow = await workflow_service.create_workflow(db, organization_id, workflow_in)
    await db.commit()
    return workflow


@router.get("/{workflow_id}", response_model=WorkflowResponse, summary="Get a workflow")
async def get_workflow(
    workflow_id: str = Path(..., title="The ID of the workflow"),
    organization_id: str = Depends(get_organization_id),
    db: AsyncSession = Depends(get_db),
):
    return await workflow_service.get_workflow(db, organization_id, workflow_id)


@router.put("/{workflow_id}", response_model=WorkflowResponse, summary="Update a workflow")
async def update_workflow(
    workflow_in: WorkflowUpdate,
    workflow_id: str = Path(..., title="The ID of the workflow"),
    organization_id: str = Depends(get_organization_id),
    db: AsyncSession = Depends(get_db),
):
    workflow = await workflow_service.update_workflow(db, organization_id, workflow_id, workflow_in)
    await db.commit()
    return workflow


@router.patch("/{workflow_id}/status", response_model=WorkflowResponse, summary="Activate or deactivate a workflow")
async def update_workflow_status(
    status_in: WorkflowStatusUpdate,
    workflow_id: str = Path(..., title="The ID of the workflow"),
    organization_id: str = Depends(get_organization_id),
    db: AsyncSession = Depends(get_db),
):
    workflow = await workflow_service.set_workflow_active(db, organization_id, workflow_id, status_in.is_active)
    await db.commit()
    return workflow


@router.get("/{workflow_id}/metrics", response_model=WorkflowMetricsResponse, summary="Workflow execution metrics")
async def get_workflow_metrics(
    workflow_id: str = Path(..., title="The ID of the workflow"),
    days: int = Query(30, ge=1, le=365),
    organization_id: str = Depends(get_organization_id),
    db: AsyncSession = Depends(get_db),
):
    return await workflow_service.workflow_metrics(db, organization_id, workflow_id, days=days)


@router.get("/{workflow_id}/executions", response_model=ExecutionListResponse, summary="List workflow executions")
async def list_workflow_executions(
    workflow_id: str = Path(..., title="The ID of the workflow"),
    status_filter: Optional[str] = Query(None, alias="status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=100),
    organization_id: str = Depends(get_organization_id),
    db: AsyncSession = Depends(get_db),
):
    await workflow_service.get_workflow(db, organization_id, workflow_id)
    total, items = await execution_service.list_executions(
        db, organization_id, workflow_id=workflow_id, status=status_filter, skip=skip, limit=limit
    )
    return ExecutionListResponse(total=total, items=items, skip=skip, limit=limit)


@router.post(
    "/{workflow_id}/trigger",
    response_model=ExecutionResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Trigger a workflow for one customer",
)
async def trigger_workflow(
    trigger_in: WorkflowTriggerRequest,
    workflow_id: str = Path(..., title="The ID of the workflow"),
    organization_id: str = Depends(get_organization_id),
    db: AsyncSession = Depends(get_db),
    runtime: AutomationRuntime = Depends(get_runtime),
):
    return await runtime.runner.trigger_workflow(
        db,
        organization_id,
        workflow_id,
        trigger_in.customer_id,
        trigger_event=trigger_in.trigger_event,
        trigger_data=trigger_in.trigger_data,
    )


@router.post(
    "/{workflow_id}/bulk-trigger",
    response_model=BulkTriggerResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Trigger a workflow for many customers",
)
async def bulk_trigger_workflow(
    bulk_in: BulkTriggerRequest,
    workflow_id: str = Path(..., title="The ID of the workflow"),
    organization_id: str = Depends(get_organization_id),
    db: AsyncSession = Depends(get_db),
    runtime: AutomationRuntime = Depends(get_runtime),
):
    return await runtime.runner.bulk_trigger_workflow(
        db, organization_id, workflow_id, bulk_in.customer_ids, trigger_event=bulk_in.trigger_event
    )


@router.post(
    "/{workflow_id}/test",
    response_model=ExecutionResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Run a workflow immediately as a test",
)
async def test_workflow(
    test_in: WorkflowTestRequest,
    workflow_id: str = Path(..., title="The ID of the workflow"),
    organization_id: str = Depends(get_organization_id),
    db: AsyncSession = Depends(get_db),
    runtime: AutomationRuntime = Depends(get_runtime),
):
    return await runtime.runner.test_workflow(db, organization_id, workflow_id, test_in.customer_id)


@router.get("/{workflow_id}/preview", response_model=WorkflowPreviewResponse, summary="Preview a workflow run")
async def preview_workflow(
    workflow_id: str = Path(..., title="The ID of the workflow"),
    customer_id: str = Query(..., description="Customer to preview the run for"),
    organization_id: str = Depends(get_organization_id),
    db: AsyncSession = Depends(get_db),
    runtime: AutomationRuntime = Depends(get_runtime),
):
    return await runtime.runner.preview_workflow(db, organization_id, workflow_id, customer_id)
