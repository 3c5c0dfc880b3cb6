from typing import Optional
from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession

from automation.api.deps import get_db, get_organization_id, get_runtime
from automation.schemas.execution import (
    ExecutionCancelRequest,
    ExecutionListResponse,
    ExecutionLogsResponse,
    ExecutionResponse,
)
from automation.services import executions as execution_service
from automation.services.runtime import AutomationRuntime

router = APIRouter()


@router.get("", response_model=ExecutionListResponse, summary="List executions")
async def list_executions(
    workflow_id: Optional[str] = None,
    customer_id: Optional[str] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=100),
    organization_id: str = Depends(get_organization_id),
    db: AsyncSession = Depends(get_db),
):
    total, items = await execution_service.list_executions(
        db,
        organization_id,
        workflow_id=workflow_id,
        customer_id=customer_id,
        status=status_filter,
        skip=skip,
        limit=limit,
    )
    return ExecutionListResponse(total=total, items=items, skip=skip, limit=limit)


@router.get("/{execution_id}", response_model=ExecutionResponse, summary="Get an execution")
async def get_execution(
    execution_id: str = Path(..., title="The ID of the execution"),
    organization_id: str = Depends(get_organization_id),
    db: AsyncSession = Depends(get_db),
):
    return await execution_service.get_execution(db, organization_id, execution_id)


@router.post("/{execution_id}/cancel", response_model=ExecutionResponse, summary="Cancel a pending execution")
async def cancel_execution(
    cancel_in: Optional[ExecutionCancelRequest] = None,
    execution_id: str = Path(..., title="The ID of the execution"),
    organization_id: str = Depends(get_organization_id),
    db: AsyncSession = Depends(get_db),
    runtime: AutomationRuntime = Depends(get_runtime),
):
    reason = cancel_in.reason if cancel_in else "Cancelled by user"
    execution = await runtime.scheduler.cancel_execution(db, execution_id, organization_id, reason=reason)
    await db.commit()
    return execution


@router.get("/{execution_id}/logs", response_model=ExecutionLogsResponse, summary="Get execution logs")
async def get_execution_logs(
    execution_id: str = Path(..., title="The ID of the execution"),
    level: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    organization_id: str = Depends(get_organization_id),
    db: AsyncSession = Depends(get_db),
):
    total, items = await execution_service.get_execution_logs(
        db, organization_id, execution_id, skip=skip, limit=limit, level=level
    )
    return ExecutionLogsResponse(total=total, items=items, skip=skip, limit=limit, execution_id=execution_id)
