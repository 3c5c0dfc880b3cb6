from typing import List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from automation.core.exceptions import NotFoundError
from automation.models import ExecutionLog, WorkflowExecution


async def get_execution(db: AsyncSession, organization_id: str, execution_id: str) -> WorkflowExecution:
    """
    Fetch a workflow execution by ID.
    """
    result = await db.execute(
        select(WorkflowExecution).where(
            WorkflowExecution.id == execution_id,
            WorkflowExecution.organization_id == organization_id,
        )
    )
    execution = result.scalars().first()
    if execution is None:
        raise NotFoundError("Execution", execution_id)
    return execution


async def list_executions(
    db: AsyncSession,
    organization_id: str,
    workflow_id: Optional[str] = None,
    customer_id: Optional[str] = None,
    status: Optional[str] = None,
    skip: int = 0,
    limit: int = 100,
) -> Tuple[int, List[WorkflowExecution]]:
    """
    List executions for the organization, newest first.
    """
    filters = [WorkflowExecution.organization_id == organization_id]
    if workflow_id:
        filters.append(WorkflowExecution.workflow_id == workflow_id)
    if customer_id:
        filters.append(WorkflowExecution.customer_id == customer_id)
    if status:
        filters.append(WorkflowExecution.status == status.upper())

    total = await db.scalar(select(func.count(WorkflowExecution.id)).where(*filters))
    result = await db.execute(
        select(WorkflowExecution)
        .where(*filters)
        .order_by(WorkflowExecution.created_at.desc())
        .offset(skip)
        .limit(limit)
    )
    return total or 0, list(result.scalars().all())


async def get_execution_logs(
    db: AsyncSession,
    organization_id: str,
    execution_id: str,
    skip: int = 0,
    limit: int = 100,
    level: Optional[str] = None,
) -> Tuple[int, List[ExecutionLog]]:
    """
    Fetch logs for a workflow execution in the order they were written.
    """
    await get_execution(db, organization_id, execution_id)

    filters = [ExecutionLog.execution_id == execution_id]
    if level:
        filters.append(ExecutionLog.level == level.upper())

    total = await db.scalar(select(func.count(ExecutionLog.id)).where(*filters))
    result = await db.execute(
        select(ExecutionLog)
        .where(*filters)
        .order_by(ExecutionLog.timestamp, ExecutionLog.id)
        .offset(skip)
        .limit(limit)
    )
    return total or 0, list(result.scalars().all())
