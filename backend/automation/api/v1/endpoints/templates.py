from typing import List, Optional
from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from automation.api.deps import get_db, get_organization_id
from automation.schemas.template import (
    DefaultWorkflowsResponse,
    TemplateCreate,
    TemplateResponse,
    TemplateWorkflowCreate,
)
from automation.schemas.workflow import WorkflowResponse
from automation.services import workflows as workflow_service

router = APIRouter()


@router.get("", response_model=List[TemplateResponse], summary="List workflow templates")
async def list_templates(
    category: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
):
    return await workflow_service.list_templates(db, category=category)


@router.post("", response_model=TemplateResponse, status_code=status.HTTP_201_CREATED, summary="Create a template")
async def create_template(
    template_in: TemplateCreate,
    db: AsyncSession = Depends(get_db),
):
    template = await workflow_service.create_template(db, template_in)
    await db.commit()
    return template


@router.post(
    "/defaults",
    response_model=DefaultWorkflowsResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create the default workflows for an organization without any",
)
async def create_default_workflows(
    business_id: Optional[str] = Query(None),
    organization_id: str = Depends(get_organization_id),
    db: AsyncSession = Depends(get_db),
):
    workflows = await workflow_service.seed_default_workflows(db, organization_id, business_id=business_id)
    await db.commit()
    return DefaultWorkflowsResponse(created=len(workflows), workflow_ids=[w.id for w in workflows])


@router.post(
    "/{template_id}/workflows",
    response_model=WorkflowResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a workflow from a template",
)
async def create_workflow_from_template(
    customizations: Optional[TemplateWorkflowCreate] = None,
    template_id: str = Path(..., title="The ID of the template"),
    organization_id: str = Depends(get_organization_id),
    db: AsyncSession = Depends(get_db),
):
    workflow = await workflow_service.create_workflow_from_template(db, organization_id, template_id, customizations)
    await db.commit()
    return workflow
