from typing import Dict, List, Optional, Any
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field

from automation.models.workflow import DeliveryMethod, TriggerType


class TemplateCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., description="What the template does")
    category: str = Field(..., description="Grouping shown when browsing templates")
    trigger_type: TriggerType
    template_config: Dict[str, Any] = Field(
        default_factory=dict, description="Default trigger configuration for workflows made from this template"
    )
    default_actions: Optional[Dict[str, Any]] = None


class TemplateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: str
    category: str
    trigger_type: str
    template_config: Dict[str, Any] = Field(default_factory=dict)
    default_actions: Optional[Dict[str, Any]] = None
    is_active: bool
    is_system_template: bool = False
    created_at: Optional[datetime] = None


class TemplateWorkflowCreate(BaseModel):
    """Customizations applied over a template when creating a workflow from it."""
    name: Optional[str] = Field(None, description="Defaults to '<template name> (Copy)'")
    description: Optional[str] = None
    trigger_config: Optional[Dict[str, Any]] = Field(None, description="Merged over the template's trigger config")
    actions: Optional[Dict[str, Any]] = Field(None, description="Merged over the template's default actions")
    conditions: Optional[Dict[str, Any]] = None
    delivery_method: Optional[DeliveryMethod] = None
    business_id: Optional[str] = None


class DefaultWorkflowsResponse(BaseModel):
    created: int
    workflow_ids: List[str] = Field(default_factory=list)
