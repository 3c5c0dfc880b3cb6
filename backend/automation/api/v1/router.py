# automation/api/v1/router.py

from fastapi import APIRouter

from automation.api.v1.endpoints import workflows, templates, executions, triggers, monitoring
from automation.api.v1 import healthcheck

# Create main API router
api_router = APIRouter()

# Include all endpoint routers
api_router.include_router(workflows.router, prefix="/workflows", tags=["Workflows"])
api_router.include_router(templates.router, prefix="/templates", tags=["Templates"])
api_router.include_router(executions.router, prefix="/executions", tags=["Executions"])
api_router.include_router(triggers.router, prefix="/triggers", tags=["Triggers"])
api_router.include_router(monitoring.router, prefix="/monitoring", tags=["Monitoring"])
api_router.include_router(healthcheck.router, prefix="")
