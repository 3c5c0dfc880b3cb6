from typing import AsyncGenerator
from fastapi import Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from automation.services.runtime import AutomationRuntime


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for getting DB session.
    Endpoints commit their own work; anything uncommitted is rolled back on close.
    """
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        await db.close()


def get_runtime(request: Request) -> AutomationRuntime:
    return request.app.state.runtime


async def get_organization_id(
    x_organization_id: str = Header(..., alias="X-Organization-Id", description="Calling organization"),
) -> str:
    """
    Dependency for the calling organization. Authentication happens upstream;
    this only reads the organization it resolved.
    """
    organization_id = x_organization_id.strip()
    if not organization_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Organization-Id header must not be empty",
        )
    return organization_id
