# automation/main.py

import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from contextlib import asynccontextmanager

from automation.api.v1.router import api_router
from automation.api.error_handlers import (
    configuration_exception_handler,
    general_exception_handler,
    invalid_state_exception_handler,
    not_found_exception_handler,
    validation_exception_handler,
)
from automation.core.config import settings
from automation.core.exceptions import ConfigurationError, InvalidStateError, NotFoundError
from automation.db.base import Base
from automation.db.session import create_session_factory, engine as default_engine
from automation.services.runtime import AutomationRuntime

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(level=settings.LOG_LEVEL)
    async with app.state.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    await app.state.runtime.start()
    logger.info(f"{settings.PROJECT_NAME} started in {settings.ENVIRONMENT} mode")
    yield
    await app.state.runtime.stop()


def create_application(engine=None, runtime: AutomationRuntime = None) -> FastAPI:
    engine = engine or default_engine
    session_factory = runtime.session_factory if runtime else create_session_factory(engine)

    app = FastAPI(
        title=settings.PROJECT_NAME,
        description=settings.PROJECT_DESCRIPTION,
        version=settings.VERSION,
        lifespan=lifespan,
    )
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.runtime = runtime or AutomationRuntime(settings, session_factory)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(NotFoundError, not_found_exception_handler)
    app.add_exception_handler(ConfigurationError, configuration_exception_handler)
    app.add_exception_handler(InvalidStateError, invalid_state_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    app.include_router(api_router, prefix=settings.API_V1_STR)

    @app.get("/health", include_in_schema=False)
    async def health_check():
        return JSONResponse(content={"status": "ok"}, status_code=200)

    return app


app = create_application()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("automation.main:app", host="0.0.0.0", port=8000, reload=True)
