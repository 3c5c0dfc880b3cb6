from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from automation.core.config import settings


def create_engine(database_uri: str = None, **kwargs):
    """Create the async engine for the configured database."""
    uri = database_uri or settings.DATABASE_URI
    options = {"pool_pre_ping": True, "echo": settings.ENVIRONMENT == "development" and settings.LOG_LEVEL == "DEBUG"}
    options.update(kwargs)
    return create_async_engine(uri, **options)


def create_session_factory(bind) -> async_sessionmaker:
    """Session factory shared by the API, the scheduler and the log writer."""
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine = create_engine()

SessionLocal = create_session_factory(engine)

