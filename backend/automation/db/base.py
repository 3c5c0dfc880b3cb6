from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import declarative_base

# Declarative base shared by every automation table
Base = declarative_base(cls=AsyncAttrs)
