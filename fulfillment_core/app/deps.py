from typing import Generator

from fastapi import Depends
from sqlalchemy.orm import Session

from .security import get_db, get_current_user, require_permission, Permission
from .services.engine import LifecycleEngine

__all__ = ["get_db", "get_current_user", "get_engine", "require_permission", "Permission"]


def get_engine(db: Session = Depends(get_db)) -> Generator[LifecycleEngine, None, None]:
    """One LifecycleEngine per request, bound to the request's session"""
    yield LifecycleEngine(db)
