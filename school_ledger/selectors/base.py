"""
BaseSelector -- common base for read-only queries.

Selectors accept a Session from the caller, run SELECTs, and return DTOs or
ORM rows for display.  They never add, delete, flush or commit.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from school_ledger.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    """Abstract base class for all selectors."""

    def __init__(self, session: Session):
        self.session = session
