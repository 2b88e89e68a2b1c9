"""
BaseService -- common base for the write side of the ledger.

Services receive a SQLAlchemy ``Session`` from the caller and persist with
``session.flush()``.  They never commit or roll back the outer transaction;
the caller (``session_scope()``, a request handler, or the test harness)
owns that boundary.  Savepoints (``session.begin_nested()``) are the only
transaction control services use, and only to contain a single insert
that may collide with a unique constraint.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from school_ledger.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for ledger services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()`` on the caller's transaction.
    """

    def __init__(self, session: Session):
        self.session = session
