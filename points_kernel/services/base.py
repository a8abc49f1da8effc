"""
BaseService -- common constructor for kernel services.

Services receive a SQLAlchemy ``Session`` from the caller and persist with
``session.flush()``.  They never commit or roll back; the caller (the
assignment workflow, ``session_scope()`` or a test) owns the transaction, so
a status change and its ledger entry either land together or not at all.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from points_kernel.db.base import Base
from points_kernel.domain.clock import Clock, SystemClock

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for write services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``.

    Non-goals:
        - Read-only queries belong in ``points_kernel/selectors/``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self._clock = clock or SystemClock()
