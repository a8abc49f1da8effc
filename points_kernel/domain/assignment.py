"""
Point assignment domain types (``points_kernel.domain.assignment``).

Responsibility
--------------
Pure value objects for the assignment approval workflow: the lifecycle state
machine, the frozen ``PointAssignment`` snapshot, and input validation shared
by the repository and the workflow engine.

Architecture position
---------------------
Kernel domain layer.  ZERO I/O.  No imports from ``db/``, ``models/``,
``services/`` or ``selectors/``.

Lifecycle
---------
::

    pending --approve--> approved   (terminal, exactly one ledger credit)
       |
       +----reject-----> rejected   (terminal, no ledger entry)

There is no cancel and no re-open.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID

from points_kernel.domain.roles import AssignmentReason
from points_kernel.exceptions import (
    InvalidAmountError,
    InvalidAssignmentTransitionError,
    ValidationError,
)


class AssignmentStatus(str, Enum):
    """Point assignment lifecycle states."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


ASSIGNMENT_TRANSITIONS: dict[AssignmentStatus, frozenset[AssignmentStatus]] = {
    AssignmentStatus.PENDING: frozenset({
        AssignmentStatus.APPROVED,
        AssignmentStatus.REJECTED,
    }),
    AssignmentStatus.APPROVED: frozenset(),
    AssignmentStatus.REJECTED: frozenset(),
}

TERMINAL_ASSIGNMENT_STATUSES: frozenset[AssignmentStatus] = frozenset({
    AssignmentStatus.APPROVED,
    AssignmentStatus.REJECTED,
})


def validate_transition(from_status: AssignmentStatus, to_status: AssignmentStatus) -> None:
    """Raise ``InvalidAssignmentTransitionError`` unless the edge exists."""
    if to_status not in ASSIGNMENT_TRANSITIONS.get(from_status, frozenset()):
        raise InvalidAssignmentTransitionError(from_status.value, to_status.value)


def validate_points(points: object) -> int:
    """Points must be a positive ``int`` (``bool`` is rejected)."""
    if not isinstance(points, int) or isinstance(points, bool) or points <= 0:
        raise InvalidAmountError(points)
    return points


def normalize_justification(justification: object, max_length: int | None = None) -> str:
    """Return the stripped justification or raise ``ValidationError``."""
    if not isinstance(justification, str) or not justification.strip():
        raise ValidationError("justification", "must not be empty")
    text = justification.strip()
    if max_length is not None and len(text) > max_length:
        raise ValidationError(
            "justification", f"must be at most {max_length} characters",
        )
    return text


def normalize_rejection_reason(reason: str | None) -> str | None:
    """Blank rejection reasons are stored as ``None``."""
    if reason is None:
        return None
    text = reason.strip()
    return text or None


@dataclass(frozen=True)
class PointAssignment:
    """Immutable snapshot of a point assignment."""

    id: UUID
    requester_id: UUID
    target_user_id: UUID
    points: int
    justification: str
    selected_approver_id: UUID
    status: AssignmentStatus = AssignmentStatus.PENDING
    reason: AssignmentReason | None = None
    rejection_reason: str | None = None
    decided_by_id: UUID | None = None
    created_at: datetime | None = None
    decided_at: datetime | None = None
    idempotency_key: str | None = None

    @property
    def is_pending(self) -> bool:
        return self.status == AssignmentStatus.PENDING

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_ASSIGNMENT_STATUSES
