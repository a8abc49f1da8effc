"""
Module: points_kernel.models.assignment
Responsibility: ORM persistence for point assignments awaiting or carrying an
    approval decision.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - status is one of pending / approved / rejected (check constraint); the
      only status writes are conditional UPDATEs from the repository.
    - points > 0 (check constraint).
    - selected_approver_id is fixed at creation.
    - idempotency_key is unique when present.
    - Covering indexes for the approver inbox and requester history.

Failure modes:
    - IntegrityError on a duplicate idempotency key.
    - ImmutabilityViolationError on ORM edits of identity fields, on any
      edit of a terminal assignment, and on DELETE.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from points_kernel.db.base import Base, UUIDString

if TYPE_CHECKING:
    from points_kernel.domain.assignment import PointAssignment


class PointAssignmentModel(Base):
    """Persistent point assignment."""

    __tablename__ = "point_assignments"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="ck_point_assignments_valid_status",
        ),
        CheckConstraint("points > 0", name="ck_point_assignments_positive_points"),
        Index(
            "ix_point_assignments_approver_inbox",
            "selected_approver_id", "status", "created_at",
        ),
        Index("ix_point_assignments_status_created", "status", "created_at"),
        Index("ix_point_assignments_requester_created", "requester_id", "created_at"),
    )

    requester_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("users.id"), nullable=False,
    )
    target_user_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("users.id"), nullable=False,
    )
    points: Mapped[int] = mapped_column(nullable=False)
    justification: Mapped[str] = mapped_column(Text, nullable=False)
    reason: Mapped[str | None] = mapped_column(String(60), nullable=True)
    selected_approver_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("users.id"), nullable=False,
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    decided_by_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("users.id"), nullable=True,
    )
    idempotency_key: Mapped[str | None] = mapped_column(
        String(200), nullable=True, unique=True,
    )
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    decided_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return (
            f"<PointAssignment {self.id} target={self.target_user_id} "
            f"points={self.points} status={self.status}>"
        )

    def to_dto(self) -> PointAssignment:
        """Convert ORM model to frozen domain DTO."""
        from points_kernel.domain.assignment import AssignmentStatus, PointAssignment
        from points_kernel.domain.roles import AssignmentReason

        return PointAssignment(
            id=self.id,
            requester_id=self.requester_id,
            target_user_id=self.target_user_id,
            points=self.points,
            justification=self.justification,
            selected_approver_id=self.selected_approver_id,
            status=AssignmentStatus(self.status),
            reason=AssignmentReason(self.reason) if self.reason else None,
            rejection_reason=self.rejection_reason,
            decided_by_id=self.decided_by_id,
            created_at=self.created_at,
            decided_at=self.decided_at,
            idempotency_key=self.idempotency_key,
        )
