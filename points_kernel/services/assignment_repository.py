"""
AssignmentRepository -- durable point assignments with compare-and-swap
status transitions.

Every status change is one conditional statement::

    UPDATE point_assignments
       SET status = :to, decided_at = :now, decided_by_id = :actor, ...
     WHERE id = :id AND status = :from

If another decision won the race the statement matches zero rows and the
caller gets ``TransitionConflictError`` with the status the winner wrote.
No lock is held between reading an assignment and deciding it.

Flush-only; the caller owns commit and rollback.
"""

from __future__ import annotations

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from points_kernel.domain.assignment import (
    AssignmentStatus,
    PointAssignment,
    normalize_justification,
    normalize_rejection_reason,
    validate_points,
    validate_transition,
)
from points_kernel.domain.clock import Clock
from points_kernel.domain.roles import AssignmentReason
from points_kernel.exceptions import AssignmentNotFoundError, TransitionConflictError
from points_kernel.logging_config import get_logger
from points_kernel.models.assignment import PointAssignmentModel
from points_kernel.selectors.assignment_selector import AssignmentSelector
from points_kernel.services.base import BaseService

logger = get_logger("services.assignment_repository")


class AssignmentRepository(BaseService[PointAssignmentModel]):
    """Persistence for ``PointAssignment`` records."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        max_justification_length: int | None = None,
    ):
        super().__init__(session, clock)
        self._max_justification_length = max_justification_length

    # -----------------------------------------------------------------
    # Writes
    # -----------------------------------------------------------------

    def create(
        self,
        requester_id: UUID,
        target_user_id: UUID,
        points: int,
        justification: str,
        approver_id: UUID,
        *,
        reason: AssignmentReason | str | None = None,
        idempotency_key: str | None = None,
    ) -> PointAssignment:
        """
        Persist a new ``pending`` assignment.

        Raises:
            ValidationError: non-positive points or blank justification.
            IntegrityError: duplicate idempotency key (on flush).
        """
        points = validate_points(points)
        text = normalize_justification(justification, self._max_justification_length)
        reason_value = AssignmentReason(reason).value if reason is not None else None

        model = PointAssignmentModel(
            requester_id=requester_id,
            target_user_id=target_user_id,
            points=points,
            justification=text,
            reason=reason_value,
            selected_approver_id=approver_id,
            status=AssignmentStatus.PENDING.value,
            idempotency_key=idempotency_key,
            created_at=self._clock.now(),
        )
        self.session.add(model)
        self.session.flush()
        return model.to_dto()

    def transition(
        self,
        assignment_id: UUID,
        from_status: AssignmentStatus,
        to_status: AssignmentStatus,
        *,
        decided_by_id: UUID,
        rejection_reason: str | None = None,
    ) -> PointAssignment:
        """
        Conditionally move ``assignment_id`` from ``from_status`` to
        ``to_status``.

        Raises:
            InvalidAssignmentTransitionError: the edge is not in the lifecycle.
            AssignmentNotFoundError: no such assignment.
            TransitionConflictError: the stored status was not ``from_status``.
        """
        validate_transition(from_status, to_status)

        values: dict = {
            "status": to_status.value,
            "decided_at": self._clock.now(),
            "decided_by_id": decided_by_id,
        }
        if to_status == AssignmentStatus.REJECTED:
            values["rejection_reason"] = normalize_rejection_reason(rejection_reason)

        result = self.session.execute(
            update(PointAssignmentModel)
            .where(
                PointAssignmentModel.id == assignment_id,
                PointAssignmentModel.status == from_status.value,
            )
            .values(**values)
            .execution_options(synchronize_session=False),
        )

        if result.rowcount == 0:
            current = self.session.scalar(
                select(PointAssignmentModel.status).where(
                    PointAssignmentModel.id == assignment_id,
                ),
            )
            if current is None:
                raise AssignmentNotFoundError(str(assignment_id))
            logger.info(
                "assignment_transition_conflict",
                extra={
                    "assignment_id": str(assignment_id),
                    "expected_status": from_status.value,
                    "current_status": current,
                },
            )
            raise TransitionConflictError(str(assignment_id), from_status.value, current)

        return self._load(assignment_id).to_dto()

    # -----------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------

    def get(self, assignment_id: UUID) -> PointAssignment:
        model = self._load(assignment_id)
        if model is None:
            raise AssignmentNotFoundError(str(assignment_id))
        return model.to_dto()

    def get_by_idempotency_key(self, idempotency_key: str) -> PointAssignment | None:
        model = self.session.scalars(
            select(PointAssignmentModel)
            .where(PointAssignmentModel.idempotency_key == idempotency_key)
            .execution_options(populate_existing=True),
        ).one_or_none()
        return model.to_dto() if model is not None else None

    def list_pending_for_approver(self, user_id: UUID) -> list[PointAssignment]:
        """Pending assignments whose selected approver is ``user_id``, newest first."""
        return AssignmentSelector(self.session).pending_for_approver(user_id)

    def list_all_pending(self) -> list[PointAssignment]:
        return AssignmentSelector(self.session).pending_for_admin()

    def list_by_requester(self, user_id: UUID, limit: int = 20) -> list[PointAssignment]:
        return AssignmentSelector(self.session).history_for_requester(user_id, limit)

    def pending_counts(self, user_ids: Iterable[UUID]) -> dict[UUID, int]:
        """Pending assignment count per approver; absent ids count zero."""
        ids = list(user_ids)
        counts = {user_id: 0 for user_id in ids}
        if not ids:
            return counts
        rows = self.session.execute(
            select(PointAssignmentModel.selected_approver_id, func.count())
            .where(
                PointAssignmentModel.selected_approver_id.in_(ids),
                PointAssignmentModel.status == AssignmentStatus.PENDING.value,
            )
            .group_by(PointAssignmentModel.selected_approver_id),
        )
        for approver_id, count in rows:
            counts[approver_id] = count
        return counts

    # -----------------------------------------------------------------
    # Internal
    # -----------------------------------------------------------------

    def _load(self, assignment_id: UUID) -> PointAssignmentModel | None:
        # populate_existing: the row may have been changed by a Core UPDATE
        # or by another session since it entered the identity map.
        return self.session.scalars(
            select(PointAssignmentModel)
            .where(PointAssignmentModel.id == assignment_id)
            .execution_options(populate_existing=True),
        ).one_or_none()

