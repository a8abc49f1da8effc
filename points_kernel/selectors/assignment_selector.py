"""
Module: points_kernel.selectors.assignment_selector
Responsibility: Read views over point assignments -- the approver inbox, the
    adm overview and a requester's history.
Architecture position: Kernel > Selectors.

Every list is ordered newest first (created_at, then id as tie-breaker) and
reads current database state, not identity-map copies.
"""

from uuid import UUID

from sqlalchemy import Select, select

from points_kernel.domain.assignment import AssignmentStatus, PointAssignment
from points_kernel.models.assignment import PointAssignmentModel
from points_kernel.selectors.base import BaseSelector

DEFAULT_HISTORY_LIMIT = 20


class AssignmentSelector(BaseSelector[PointAssignmentModel]):
    """Read-only assignment queries."""

    def __init__(self, session, history_limit: int = DEFAULT_HISTORY_LIMIT):
        super().__init__(session)
        self._history_limit = history_limit

    def get(self, assignment_id: UUID) -> PointAssignment | None:
        model = self.session.scalars(
            select(PointAssignmentModel)
            .where(PointAssignmentModel.id == assignment_id)
            .execution_options(populate_existing=True),
        ).one_or_none()
        return model.to_dto() if model is not None else None

    def pending_for_approver(self, user_id: UUID) -> list[PointAssignment]:
        """Pending assignments awaiting ``user_id``'s decision."""
        return self._fetch(
            select(PointAssignmentModel).where(
                PointAssignmentModel.selected_approver_id == user_id,
                PointAssignmentModel.status == AssignmentStatus.PENDING.value,
            ),
        )

    def pending_for_admin(self) -> list[PointAssignment]:
        """Every pending assignment; the adm overview."""
        return self._fetch(
            select(PointAssignmentModel).where(
                PointAssignmentModel.status == AssignmentStatus.PENDING.value,
            ),
        )

    def history_for_requester(
        self,
        user_id: UUID,
        limit: int | None = None,
    ) -> list[PointAssignment]:
        """
        The most recent assignments ``user_id`` requested, any status.

        Raises:
            ValidationError: ``limit`` is not a positive integer.
        """
        limit = self._validated_limit(limit if limit is not None else self._history_limit)
        return self._fetch(
            select(PointAssignmentModel).where(
                PointAssignmentModel.requester_id == user_id,
            ),
            limit=limit,
        )

    def _fetch(self, stmt: Select, limit: int | None = None) -> list[PointAssignment]:
        stmt = stmt.order_by(
            PointAssignmentModel.created_at.desc(),
            PointAssignmentModel.id.desc(),
        ).execution_options(populate_existing=True)
        if limit is not None:
            stmt = stmt.limit(limit)
        return [m.to_dto() for m in self.session.scalars(stmt)]
