"""
Module: points_kernel.selectors.ledger_selector
Responsibility: Read views over balances and ledger entries.
Architecture position: Kernel > Selectors.

``balance_of`` returns the cached balance; ``ledger_sum`` recomputes it from
the entries.  The two are equal whenever the ledger is consistent.
``top_balances`` ranks users by cached balance.
"""

from uuid import UUID

from sqlalchemy import case, func, select

from points_kernel.domain.ledger import LedgerEntry, UserBalance
from points_kernel.exceptions import UserNotFoundError
from points_kernel.models.ledger import LedgerEntryModel
from points_kernel.models.user import UserModel
from points_kernel.selectors.base import BaseSelector

DEFAULT_RANKING_LIMIT = 5


def signed_amount_expr():
    """SQL expression for an entry's signed amount."""
    return case(
        (LedgerEntryModel.kind == "credit", LedgerEntryModel.amount),
        else_=-LedgerEntryModel.amount,
    )


class LedgerSelector(BaseSelector[LedgerEntryModel]):
    def balance_of(self, user_id: UUID) -> int:
        balance = self.session.scalar(
            select(UserModel.lab_points).where(UserModel.id == user_id),
        )
        if balance is None:
            raise UserNotFoundError(str(user_id))
        return balance

    def entries_for(self, user_id: UUID, limit: int = 50) -> list[LedgerEntry]:
        """Entries for ``user_id``, newest first."""
        limit = self._validated_limit(limit)
        stmt = (
            select(LedgerEntryModel)
            .where(LedgerEntryModel.user_id == user_id)
            .order_by(LedgerEntryModel.created_at.desc(), LedgerEntryModel.id.desc())
            .limit(limit)
        )
        return [m.to_dto() for m in self.session.scalars(stmt)]

    def ledger_sum(self, user_id: UUID) -> int:
        """Signed sum of every entry for ``user_id`` (0 when none)."""
        total = self.session.scalar(
            select(func.coalesce(func.sum(signed_amount_expr()), 0)).where(
                LedgerEntryModel.user_id == user_id,
            ),
        )
        return int(total)

    def entry_for_assignment(self, assignment_id: UUID) -> LedgerEntry | None:
        model = self.session.scalars(
            select(LedgerEntryModel).where(LedgerEntryModel.assignment_id == assignment_id),
        ).one_or_none()
        return model.to_dto() if model is not None else None

    def top_balances(self, limit: int = DEFAULT_RANKING_LIMIT) -> list[UserBalance]:
        """
        The points ranking: highest cached balances first, ties by user id.

        Raises:
            ValidationError: ``limit`` is not a positive integer.
        """
        stmt = (
            select(UserModel.id, UserModel.display_name, UserModel.lab_points, UserModel.department)
            .order_by(UserModel.lab_points.desc(), UserModel.id)
            .limit(self._validated_limit(limit))
        )
        return [
            UserBalance(
                user_id=row.id,
                display_name=row.display_name,
                lab_points=row.lab_points,
                department=row.department,
            )
            for row in self.session.execute(stmt)
        ]
