"""
ReconciliationService -- detect ledger/balance/assignment disagreement.

Three checks, all read-only:

* balance drift: ``users.lab_points`` differs from the signed sum of the
  user's ledger entries.
* unposted approvals: an ``approved`` assignment with no ledger entry.
* orphan postings: an ``assignment`` ledger entry whose assignment is not
  ``approved`` (or whose amount differs from the assignment's points).

The approve path makes all three impossible by construction; this service is
how an operator verifies that after an ``InconsistentStateError`` alert, a
manual database edit, or a restore.  It never repairs anything.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import and_, func, or_, select

from points_kernel.domain.assignment import AssignmentStatus
from points_kernel.domain.ledger import EntrySource
from points_kernel.exceptions import InconsistentStateError
from points_kernel.logging_config import get_logger
from points_kernel.models.assignment import PointAssignmentModel
from points_kernel.models.ledger import LedgerEntryModel
from points_kernel.models.user import UserModel
from points_kernel.selectors.ledger_selector import signed_amount_expr
from points_kernel.services.base import BaseService

logger = get_logger("services.reconciliation")


@dataclass(frozen=True)
class BalanceDrift:
    user_id: UUID
    cached_balance: int
    ledger_sum: int

    @property
    def difference(self) -> int:
        return self.cached_balance - self.ledger_sum


@dataclass(frozen=True)
class ReconciliationReport:
    checked_at: datetime
    balance_drift: tuple[BalanceDrift, ...] = field(default_factory=tuple)
    unposted_approvals: tuple[UUID, ...] = field(default_factory=tuple)
    orphan_postings: tuple[UUID, ...] = field(default_factory=tuple)

    @property
    def is_clean(self) -> bool:
        return not (self.balance_drift or self.unposted_approvals or self.orphan_postings)

    def as_dict(self) -> dict[str, Any]:
        return {
            "checked_at": self.checked_at.isoformat(),
            "is_clean": self.is_clean,
            "balance_drift": [
                {
                    "user_id": str(d.user_id),
                    "cached_balance": d.cached_balance,
                    "ledger_sum": d.ledger_sum,
                    "difference": d.difference,
                }
                for d in self.balance_drift
            ],
            "unposted_approvals": [str(a) for a in self.unposted_approvals],
            "orphan_postings": [str(e) for e in self.orphan_postings],
        }


class ReconciliationService(BaseService[LedgerEntryModel]):
    def find_balance_drift(self) -> list[BalanceDrift]:
        ledger_sum = func.coalesce(func.sum(signed_amount_expr()), 0)
        stmt = (
            select(UserModel.id, UserModel.lab_points, ledger_sum)
            .select_from(UserModel)
            .outerjoin(LedgerEntryModel, LedgerEntryModel.user_id == UserModel.id)
            .group_by(UserModel.id, UserModel.lab_points)
            .order_by(UserModel.id)
        )
        return [
            BalanceDrift(user_id=user_id, cached_balance=cached, ledger_sum=int(total))
            for user_id, cached, total in self.session.execute(stmt)
            if cached != int(total)
        ]

    def find_unposted_approvals(self) -> list[UUID]:
        stmt = (
            select(PointAssignmentModel.id)
            .outerjoin(
                LedgerEntryModel,
                LedgerEntryModel.assignment_id == PointAssignmentModel.id,
            )
            .where(
                PointAssignmentModel.status == AssignmentStatus.APPROVED.value,
                LedgerEntryModel.id.is_(None),
            )
            .order_by(PointAssignmentModel.id)
        )
        return list(self.session.scalars(stmt))

    def find_orphan_postings(self) -> list[UUID]:
        stmt = (
            select(LedgerEntryModel.id)
            .outerjoin(
                PointAssignmentModel,
                PointAssignmentModel.id == LedgerEntryModel.assignment_id,
            )
            .where(
                LedgerEntryModel.source == EntrySource.ASSIGNMENT.value,
                or_(
                    PointAssignmentModel.id.is_(None),
                    PointAssignmentModel.status != AssignmentStatus.APPROVED.value,
                    and_(
                        PointAssignmentModel.id.is_not(None),
                        PointAssignmentModel.points != LedgerEntryModel.amount,
                    ),
                ),
            )
            .order_by(LedgerEntryModel.id)
        )
        return list(self.session.scalars(stmt))

    def run(self) -> ReconciliationReport:
        report = ReconciliationReport(
            checked_at=self._clock.now(),
            balance_drift=tuple(self.find_balance_drift()),
            unposted_approvals=tuple(self.find_unposted_approvals()),
            orphan_postings=tuple(self.find_orphan_postings()),
        )
        log = logger.info if report.is_clean else logger.error
        log(
            "reconciliation_completed",
            extra={
                "is_clean": report.is_clean,
                "balance_drift_count": len(report.balance_drift),
                "unposted_approval_count": len(report.unposted_approvals),
                "orphan_posting_count": len(report.orphan_postings),
            },
        )
        return report

    def assert_consistent(self) -> ReconciliationReport:
        """
        Run every check.

        Raises:
            InconsistentStateError: at least one check found a problem.
        """
        report = self.run()
        if not report.is_clean:
            logger.critical("reconciliation_failed", extra=report.as_dict())
            raise InconsistentStateError(
                f"Reconciliation failed: {len(report.balance_drift)} drifted balances, "
                f"{len(report.unposted_approvals)} unposted approvals, "
                f"{len(report.orphan_postings)} orphan postings",
            )
        return report
