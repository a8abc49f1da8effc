"""
Module: points_kernel.models.redemption
Responsibility: ORM persistence for reward redemptions and the monthly
    redemption window.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - cost > 0; status is pending / completed / cancelled.
    - Every redemption references the debit entry that paid for it.
    - The window is a single row keyed by name ('general'); both days are in
      1..31 and start_day <= end_day.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from points_kernel.db.base import Base, UUIDString

if TYPE_CHECKING:
    from points_kernel.domain.redemption import Redemption, RedemptionPeriod


class RedemptionModel(Base):
    """A user's claim on a reward, paid with a ledger debit."""

    __tablename__ = "redemptions"

    __table_args__ = (
        CheckConstraint("cost > 0", name="ck_redemptions_positive_cost"),
        CheckConstraint(
            "status IN ('pending', 'completed', 'cancelled')",
            name="ck_redemptions_valid_status",
        ),
        Index("ix_redemptions_user_created", "user_id", "created_at"),
        Index("ix_redemptions_status", "status"),
    )

    user_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("users.id"), nullable=False,
    )
    reward_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    cost: Mapped[int] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    debit_entry_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("ledger_entries.id"), nullable=False,
    )
    refund_entry_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("ledger_entries.id"), nullable=True,
    )
    closed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    closed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return f"<Redemption {self.id} user={self.user_id} cost={self.cost} status={self.status}>"

    def to_dto(self) -> Redemption:
        from points_kernel.domain.redemption import Redemption, RedemptionStatus

        return Redemption(
            id=self.id,
            user_id=self.user_id,
            reward_id=self.reward_id,
            cost=self.cost,
            status=RedemptionStatus(self.status),
            debit_entry_id=self.debit_entry_id,
            refund_entry_id=self.refund_entry_id,
            created_at=self.created_at,
            closed_at=self.closed_at,
        )


class RedemptionPeriodModel(Base):
    """Configured redemption window (days of month, inclusive)."""

    __tablename__ = "redemption_periods"

    __table_args__ = (
        CheckConstraint(
            "start_day BETWEEN 1 AND 31 AND end_day BETWEEN 1 AND 31",
            name="ck_redemption_periods_day_range",
        ),
        CheckConstraint("start_day <= end_day", name="ck_redemption_periods_order"),
    )

    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    start_day: Mapped[int] = mapped_column(Integer, nullable=False)
    end_day: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)

    def to_dto(self) -> RedemptionPeriod:
        from points_kernel.domain.redemption import RedemptionPeriod

        return RedemptionPeriod(start_day=self.start_day, end_day=self.end_day)
