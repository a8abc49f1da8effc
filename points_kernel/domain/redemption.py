"""Reward redemption value objects and the redemption window rule."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID

from points_kernel.exceptions import ValidationError


class RedemptionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class Redemption:
    id: UUID
    user_id: UUID
    reward_id: UUID
    cost: int
    status: RedemptionStatus
    debit_entry_id: UUID
    refund_entry_id: UUID | None = None
    created_at: datetime | None = None
    closed_at: datetime | None = None


@dataclass(frozen=True)
class RedemptionPeriod:
    """Days of the month (inclusive) during which colaboradores may redeem."""

    start_day: int
    end_day: int

    def __post_init__(self) -> None:
        for name, day in (("start_day", self.start_day), ("end_day", self.end_day)):
            if not isinstance(day, int) or isinstance(day, bool) or not 1 <= day <= 31:
                raise ValidationError(name, "must be between 1 and 31")
        if self.start_day > self.end_day:
            raise ValidationError("start_day", "must be less than or equal to end_day")

    def is_open_on(self, day: int) -> bool:
        return self.start_day <= day <= self.end_day

    def days_until_open(self, day: int, days_in_month: int) -> int:
        """Days from ``day`` until the window next opens (0 when open)."""
        if self.is_open_on(day):
            return 0
        if day < self.start_day:
            return self.start_day - day
        return days_in_month - day + self.start_day
