"""
Ledger value objects (``points_kernel.domain.ledger``).

A ledger entry is ``{kind, amount}`` with a strictly positive amount; the sign
comes from ``kind``.  Entries are never updated or deleted, corrections are
new offsetting entries.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID


class EntryKind(str, Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class EntrySource(str, Enum):
    """Which code path created the entry."""

    ADMIN_GRANT = "admin_grant"
    ASSIGNMENT = "assignment"
    REDEMPTION = "redemption"
    REDEMPTION_REFUND = "redemption_refund"


def signed(kind: EntryKind, amount: int) -> int:
    """Signed balance delta for an entry."""
    return amount if kind == EntryKind.CREDIT else -amount


@dataclass(frozen=True)
class LedgerEntry:
    """Immutable ledger entry."""

    id: UUID
    user_id: UUID
    kind: EntryKind
    amount: int
    description: str
    source: EntrySource
    created_at: datetime | None = None
    assignment_id: UUID | None = None
    redemption_id: UUID | None = None
    actor_id: UUID | None = None

    @property
    def signed_amount(self) -> int:
        return signed(self.kind, self.amount)


@dataclass(frozen=True)
class UserBalance:
    """A user's cached balance, as shown in the points ranking."""

    user_id: UUID
    display_name: str
    lab_points: int
    department: str | None = None
