"""
Module: points_kernel.models.ledger
Responsibility: ORM persistence for ledger entries, the append-only record of
    every balance change.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - amount > 0; the sign comes from kind (check constraints).
    - At most one entry per assignment (unique assignment_id), the storage
      guard against double-crediting an approval.
    - Entries are never updated or deleted (ORM listeners).

Failure modes:
    - IntegrityError on a second entry for the same assignment.
    - ImmutabilityViolationError on UPDATE/DELETE.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from points_kernel.db.base import Base, UUIDString

if TYPE_CHECKING:
    from points_kernel.domain.ledger import LedgerEntry


class LedgerEntryModel(Base):
    """Persistent ledger entry.  Append-only."""

    __tablename__ = "ledger_entries"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_ledger_entries_positive_amount"),
        CheckConstraint("kind IN ('credit', 'debit')", name="ck_ledger_entries_valid_kind"),
        CheckConstraint(
            "source IN ('admin_grant', 'assignment', 'redemption', 'redemption_refund')",
            name="ck_ledger_entries_valid_source",
        ),
        Index("ix_ledger_entries_user_created", "user_id", "created_at"),
    )

    user_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("users.id"), nullable=False,
    )
    kind: Mapped[str] = mapped_column(String(10), nullable=False)
    amount: Mapped[int] = mapped_column(nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    source: Mapped[str] = mapped_column(String(30), nullable=False)
    assignment_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("point_assignments.id"), nullable=True, unique=True,
    )
    redemption_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    actor_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<LedgerEntry {self.id} user={self.user_id} {self.kind} {self.amount}>"

    def to_dto(self) -> LedgerEntry:
        """Convert ORM model to frozen domain DTO."""
        from points_kernel.domain.ledger import EntryKind, EntrySource, LedgerEntry

        return LedgerEntry(
            id=self.id,
            user_id=self.user_id,
            kind=EntryKind(self.kind),
            amount=self.amount,
            description=self.description,
            source=EntrySource(self.source),
            created_at=self.created_at,
            assignment_id=self.assignment_id,
            redemption_id=self.redemption_id,
            actor_id=self.actor_id,
        )
