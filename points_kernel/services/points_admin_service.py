"""
PointsAdminService -- direct administrative balance adjustments.

An adm may credit or debit any user outside the assignment workflow (welcome
bonuses, corrections).  Adjustments are ordinary ledger entries with source
``admin_grant``; nothing is ever edited in place.

Flush-only; the caller owns the transaction.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy.orm import Session

from points_kernel.domain.clock import Clock
from points_kernel.domain.ledger import EntryKind, EntrySource, LedgerEntry
from points_kernel.exceptions import AuthorizationError, ValidationError
from points_kernel.logging_config import LogContext, get_logger
from points_kernel.models.ledger import LedgerEntryModel
from points_kernel.services.base import BaseService
from points_kernel.services.directory_service import DirectoryPort, SqlDirectory
from points_kernel.services.ledger_service import LedgerService
from points_kernel.services.notification_service import EventSink

logger = get_logger("services.points_admin")


class PointsAdminService(BaseService[LedgerEntryModel]):
    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        events: EventSink | None = None,
        directory: DirectoryPort | None = None,
    ):
        super().__init__(session, clock)
        self._directory = directory or SqlDirectory(session)
        self._ledger = LedgerService(session, self._clock, events)

    def grant(
        self,
        admin_id: UUID,
        user_id: UUID,
        kind: EntryKind | str,
        amount: int,
        description: str,
    ) -> LedgerEntry:
        """
        Credit or debit ``user_id`` on behalf of adm ``admin_id``.

        Raises:
            AuthorizationError: actor is not an active adm.
            ValidationError: blank description or bad amount.
            UserNotFoundError: unknown admin or user.
            InsufficientBalanceError: debit larger than the balance.
        """
        with LogContext.bind(actor_id=admin_id, user_id=user_id):
            admin = self._directory.get_user(admin_id)
            if not (admin.is_admin and admin.is_active):
                raise AuthorizationError(str(admin_id), "grant points", "adm role required")
            if not isinstance(description, str) or not description.strip():
                raise ValidationError("description", "must not be empty")

            entry = self._ledger.post(
                user_id,
                kind,
                amount,
                description.strip(),
                source=EntrySource.ADMIN_GRANT,
                actor_id=admin_id,
            )
            logger.info(
                "admin_points_granted",
                extra={
                    "entry_id": str(entry.id),
                    "kind": entry.kind.value,
                    "amount": entry.amount,
                },
            )
            return entry
