"""
Ledger service - the only writer of point balances.

The Ledger is responsible for:
- Appending immutable ledger entries
- Moving the cached ``users.lab_points`` balance in the same transaction,
  with one atomic in-database increment (never read-modify-write)
- Refusing debits that would make a balance negative
- Queueing a ``ledger.posted`` change event for delivery after commit

The Ledger does NOT:
- Decide who may post (callers check authority)
- Commit or roll back (the caller owns the transaction)
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from points_kernel.domain.assignment import validate_points
from points_kernel.domain.clock import Clock
from points_kernel.domain.events import ChangeEvent, ChangeType
from points_kernel.domain.ledger import EntryKind, EntrySource, LedgerEntry
from points_kernel.exceptions import InsufficientBalanceError, UserNotFoundError
from points_kernel.logging_config import get_logger
from points_kernel.models.ledger import LedgerEntryModel
from points_kernel.models.user import UserModel
from points_kernel.services.base import BaseService
from points_kernel.services.notification_service import EventSink, SessionEventPublisher

logger = get_logger("services.ledger")


class LedgerService(BaseService[LedgerEntryModel]):
    """
    Append-only ledger plus cached balance.

    All operations happen within the caller's transaction boundary.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        events: EventSink | None = None,
    ):
        super().__init__(session, clock)
        self._publisher = (
            SessionEventPublisher.for_session(session, events) if events is not None else None
        )

    def post(
        self,
        user_id: UUID,
        kind: EntryKind | str,
        amount: int,
        description: str,
        *,
        source: EntrySource | str,
        assignment_id: UUID | None = None,
        redemption_id: UUID | None = None,
        actor_id: UUID | None = None,
    ) -> LedgerEntry:
        """
        Append one entry and move the balance by its signed amount.

        Raises:
            InvalidAmountError: amount is not a positive int.
            UserNotFoundError: no such user.
            InsufficientBalanceError: a debit larger than the balance.
            IntegrityError: a second posting for the same assignment.
        """
        kind = EntryKind(kind)
        source = EntrySource(source)
        amount = validate_points(amount)

        stmt = update(UserModel).where(UserModel.id == user_id)
        if kind == EntryKind.CREDIT:
            stmt = stmt.values(lab_points=UserModel.lab_points + amount)
        else:
            stmt = stmt.where(UserModel.lab_points >= amount).values(
                lab_points=UserModel.lab_points - amount,
            )
        result = self.session.execute(
            stmt.execution_options(synchronize_session=False),
        )

        if result.rowcount == 0:
            balance = self._select_balance(user_id)
            if balance is None:
                raise UserNotFoundError(str(user_id))
            logger.warning(
                "ledger_debit_refused",
                extra={
                    "user_id": str(user_id),
                    "balance": balance,
                    "requested": amount,
                },
            )
            raise InsufficientBalanceError(str(user_id), balance, amount)

        self._expire_cached_balance(user_id)

        entry = LedgerEntryModel(
            user_id=user_id,
            kind=kind.value,
            amount=amount,
            description=description or "",
            source=source.value,
            assignment_id=assignment_id,
            redemption_id=redemption_id,
            actor_id=actor_id,
            created_at=self._clock.now(),
        )
        self.session.add(entry)
        self.session.flush()

        logger.info(
            "ledger_entry_posted",
            extra={
                "entry_id": str(entry.id),
                "user_id": str(user_id),
                "kind": kind.value,
                "amount": amount,
                "source": source.value,
                "assignment_id": str(assignment_id) if assignment_id else None,
            },
        )

        if self._publisher is not None:
            self._publisher.publish(
                ChangeEvent(
                    type=ChangeType.LEDGER_POSTED,
                    user_id=user_id,
                    payload={
                        "entryId": str(entry.id),
                        "kind": kind.value,
                        "amount": amount,
                        "source": source.value,
                    },
                ),
            )

        return entry.to_dto()

    def balance_of(self, user_id: UUID) -> int:
        """Current balance, read from the store."""
        balance = self._select_balance(user_id)
        if balance is None:
            raise UserNotFoundError(str(user_id))
        return balance

    def _select_balance(self, user_id: UUID) -> int | None:
        return self.session.scalar(
            select(UserModel.lab_points).where(UserModel.id == user_id),
        )

    def _expire_cached_balance(self, user_id: UUID) -> None:
        # A loaded UserModel would otherwise keep the pre-update balance.
        key = self.session.identity_key(UserModel, user_id)
        cached = self.session.identity_map.get(key)
        if cached is not None:
            self.session.expire(cached, ["lab_points"])
