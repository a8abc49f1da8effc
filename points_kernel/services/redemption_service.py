"""
RedemptionService -- spend points on catalog rewards.

A redemption is paid up front with a ``redemption`` ledger debit and then
waits for an adm to hand over the reward (``complete``) or to cancel it.
Cancelling never deletes the debit; it posts an offsetting
``redemption_refund`` credit.

Colaboradores may only redeem inside the configured window (days of the
month, inclusive).  Gestores and adms are never restricted, and with no
window configured redemption is always open.

Flush-only; the caller owns the transaction.
"""

from __future__ import annotations

from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from points_kernel.domain.assignment import validate_points
from points_kernel.domain.clock import Clock
from points_kernel.domain.events import ChangeEvent, ChangeType
from points_kernel.domain.ledger import EntryKind, EntrySource
from points_kernel.domain.redemption import Redemption, RedemptionPeriod, RedemptionStatus
from points_kernel.domain.roles import DirectoryUser, Role
from points_kernel.exceptions import (
    AuthorizationError,
    RedemptionAlreadyClosedError,
    RedemptionNotFoundError,
    RedemptionWindowClosedError,
)
from points_kernel.logging_config import LogContext, get_logger
from points_kernel.models.redemption import RedemptionModel, RedemptionPeriodModel
from points_kernel.services.base import BaseService
from points_kernel.services.directory_service import DirectoryPort, SqlDirectory
from points_kernel.services.ledger_service import LedgerService
from points_kernel.services.notification_service import EventSink, SessionEventPublisher

logger = get_logger("services.redemption")

GENERAL_PERIOD = "general"


class RedemptionService(BaseService[RedemptionModel]):
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
        self._publisher = (
            SessionEventPublisher.for_session(session, events) if events is not None else None
        )

    # -----------------------------------------------------------------
    # Redemption window
    # -----------------------------------------------------------------

    def get_period(self) -> RedemptionPeriod | None:
        model = self._period_model()
        return model.to_dto() if model is not None else None

    def set_period(self, admin_id: UUID, start_day: int, end_day: int) -> RedemptionPeriod:
        """
        Configure the window.

        Raises:
            AuthorizationError: actor is not an active adm.
            ValidationError: days outside 1..31 or start after end.
        """
        self._require_admin(admin_id, "configure redemption period")
        period = RedemptionPeriod(start_day=start_day, end_day=end_day)

        model = self._period_model()
        if model is None:
            model = RedemptionPeriodModel(name=GENERAL_PERIOD)
            self.session.add(model)
        model.start_day = period.start_day
        model.end_day = period.end_day
        model.updated_by_id = admin_id
        model.updated_at = self._clock.now()
        self.session.flush()

        logger.info(
            "redemption_period_set",
            extra={"start_day": period.start_day, "end_day": period.end_day},
        )
        return period

    def clear_period(self, admin_id: UUID) -> RedemptionPeriod | None:
        """
        Remove the window so redemption is open every day again.

        Returns the removed window, or None when none was configured.

        Raises:
            AuthorizationError: actor is not an active adm.
        """
        self._require_admin(admin_id, "clear redemption period")
        model = self._period_model()
        if model is None:
            return None
        removed = model.to_dto()
        self.session.delete(model)
        self.session.flush()

        logger.info(
            "redemption_period_cleared",
            extra={"start_day": removed.start_day, "end_day": removed.end_day},
        )
        return removed

    def is_open_for(self, user: DirectoryUser) -> bool:
        if user.role != Role.COLABORADOR:
            return True
        period = self.get_period()
        if period is None:
            return True
        return period.is_open_on(self._clock.now().day)

    # -----------------------------------------------------------------
    # Redemptions
    # -----------------------------------------------------------------

    def redeem(self, user_id: UUID, reward_id: UUID, cost: int) -> Redemption:
        """
        Debit ``cost`` points and record a pending redemption.

        Raises:
            RedemptionWindowClosedError: colaborador outside the window.
            InvalidAmountError: cost is not a positive int.
            InsufficientBalanceError: balance below cost.
            UserNotFoundError: unknown user.
        """
        with LogContext.bind(actor_id=user_id, user_id=user_id):
            user = self._directory.get_user(user_id)
            if not user.is_active:
                raise AuthorizationError(str(user_id), "redeem rewards", "inactive user")
            cost = validate_points(cost)

            if not self.is_open_for(user):
                period = self.get_period()
                raise RedemptionWindowClosedError(
                    self._clock.now().day, period.start_day, period.end_day,
                )

            redemption_id = uuid4()
            entry = self._ledger.post(
                user_id,
                EntryKind.DEBIT,
                cost,
                f"Reward redemption {reward_id}",
                source=EntrySource.REDEMPTION,
                redemption_id=redemption_id,
                actor_id=user_id,
            )
            model = RedemptionModel(
                id=redemption_id,
                user_id=user_id,
                reward_id=reward_id,
                cost=cost,
                status=RedemptionStatus.PENDING.value,
                debit_entry_id=entry.id,
                created_at=self._clock.now(),
            )
            self.session.add(model)
            self.session.flush()

            self._publish(ChangeType.REDEMPTION_CREATED, model)
            logger.info(
                "redemption_created",
                extra={
                    "redemption_id": str(redemption_id),
                    "reward_id": str(reward_id),
                    "cost": cost,
                },
            )
            return model.to_dto()

    def complete(self, redemption_id: UUID, admin_id: UUID) -> Redemption:
        """Mark a pending redemption as delivered."""
        self._require_admin(admin_id, "complete redemption")
        model = self._close(redemption_id, RedemptionStatus.COMPLETED, admin_id)
        logger.info("redemption_completed", extra={"redemption_id": str(redemption_id)})
        return model.to_dto()

    def cancel(self, redemption_id: UUID, admin_id: UUID) -> Redemption:
        """Cancel a pending redemption and refund its cost."""
        self._require_admin(admin_id, "cancel redemption")
        model = self._close(redemption_id, RedemptionStatus.CANCELLED, admin_id)

        refund = self._ledger.post(
            model.user_id,
            EntryKind.CREDIT,
            model.cost,
            f"Refund of cancelled redemption {redemption_id}",
            source=EntrySource.REDEMPTION_REFUND,
            redemption_id=redemption_id,
            actor_id=admin_id,
        )
        self.session.execute(
            update(RedemptionModel)
            .where(RedemptionModel.id == redemption_id)
            .values(refund_entry_id=refund.id)
            .execution_options(synchronize_session=False),
        )
        model = self._load(redemption_id)

        logger.info(
            "redemption_cancelled",
            extra={"redemption_id": str(redemption_id), "refund_entry_id": str(refund.id)},
        )
        return model.to_dto()

    def get(self, redemption_id: UUID) -> Redemption:
        model = self._load(redemption_id)
        if model is None:
            raise RedemptionNotFoundError(str(redemption_id))
        return model.to_dto()

    def list_for_user(self, user_id: UUID) -> list[Redemption]:
        stmt = (
            select(RedemptionModel)
            .where(RedemptionModel.user_id == user_id)
            .order_by(RedemptionModel.created_at.desc(), RedemptionModel.id.desc())
        )
        return [m.to_dto() for m in self.session.scalars(stmt)]

    # -----------------------------------------------------------------
    # Internal
    # -----------------------------------------------------------------

    def _close(
        self,
        redemption_id: UUID,
        status: RedemptionStatus,
        admin_id: UUID,
    ) -> RedemptionModel:
        result = self.session.execute(
            update(RedemptionModel)
            .where(
                RedemptionModel.id == redemption_id,
                RedemptionModel.status == RedemptionStatus.PENDING.value,
            )
            .values(status=status.value, closed_at=self._clock.now(), closed_by_id=admin_id)
            .execution_options(synchronize_session=False),
        )
        model = self._load(redemption_id)
        if model is None:
            raise RedemptionNotFoundError(str(redemption_id))
        if result.rowcount == 0:
            raise RedemptionAlreadyClosedError(str(redemption_id), model.status)
        self._publish(ChangeType.REDEMPTION_CLOSED, model)
        return model

    def _load(self, redemption_id: UUID) -> RedemptionModel | None:
        return self.session.scalars(
            select(RedemptionModel)
            .where(RedemptionModel.id == redemption_id)
            .execution_options(populate_existing=True),
        ).one_or_none()

    def _period_model(self) -> RedemptionPeriodModel | None:
        return self.session.scalars(
            select(RedemptionPeriodModel).where(RedemptionPeriodModel.name == GENERAL_PERIOD),
        ).one_or_none()

    def _require_admin(self, actor_id: UUID, action: str) -> None:
        actor = self._directory.get_user(actor_id)
        if not (actor.is_admin and actor.is_active):
            raise AuthorizationError(str(actor_id), action, "adm role required")

    def _publish(self, change_type: ChangeType, model: RedemptionModel) -> None:
        if self._publisher is None:
            return
        self._publisher.publish(
            ChangeEvent(
                type=change_type,
                user_id=model.user_id,
                payload={
                    "redemptionId": str(model.id),
                    "status": model.status,
                    "cost": model.cost,
                },
            ),
        )
