"""
AssignmentWorkflow -- create, approve and reject point assignments.

Flow (approve)::

    load assignment ------------------> AssignmentNotFoundError
    decision authority ---------------> AuthorizationError
    UPDATE ... WHERE status='pending' -> AlreadyDecidedError (lost the race)
    LedgerService.post(credit) -------> InconsistentStateError (rolled back)
    COMMIT ---------------------------> OutcomeUnknownError
    after commit: change events

The status change and the ledger credit share one database transaction, so a
visible ``approved`` status always has exactly one credit behind it.  If the
post fails after the transition succeeded the transaction is rolled back and
``InconsistentStateError`` is raised; it is never swallowed.

Transaction ownership follows ``auto_commit``: when True (default) the
workflow commits on success and rolls back on failure; when False the caller
owns both.
"""

from __future__ import annotations

import random
import time
from uuid import UUID, uuid4

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session

from points_kernel.config import KernelSettings
from points_kernel.domain.assignment import (
    AssignmentStatus,
    PointAssignment,
    normalize_justification,
    validate_points,
)
from points_kernel.domain.authority import (
    require_assignment_authority,
    require_decision_authority,
)
from points_kernel.domain.clock import Clock, SystemClock
from points_kernel.domain.events import ChangeEvent, ChangeType
from points_kernel.domain.ledger import EntryKind, EntrySource
from points_kernel.domain.roles import AssignmentReason
from points_kernel.exceptions import (
    AlreadyDecidedError,
    IdempotencyKeyConflictError,
    InconsistentStateError,
    OutcomeUnknownError,
    TransitionConflictError,
)
from points_kernel.logging_config import LogContext, get_logger
from points_kernel.services.approver_selection import ApproverSelector
from points_kernel.services.assignment_repository import AssignmentRepository
from points_kernel.services.directory_service import DirectoryPort, SqlDirectory
from points_kernel.services.ledger_service import LedgerService
from points_kernel.services.notification_service import EventSink, SessionEventPublisher

logger = get_logger("services.workflow")


class AssignmentWorkflow:
    """
    The point-assignment approval workflow.

    Usage:
        workflow = AssignmentWorkflow(session, settings=get_settings(), events=bus)
        assignment = workflow.create_assignment(gestor_id, colaborador_id, 50, "Sprint demo")
        workflow.approve_assignment(assignment.id, assignment.selected_approver_id)
    """

    def __init__(
        self,
        session: Session,
        *,
        directory: DirectoryPort | None = None,
        clock: Clock | None = None,
        settings: KernelSettings | None = None,
        events: EventSink | None = None,
        rng: random.Random | None = None,
        auto_commit: bool = True,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._settings = settings or KernelSettings()
        self._auto_commit = auto_commit
        self._directory = directory or SqlDirectory(session)

        self.repository = AssignmentRepository(
            session,
            self._clock,
            max_justification_length=self._settings.assignments.max_justification_length,
        )
        self.ledger = LedgerService(session, self._clock, events)
        self.selector = ApproverSelector(
            self._directory, self.repository, self._settings.approvers, rng,
        )
        self._publisher = (
            SessionEventPublisher.for_session(session, events) if events is not None else None
        )

    # -----------------------------------------------------------------
    # Create
    # -----------------------------------------------------------------

    def create_assignment(
        self,
        requester_id: UUID,
        target_user_id: UUID,
        points: int,
        justification: str,
        *,
        reason: AssignmentReason | str | None = None,
        idempotency_key: str | None = None,
    ) -> PointAssignment:
        """
        Create a pending assignment with its approver bound.

        No ledger entry is written; a pending assignment has no balance effect.

        Raises:
            ValidationError: bad points or justification.
            UserNotFoundError: requester or target unknown.
            AuthorizationError: requester has no standing over the target.
            NoApproverAvailableError: nobody may approve; nothing is persisted.
            IdempotencyKeyConflictError: key reused with different parameters.
            OutcomeUnknownError: the commit failed.
        """
        with LogContext.bind(
            correlation_id=str(uuid4()),
            actor_id=requester_id,
            user_id=target_user_id,
        ):
            points = validate_points(points)
            text = normalize_justification(
                justification, self._settings.assignments.max_justification_length,
            )

            if idempotency_key is not None:
                existing = self.repository.get_by_idempotency_key(idempotency_key)
                if existing is not None:
                    return self._replay(existing, requester_id, target_user_id, points)

            requester = self._directory.get_user(requester_id)
            target = self._directory.get_user(target_user_id)
            require_assignment_authority(
                requester,
                target,
                allow_self_assignment=self._settings.assignments.allow_self_assignment,
            )
            approver = self.selector.select(requester, target)

            try:
                assignment = self.repository.create(
                    requester.id,
                    target.id,
                    points,
                    text,
                    approver.id,
                    reason=reason,
                    idempotency_key=idempotency_key,
                )
            except IntegrityError:
                if idempotency_key is None or not self._auto_commit:
                    self._rollback()
                    raise
                # Lost a race on the same key; the winner's row is the answer.
                self._session.rollback()
                existing = self.repository.get_by_idempotency_key(idempotency_key)
                if existing is None:
                    raise
                return self._replay(existing, requester_id, target_user_id, points)
            except Exception:
                self._rollback()
                raise

            for user_id in _unique(assignment.selected_approver_id, assignment.requester_id):
                self._publish(ChangeType.ASSIGNMENT_CREATED, user_id, assignment)
            self._commit("create_assignment", assignment.id)

            logger.info(
                "assignment_created",
                extra={
                    "assignment_id": str(assignment.id),
                    "points": assignment.points,
                    "approver_id": str(assignment.selected_approver_id),
                    "reason": assignment.reason.value if assignment.reason else None,
                },
            )
            return assignment

    def _replay(
        self,
        existing: PointAssignment,
        requester_id: UUID,
        target_user_id: UUID,
        points: int,
    ) -> PointAssignment:
        if (
            existing.requester_id != requester_id
            or existing.target_user_id != target_user_id
            or existing.points != points
        ):
            raise IdempotencyKeyConflictError(existing.idempotency_key, str(existing.id))
        logger.info(
            "assignment_create_replayed",
            extra={"assignment_id": str(existing.id), "status": existing.status.value},
        )
        return existing

    # -----------------------------------------------------------------
    # Decide
    # -----------------------------------------------------------------

    def approve_assignment(self, assignment_id: UUID, approver_id: UUID) -> PointAssignment:
        """
        Approve a pending assignment and credit the target, atomically.

        Raises:
            AssignmentNotFoundError, UserNotFoundError, AuthorizationError,
            AlreadyDecidedError, InconsistentStateError, OutcomeUnknownError.
        """
        with LogContext.bind(
            correlation_id=str(uuid4()),
            actor_id=approver_id,
            assignment_id=assignment_id,
        ):
            t0 = time.monotonic()
            assignment = self._load_for_decision(assignment_id, approver_id)

            try:
                decided = self.repository.transition(
                    assignment.id,
                    AssignmentStatus.PENDING,
                    AssignmentStatus.APPROVED,
                    decided_by_id=approver_id,
                )
            except TransitionConflictError as exc:
                self._rollback()
                raise AlreadyDecidedError(str(assignment_id), exc.current_status) from exc
            except Exception:
                self._rollback()
                raise

            try:
                entry = self.ledger.post(
                    decided.target_user_id,
                    EntryKind.CREDIT,
                    decided.points,
                    f"Point assignment approved: {decided.justification}",
                    source=EntrySource.ASSIGNMENT,
                    assignment_id=decided.id,
                    actor_id=approver_id,
                )
            except Exception as exc:
                rolled_back = self._auto_commit
                if rolled_back:
                    self._session.rollback()
                logger.critical(
                    "assignment_posting_failed",
                    extra={
                        "assignment_id": str(decided.id),
                        "target_user_id": str(decided.target_user_id),
                        "points": decided.points,
                        "rolled_back": rolled_back,
                    },
                    exc_info=True,
                )
                raise InconsistentStateError(
                    f"Assignment {decided.id} transitioned to approved but the "
                    f"ledger credit failed: {exc}",
                    assignment_id=str(decided.id),
                    rolled_back=rolled_back,
                ) from exc

            for user_id in _unique(
                decided.requester_id,
                decided.selected_approver_id,
                decided.target_user_id,
                decided.decided_by_id,
            ):
                self._publish(ChangeType.ASSIGNMENT_APPROVED, user_id, decided)
            self._commit("approve_assignment", decided.id)

            logger.info(
                "assignment_approved",
                extra={
                    "assignment_id": str(decided.id),
                    "entry_id": str(entry.id),
                    "points": decided.points,
                    "override": decided.decided_by_id != decided.selected_approver_id,
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                },
            )
            return decided

    def reject_assignment(
        self,
        assignment_id: UUID,
        approver_id: UUID,
        reason: str | None = None,
    ) -> PointAssignment:
        """
        Reject a pending assignment.  No ledger entry is written.

        Raises:
            AssignmentNotFoundError, UserNotFoundError, AuthorizationError,
            AlreadyDecidedError, OutcomeUnknownError.
        """
        with LogContext.bind(
            correlation_id=str(uuid4()),
            actor_id=approver_id,
            assignment_id=assignment_id,
        ):
            assignment = self._load_for_decision(assignment_id, approver_id)

            try:
                decided = self.repository.transition(
                    assignment.id,
                    AssignmentStatus.PENDING,
                    AssignmentStatus.REJECTED,
                    decided_by_id=approver_id,
                    rejection_reason=reason,
                )
            except TransitionConflictError as exc:
                self._rollback()
                raise AlreadyDecidedError(str(assignment_id), exc.current_status) from exc
            except Exception:
                self._rollback()
                raise

            for user_id in _unique(
                decided.requester_id,
                decided.selected_approver_id,
                decided.target_user_id,
                decided.decided_by_id,
            ):
                self._publish(ChangeType.ASSIGNMENT_REJECTED, user_id, decided)
            self._commit("reject_assignment", decided.id)

            logger.info(
                "assignment_rejected",
                extra={
                    "assignment_id": str(decided.id),
                    "has_reason": decided.rejection_reason is not None,
                },
            )
            return decided

    def _load_for_decision(self, assignment_id: UUID, actor_id: UUID) -> PointAssignment:
        assignment = self.repository.get(assignment_id)
        actor = self._directory.get_user(actor_id)
        require_decision_authority(assignment, actor)
        if assignment.is_terminal:
            logger.info(
                "assignment_already_decided",
                extra={"status": assignment.status.value},
            )
            raise AlreadyDecidedError(str(assignment_id), assignment.status.value)
        return assignment

    # -----------------------------------------------------------------
    # Transaction and event plumbing
    # -----------------------------------------------------------------

    def _publish(self, change_type: ChangeType, user_id: UUID, assignment: PointAssignment) -> None:
        if self._publisher is None:
            return
        self._publisher.publish(
            ChangeEvent(
                type=change_type,
                user_id=user_id,
                payload={
                    "assignmentId": str(assignment.id),
                    "status": assignment.status.value,
                    "points": assignment.points,
                    "targetUserId": str(assignment.target_user_id),
                },
            ),
        )

    def _rollback(self) -> None:
        if self._auto_commit:
            self._session.rollback()

    def _commit(self, operation: str, entity_id: UUID) -> None:
        if not self._auto_commit:
            return
        try:
            self._session.commit()
        except DBAPIError as exc:
            logger.error(
                "commit_outcome_unknown",
                extra={"operation": operation, "entity_id": str(entity_id)},
                exc_info=True,
            )
            self._session.rollback()
            raise OutcomeUnknownError(operation, str(entity_id)) from exc


def _unique(*user_ids: UUID | None) -> list[UUID]:
    seen: list[UUID] = []
    for user_id in user_ids:
        if user_id is not None and user_id not in seen:
            seen.append(user_id)
    return seen
