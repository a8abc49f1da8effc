"""
Tests for AssignmentWorkflow -- the create / approve / reject lifecycle.

Uses the standard ``org`` fixture:

    tecnologia: gestor_tec, gestor_tec_2, colab_tec, colab_tec_2
    comercial:  gestor_com, colab_com
    marketing:  colab_mkt (no gestor)
    adm         (administrativo)

With two tecnologia gestores, a request by one of them always binds the other
as approver, so the scenarios below are deterministic.
"""

from dataclasses import replace
from uuid import uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from points_kernel.config import KernelSettings
from points_kernel.domain.assignment import AssignmentStatus
from points_kernel.domain.events import ChangeType
from points_kernel.domain.ledger import EntryKind, EntrySource
from points_kernel.domain.roles import AssignmentReason
from points_kernel.exceptions import (
    AlreadyDecidedError,
    AssignmentNotFoundError,
    AuthorizationError,
    IdempotencyKeyConflictError,
    InconsistentStateError,
    NoApproverAvailableError,
    OutcomeUnknownError,
    SelfAssignmentError,
    UserNotFoundError,
    ValidationError,
)
from points_kernel.models.assignment import PointAssignmentModel
from points_kernel.models.ledger import LedgerEntryModel
from points_kernel.selectors.ledger_selector import LedgerSelector


def _assignment_count(session) -> int:
    return session.scalar(select(func.count()).select_from(PointAssignmentModel))


def _entries_for(session, user_id) -> list[LedgerEntryModel]:
    return list(
        session.scalars(
            select(LedgerEntryModel).where(LedgerEntryModel.user_id == user_id),
        ),
    )


def _balance(session, user_id) -> int:
    return LedgerSelector(session).balance_of(user_id)


# =============================================================================
# Scenario A: create then approve
# =============================================================================


class TestCreateAndApprove:
    def test_create_binds_other_gestor_as_approver(self, workflow, org):
        assignment = workflow.create_assignment(
            org.gestor_tec, org.colab_tec, 100, "great work",
        )

        assert assignment.status == AssignmentStatus.PENDING
        assert assignment.selected_approver_id == org.gestor_tec_2
        assert assignment.selected_approver_id != assignment.requester_id
        assert assignment.points == 100
        assert assignment.justification == "great work"
        assert assignment.decided_at is None

    def test_pending_assignment_has_no_balance_effect(self, session, workflow, org):
        workflow.create_assignment(org.gestor_tec, org.colab_tec, 100, "great work")

        assert _balance(session, org.colab_tec) == 0
        assert _entries_for(session, org.colab_tec) == []

    def test_approve_credits_target_exactly_once(self, session, workflow, org):
        assignment = workflow.create_assignment(
            org.gestor_tec, org.colab_tec, 100, "great work",
        )

        approved = workflow.approve_assignment(assignment.id, org.gestor_tec_2)

        assert approved.status == AssignmentStatus.APPROVED
        assert approved.decided_by_id == org.gestor_tec_2
        assert approved.decided_at is not None
        assert _balance(session, org.colab_tec) == 100

        entries = _entries_for(session, org.colab_tec)
        assert len(entries) == 1
        entry = entries[0]
        assert entry.kind == EntryKind.CREDIT.value
        assert entry.amount == 100
        assert entry.source == EntrySource.ASSIGNMENT.value
        assert entry.assignment_id == assignment.id
        assert entry.actor_id == org.gestor_tec_2
        assert entry.description == "Point assignment approved: great work"

    def test_adm_may_request_for_any_department(self, workflow, org):
        assignment = workflow.create_assignment(org.adm, org.colab_com, 10, "cross-team help")
        assert assignment.selected_approver_id == org.gestor_com

    def test_reason_is_stored(self, workflow, org):
        assignment = workflow.create_assignment(
            org.gestor_tec, org.colab_tec, 10, "x",
            reason=AssignmentReason.POSTURA_EMPATICA,
        )
        assert assignment.reason == AssignmentReason.POSTURA_EMPATICA

    def test_justification_is_trimmed(self, workflow, org):
        assignment = workflow.create_assignment(org.gestor_tec, org.colab_tec, 10, "  ok  ")
        assert assignment.justification == "ok"


# =============================================================================
# Scenario B: reject
# =============================================================================


class TestReject:
    def test_reject_stores_reason_and_leaves_balance(self, session, workflow, org):
        assignment = workflow.create_assignment(
            org.gestor_tec, org.colab_tec, 100, "great work",
        )

        rejected = workflow.reject_assignment(
            assignment.id, org.gestor_tec_2, "insufficient justification",
        )

        assert rejected.status == AssignmentStatus.REJECTED
        assert rejected.rejection_reason == "insufficient justification"
        assert rejected.decided_by_id == org.gestor_tec_2
        assert _balance(session, org.colab_tec) == 0
        assert _entries_for(session, org.colab_tec) == []

    def test_blank_reason_stored_as_none(self, workflow, org):
        assignment = workflow.create_assignment(org.gestor_tec, org.colab_tec, 5, "x")
        rejected = workflow.reject_assignment(assignment.id, org.gestor_tec_2, "   ")
        assert rejected.rejection_reason is None


# =============================================================================
# Scenarios D and E: nothing persisted on failure
# =============================================================================


class TestCreateValidation:
    @pytest.mark.parametrize("points", [0, -10])
    def test_non_positive_points(self, session, workflow, org, points):
        with pytest.raises(ValidationError):
            workflow.create_assignment(org.gestor_tec, org.colab_tec, points, "x")
        assert _assignment_count(session) == 0

    def test_blank_justification(self, session, workflow, org):
        with pytest.raises(ValidationError) as exc_info:
            workflow.create_assignment(org.gestor_tec, org.colab_tec, 10, "  ")
        assert exc_info.value.field == "justification"
        assert _assignment_count(session) == 0

    def test_justification_too_long(self, session, make_workflow, settings, org):
        tight = replace(
            settings, assignments=replace(settings.assignments, max_justification_length=5),
        )
        wf = make_workflow(session, settings=tight)
        with pytest.raises(ValidationError):
            wf.create_assignment(org.gestor_tec, org.colab_tec, 10, "too long")
        assert _assignment_count(session) == 0

    def test_no_gestor_for_department(self, session, make_user, workflow, org):
        # comercial has a single gestor; if they request, nobody else may approve
        with pytest.raises(NoApproverAvailableError) as exc_info:
            workflow.create_assignment(org.gestor_com, org.colab_com, 10, "x")
        assert exc_info.value.department == "comercial"
        assert _assignment_count(session) == 0

    def test_sole_department_gestor_requesting(self, session, make_user, workflow, org):
        gestor_mkt = make_user("gestor", "marketing")
        with pytest.raises(NoApproverAvailableError):
            workflow.create_assignment(gestor_mkt, org.colab_mkt, 10, "x")
        assert _assignment_count(session) == 0

    def test_admin_fallback_finds_adm(self, session, make_workflow, settings, org):
        fallback = replace(
            settings, approvers=replace(settings.approvers, admin_fallback=True),
        )
        wf = make_workflow(session, settings=fallback)
        assignment = wf.create_assignment(org.gestor_com, org.colab_com, 10, "x")
        assert assignment.selected_approver_id == org.adm

    def test_adm_requester_for_department_without_gestor(self, session, make_user, workflow, org):
        # The only other candidates are adms; there are none besides the requester.
        with pytest.raises(NoApproverAvailableError):
            workflow.create_assignment(org.adm, org.colab_mkt, 10, "x")

        second_adm = make_user("adm", "administrativo")
        assignment = workflow.create_assignment(org.adm, org.colab_mkt, 10, "x")
        assert assignment.selected_approver_id == second_adm

    def test_unknown_target(self, session, workflow, org):
        with pytest.raises(UserNotFoundError):
            workflow.create_assignment(org.gestor_tec, uuid4(), 10, "x")
        assert _assignment_count(session) == 0


# =============================================================================
# Assignment authority
# =============================================================================


class TestAssignmentAuthority:
    def test_gestor_cannot_credit_other_department(self, session, workflow, org):
        with pytest.raises(AuthorizationError):
            workflow.create_assignment(org.gestor_tec, org.colab_com, 10, "x")
        assert _assignment_count(session) == 0

    def test_colaborador_cannot_request(self, session, workflow, org):
        with pytest.raises(AuthorizationError):
            workflow.create_assignment(org.colab_tec, org.colab_tec_2, 10, "x")
        assert _assignment_count(session) == 0

    def test_inactive_gestor_cannot_request(self, session, make_user, workflow, org):
        retired = make_user("gestor", "tecnologia", is_active=False)
        with pytest.raises(AuthorizationError):
            workflow.create_assignment(retired, org.colab_tec, 10, "x")

    def test_rostered_department(self, session, make_user, workflow, org):
        multi = make_user("gestor", "tecnologia", managed=("comercial",))
        assignment = workflow.create_assignment(multi, org.colab_com, 10, "x")
        assert assignment.selected_approver_id == org.gestor_com

    def test_self_assignment_forbidden_by_default(self, session, workflow, org):
        with pytest.raises(SelfAssignmentError):
            workflow.create_assignment(org.gestor_tec, org.gestor_tec, 10, "x")
        assert _assignment_count(session) == 0

    def test_self_assignment_when_allowed(self, session, make_workflow, settings, org):
        permissive = replace(
            settings, assignments=replace(settings.assignments, allow_self_assignment=True),
        )
        wf = make_workflow(session, settings=permissive)
        assignment = wf.create_assignment(org.gestor_tec, org.gestor_tec, 10, "x")
        assert assignment.selected_approver_id == org.gestor_tec_2


# =============================================================================
# Decision authority
# =============================================================================


class TestDecisionAuthority:
    @pytest.fixture
    def pending(self, workflow, org):
        return workflow.create_assignment(org.gestor_tec, org.colab_tec, 50, "demo day")

    def test_requester_cannot_approve(self, session, workflow, org, pending):
        with pytest.raises(AuthorizationError):
            workflow.approve_assignment(pending.id, org.gestor_tec)
        assert workflow.repository.get(pending.id).status == AssignmentStatus.PENDING

    def test_other_department_gestor_cannot_reject(self, workflow, org, pending):
        with pytest.raises(AuthorizationError):
            workflow.reject_assignment(pending.id, org.gestor_com)

    def test_target_cannot_approve(self, session, workflow, org, pending):
        with pytest.raises(AuthorizationError):
            workflow.approve_assignment(pending.id, org.colab_tec)
        assert _balance(session, org.colab_tec) == 0

    def test_adm_override(self, session, workflow, org, pending, captured_logs):
        approved = workflow.approve_assignment(pending.id, org.adm)

        assert approved.status == AssignmentStatus.APPROVED
        assert approved.decided_by_id == org.adm
        assert approved.selected_approver_id == org.gestor_tec_2
        assert _balance(session, org.colab_tec) == 50

        logs = [r for r in captured_logs() if r["message"] == "assignment_approved"]
        assert len(logs) == 1
        assert logs[0]["override"] is True

    def test_unknown_assignment(self, workflow, org):
        with pytest.raises(AssignmentNotFoundError):
            workflow.approve_assignment(uuid4(), org.adm)

    def test_unknown_decider(self, workflow, pending):
        with pytest.raises(UserNotFoundError):
            workflow.reject_assignment(pending.id, uuid4())


# =============================================================================
# Terminal states
# =============================================================================


class TestTerminalState:
    def test_second_approve_is_already_decided(self, session, workflow, org):
        assignment = workflow.create_assignment(org.gestor_tec, org.colab_tec, 30, "x")
        first = workflow.approve_assignment(assignment.id, org.gestor_tec_2)

        with pytest.raises(AlreadyDecidedError) as exc_info:
            workflow.approve_assignment(assignment.id, org.gestor_tec_2)

        assert exc_info.value.current_status == "approved"
        again = workflow.repository.get(assignment.id)
        assert again.decided_at == first.decided_at
        assert again.decided_by_id == first.decided_by_id
        assert len(_entries_for(session, org.colab_tec)) == 1
        assert _balance(session, org.colab_tec) == 30

    def test_reject_after_approve(self, session, workflow, org):
        assignment = workflow.create_assignment(org.gestor_tec, org.colab_tec, 30, "x")
        workflow.approve_assignment(assignment.id, org.gestor_tec_2)

        with pytest.raises(AlreadyDecidedError):
            workflow.reject_assignment(assignment.id, org.adm, "changed my mind")

        assert workflow.repository.get(assignment.id).status == AssignmentStatus.APPROVED
        assert _balance(session, org.colab_tec) == 30

    def test_approve_after_reject(self, session, workflow, org):
        assignment = workflow.create_assignment(org.gestor_tec, org.colab_tec, 30, "x")
        workflow.reject_assignment(assignment.id, org.gestor_tec_2)

        with pytest.raises(AlreadyDecidedError):
            workflow.approve_assignment(assignment.id, org.adm)

        assert _entries_for(session, org.colab_tec) == []


# =============================================================================
# Idempotency keys
# =============================================================================


class TestIdempotencyKey:
    def test_replay_returns_existing(self, session, workflow, org):
        first = workflow.create_assignment(
            org.gestor_tec, org.colab_tec, 10, "x", idempotency_key="req-1",
        )
        second = workflow.create_assignment(
            org.gestor_tec, org.colab_tec, 10, "x", idempotency_key="req-1",
        )

        assert second.id == first.id
        assert _assignment_count(session) == 1

    def test_replay_after_decision_reports_current_status(self, workflow, org):
        first = workflow.create_assignment(
            org.gestor_tec, org.colab_tec, 10, "x", idempotency_key="req-2",
        )
        workflow.approve_assignment(first.id, org.gestor_tec_2)

        replay = workflow.create_assignment(
            org.gestor_tec, org.colab_tec, 10, "x", idempotency_key="req-2",
        )
        assert replay.status == AssignmentStatus.APPROVED

    def test_same_key_different_points_conflicts(self, session, workflow, org):
        first = workflow.create_assignment(
            org.gestor_tec, org.colab_tec, 10, "x", idempotency_key="req-3",
        )

        with pytest.raises(IdempotencyKeyConflictError) as exc_info:
            workflow.create_assignment(
                org.gestor_tec, org.colab_tec, 20, "x", idempotency_key="req-3",
            )

        assert exc_info.value.existing_assignment_id == str(first.id)
        assert _assignment_count(session) == 1

    def test_different_keys_create_separate_rows(self, session, workflow, org):
        workflow.create_assignment(org.gestor_tec, org.colab_tec, 10, "x", idempotency_key="a")
        workflow.create_assignment(org.gestor_tec, org.colab_tec, 10, "x", idempotency_key="b")
        assert _assignment_count(session) == 2


# =============================================================================
# Failure paths
# =============================================================================


class TestPartialFailure:
    def test_posting_failure_rolls_back_transition(
        self, session, workflow, org, monkeypatch, captured_logs,
    ):
        assignment = workflow.create_assignment(org.gestor_tec, org.colab_tec, 40, "x")

        def broken_post(*args, **kwargs):
            raise RuntimeError("ledger unavailable")

        monkeypatch.setattr(workflow.ledger, "post", broken_post)

        with pytest.raises(InconsistentStateError) as exc_info:
            workflow.approve_assignment(assignment.id, org.gestor_tec_2)

        err = exc_info.value
        assert err.assignment_id == str(assignment.id)
        assert err.rolled_back is True
        assert workflow.repository.get(assignment.id).status == AssignmentStatus.PENDING
        assert _balance(session, org.colab_tec) == 0

        critical = [r for r in captured_logs() if r["message"] == "assignment_posting_failed"]
        assert len(critical) == 1
        assert critical[0]["level"] == "CRITICAL"

    def test_assignment_can_be_approved_after_recovery(self, session, workflow, org, monkeypatch):
        assignment = workflow.create_assignment(org.gestor_tec, org.colab_tec, 40, "x")
        real_post = workflow.ledger.post

        def broken_post(*args, **kwargs):
            raise RuntimeError("ledger unavailable")

        monkeypatch.setattr(workflow.ledger, "post", broken_post)
        with pytest.raises(InconsistentStateError):
            workflow.approve_assignment(assignment.id, org.gestor_tec_2)

        monkeypatch.setattr(workflow.ledger, "post", real_post)
        workflow.approve_assignment(assignment.id, org.gestor_tec_2)
        assert _balance(session, org.colab_tec) == 40

    def test_commit_failure_is_outcome_unknown(self, session, workflow, org, monkeypatch):
        assignment = workflow.create_assignment(org.gestor_tec, org.colab_tec, 40, "x")

        def failing_commit():
            raise OperationalError("COMMIT", {}, Exception("connection lost"))

        monkeypatch.setattr(session, "commit", failing_commit)

        with pytest.raises(OutcomeUnknownError) as exc_info:
            workflow.approve_assignment(assignment.id, org.gestor_tec_2)

        assert exc_info.value.operation == "approve_assignment"
        assert exc_info.value.entity_id == str(assignment.id)


# =============================================================================
# Transaction ownership and events
# =============================================================================


class TestEvents:
    def test_create_notifies_approver_and_requester(self, workflow, event_bus, org):
        assignment = workflow.create_assignment(org.gestor_tec, org.colab_tec, 10, "x")

        created = [e for e in event_bus.emitted if e.type == ChangeType.ASSIGNMENT_CREATED]
        assert {e.user_id for e in created} == {org.gestor_tec, org.gestor_tec_2}
        assert all(e.payload["assignmentId"] == str(assignment.id) for e in created)

    def test_approve_notifies_everyone_involved(self, workflow, event_bus, org):
        assignment = workflow.create_assignment(org.gestor_tec, org.colab_tec, 10, "x")
        workflow.approve_assignment(assignment.id, org.adm)

        approved = [e for e in event_bus.emitted if e.type == ChangeType.ASSIGNMENT_APPROVED]
        assert {e.user_id for e in approved} == {
            org.gestor_tec, org.gestor_tec_2, org.colab_tec, org.adm,
        }
        posted = event_bus.events_for(org.colab_tec)
        assert ChangeType.LEDGER_POSTED in {e.type for e in posted}

    def test_no_events_when_caller_owns_transaction(
        self, session, make_workflow, event_bus, org,
    ):
        wf = make_workflow(session, auto_commit=False)
        wf.create_assignment(org.gestor_tec, org.colab_tec, 10, "x")
        assert event_bus.emitted == []

        session.commit()
        assert len(event_bus.emitted) == 2

    def test_caller_rollback_discards_everything(self, session, make_workflow, event_bus, org):
        wf = make_workflow(session, auto_commit=False)
        assignment = wf.create_assignment(org.gestor_tec, org.colab_tec, 10, "x")
        wf.approve_assignment(assignment.id, org.gestor_tec_2)

        session.rollback()

        assert event_bus.emitted == []
        assert _assignment_count(session) == 0
        assert _balance(session, org.colab_tec) == 0

    def test_rejected_decision_emits_nothing_new(self, workflow, event_bus, org):
        assignment = workflow.create_assignment(org.gestor_tec, org.colab_tec, 10, "x")
        workflow.approve_assignment(assignment.id, org.gestor_tec_2)
        before = len(event_bus.emitted)

        with pytest.raises(AlreadyDecidedError):
            workflow.reject_assignment(assignment.id, org.gestor_tec_2)

        assert len(event_bus.emitted) == before


class TestLogging:
    def test_create_logs_with_correlation(self, workflow, org, captured_logs):
        assignment = workflow.create_assignment(org.gestor_tec, org.colab_tec, 10, "x")

        created = [r for r in captured_logs() if r["message"] == "assignment_created"]
        assert len(created) == 1
        record = created[0]
        assert record["assignment_id"] == str(assignment.id)
        assert record["actor_id"] == str(org.gestor_tec)
        assert "correlation_id" in record

    def test_approve_logs_duration(self, workflow, org, captured_logs):
        assignment = workflow.create_assignment(org.gestor_tec, org.colab_tec, 10, "x")
        workflow.approve_assignment(assignment.id, org.gestor_tec_2)

        approved = [r for r in captured_logs() if r["message"] == "assignment_approved"]
        assert approved[0]["override"] is False
        assert approved[0]["duration_ms"] >= 0


def test_default_settings_choose_any_eligible_approver(session, make_workflow, org):
    wf = make_workflow(session, settings=KernelSettings())
    assignment = wf.create_assignment(org.adm, org.colab_tec, 10, "x")
    assert assignment.selected_approver_id in {org.gestor_tec, org.gestor_tec_2}
