"""Tests for assignment and decision authority (``points_kernel.domain.authority``)."""

from uuid import UUID, uuid4

import pytest

from points_kernel.domain.assignment import PointAssignment
from points_kernel.domain.authority import (
    can_assign_points,
    require_assignment_authority,
    require_decision_authority,
)
from points_kernel.domain.roles import Department, DirectoryUser, Role
from points_kernel.exceptions import AuthorizationError, SelfAssignmentError

TEC = Department.TECNOLOGIA
COM = Department.COMERCIAL


def user(role, department=TEC, managed=(), active=True) -> DirectoryUser:
    managed = set(managed)
    if role == Role.GESTOR and department:
        managed.add(department)
    return DirectoryUser(
        id=uuid4(), role=role, department=department,
        managed_departments=frozenset(managed), is_active=active,
    )


class TestCanAssignPoints:
    def test_adm_assigns_anyone(self):
        assert can_assign_points(user(Role.ADM), user(Role.COLABORADOR, COM))

    def test_gestor_own_department(self):
        assert can_assign_points(user(Role.GESTOR), user(Role.COLABORADOR))

    def test_gestor_other_department(self):
        assert not can_assign_points(user(Role.GESTOR), user(Role.COLABORADOR, COM))

    def test_gestor_rostered_department(self):
        gestor = user(Role.GESTOR, TEC, managed={COM})
        assert can_assign_points(gestor, user(Role.COLABORADOR, COM))

    def test_colaborador_never(self):
        assert not can_assign_points(user(Role.COLABORADOR), user(Role.COLABORADOR))

    def test_inactive_requester_never(self):
        assert not can_assign_points(user(Role.ADM, active=False), user(Role.COLABORADOR))


class TestRequireAssignmentAuthority:
    def test_self_assignment_blocked_by_default(self):
        gestor = user(Role.GESTOR)
        with pytest.raises(SelfAssignmentError) as exc_info:
            require_assignment_authority(gestor, gestor)
        assert exc_info.value.code == "SELF_ASSIGNMENT_FORBIDDEN"

    def test_self_assignment_allowed_when_configured(self):
        gestor = user(Role.GESTOR)
        require_assignment_authority(gestor, gestor, allow_self_assignment=True)

    def test_error_names_department(self):
        with pytest.raises(AuthorizationError) as exc_info:
            require_assignment_authority(user(Role.GESTOR), user(Role.COLABORADOR, COM))
        assert "comercial" in exc_info.value.reason


class TestRequireDecisionAuthority:
    def _assignment(self, requester, target, approver) -> PointAssignment:
        return PointAssignment(
            id=uuid4(),
            requester_id=requester.id,
            target_user_id=target.id,
            points=10,
            justification="x",
            selected_approver_id=approver.id,
        )

    def test_selected_approver_may_decide(self):
        requester, target, approver = user(Role.GESTOR), user(Role.COLABORADOR), user(Role.GESTOR)
        require_decision_authority(self._assignment(requester, target, approver), approver)

    def test_other_gestor_may_not(self):
        requester, target, approver = user(Role.GESTOR), user(Role.COLABORADOR), user(Role.GESTOR)
        with pytest.raises(AuthorizationError):
            require_decision_authority(
                self._assignment(requester, target, approver), user(Role.GESTOR),
            )

    def test_adm_override(self):
        requester, target, approver = user(Role.GESTOR), user(Role.COLABORADOR), user(Role.GESTOR)
        require_decision_authority(
            self._assignment(requester, target, approver), user(Role.ADM),
        )

    def test_inactive_adm_cannot_override(self):
        requester, target, approver = user(Role.GESTOR), user(Role.COLABORADOR), user(Role.GESTOR)
        with pytest.raises(AuthorizationError):
            require_decision_authority(
                self._assignment(requester, target, approver), user(Role.ADM, active=False),
            )

    def test_requester_never_decides_even_as_adm(self):
        adm = user(Role.ADM)
        assignment = self._assignment(adm, user(Role.COLABORADOR), user(Role.ADM))
        with pytest.raises(AuthorizationError) as exc_info:
            require_decision_authority(assignment, adm)
        assert "requester" in exc_info.value.reason

    def test_adm_target_cannot_override_own_credit(self):
        target_adm = user(Role.ADM)
        assignment = self._assignment(user(Role.ADM), target_adm, user(Role.ADM))
        with pytest.raises(AuthorizationError):
            require_decision_authority(assignment, target_adm)

    def test_target_may_decide_when_selected(self):
        # Only happens when the target was the sole eligible approver.
        target = user(Role.GESTOR)
        assignment = self._assignment(user(Role.ADM), target, target)
        require_decision_authority(assignment, target)


def test_directory_user_manages():
    gestor = DirectoryUser(
        id=UUID(int=1), role=Role.GESTOR, department=TEC,
        managed_departments=frozenset({TEC}),
    )
    assert gestor.manages(TEC)
    assert not gestor.manages(COM)
    assert not gestor.manages(None)
    colab = DirectoryUser(id=UUID(int=2), role=Role.COLABORADOR, department=TEC,
                          managed_departments=frozenset({TEC}))
    assert not colab.manages(TEC)
