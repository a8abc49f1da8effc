"""
Authorization predicates for the assignment workflow.

The single place that answers "may this requester assign points to that
target" and "may this actor decide that assignment".  Callers never branch on
role strings themselves.
"""

from __future__ import annotations

from points_kernel.domain.assignment import PointAssignment
from points_kernel.domain.roles import DirectoryUser
from points_kernel.exceptions import AuthorizationError, SelfAssignmentError


def can_assign_points(requester: DirectoryUser, target: DirectoryUser) -> bool:
    """adm: anyone.  gestor: users of a managed department.  Others: nobody."""
    if not requester.is_active:
        return False
    if requester.is_admin:
        return True
    return requester.manages(target.department)


def require_assignment_authority(
    requester: DirectoryUser,
    target: DirectoryUser,
    *,
    allow_self_assignment: bool = False,
) -> None:
    if requester.id == target.id and not allow_self_assignment:
        raise SelfAssignmentError(str(requester.id))
    if not can_assign_points(requester, target):
        reason = (
            "inactive user" if not requester.is_active
            else f"role {requester.role.value} has no authority over department "
                 f"{target.department.value if target.department else '(none)'}"
        )
        raise AuthorizationError(str(requester.id), "assign points", reason)


def require_decision_authority(assignment: PointAssignment, actor: DirectoryUser) -> None:
    """
    Selected approver, or any active adm.  The requester never decides their
    own assignment, and an adm override never lets the target credit
    themselves.
    """
    action = "decide assignment"
    if actor.id == assignment.requester_id:
        raise AuthorizationError(str(actor.id), action, "requester cannot decide own assignment")
    if actor.id == assignment.selected_approver_id:
        return
    if actor.is_admin and actor.is_active:
        if actor.id == assignment.target_user_id:
            raise AuthorizationError(str(actor.id), action, "target cannot override as adm")
        return
    raise AuthorizationError(str(actor.id), action, "not the selected approver")
