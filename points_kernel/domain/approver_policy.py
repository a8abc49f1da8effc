"""
Approver selection policy (``points_kernel.domain.approver_policy``).

Responsibility
--------------
Choose ONE approver for a (requester, target) pair from the directory's
candidate list.  Pure: the caller supplies candidates, pending load and the
random source, so the same inputs always give the same answer.

Eligibility
-----------
* A gestor whose managed departments include the target's department.
* An adm -- only when the requester is an adm, or ``admin_fallback`` is on.
* Never the requester.  Inactive users are never eligible.

Candidates are grouped in tiers and the first non-empty tier wins::

    1. department gestores, target excluded
    2. adms,                target excluded   (when adms are allowed)
    3. department gestores, target included
    4. adms,                target included   (when adms are allowed)

so the target only approves their own credit when nobody else can.

The chosen approver is persisted with the assignment and never re-evaluated,
so later roster changes cannot invalidate a pending assignment.
"""

from __future__ import annotations

import random
from collections.abc import Iterable, Mapping
from enum import Enum
from uuid import UUID

from points_kernel.domain.roles import DirectoryUser
from points_kernel.exceptions import NoApproverAvailableError


class SelectionStrategy(str, Enum):
    """How to pick within the winning tier."""

    RANDOM = "random"
    LEAST_LOADED = "least_loaded"
    FIRST_ELIGIBLE = "first_eligible"


def _ordered(users: Iterable[DirectoryUser]) -> list[DirectoryUser]:
    unique = {u.id: u for u in users}
    return sorted(unique.values(), key=lambda u: str(u.id))


def candidate_tiers(
    requester: DirectoryUser,
    target: DirectoryUser,
    candidates: Iterable[DirectoryUser],
    *,
    admin_fallback: bool = False,
) -> list[list[DirectoryUser]]:
    """Group eligible candidates by preference, best tier first."""
    pool = [
        c for c in _ordered(candidates)
        if c.is_active and c.id != requester.id
    ]
    gestores = [c for c in pool if c.manages(target.department)]
    admins = (
        [c for c in pool if c.is_admin]
        if requester.is_admin or admin_fallback
        else []
    )

    def without_target(users: list[DirectoryUser]) -> list[DirectoryUser]:
        return [u for u in users if u.id != target.id]

    return [
        without_target(gestores),
        without_target(admins),
        gestores,
        admins,
    ]


def eligible_approvers(
    requester: DirectoryUser,
    target: DirectoryUser,
    candidates: Iterable[DirectoryUser],
    *,
    admin_fallback: bool = False,
) -> list[DirectoryUser]:
    """The winning tier, or an empty list when nobody qualifies."""
    for tier in candidate_tiers(requester, target, candidates, admin_fallback=admin_fallback):
        if tier:
            return tier
    return []


def select_approver(
    requester: DirectoryUser,
    target: DirectoryUser,
    candidates: Iterable[DirectoryUser],
    *,
    strategy: SelectionStrategy = SelectionStrategy.RANDOM,
    pending_load: Mapping[UUID, int] | None = None,
    rng: random.Random | None = None,
    admin_fallback: bool = False,
) -> DirectoryUser:
    """
    Pick one approver.

    Raises:
        NoApproverAvailableError: no candidate survives the eligibility rules.
    """
    tier = eligible_approvers(
        requester, target, candidates, admin_fallback=admin_fallback,
    )
    if not tier:
        raise NoApproverAvailableError(
            str(requester.id),
            str(target.id),
            target.department.value if target.department else None,
        )

    if strategy == SelectionStrategy.FIRST_ELIGIBLE:
        return tier[0]
    if strategy == SelectionStrategy.LEAST_LOADED:
        load = pending_load or {}
        return min(tier, key=lambda u: (load.get(u.id, 0), str(u.id)))
    return (rng or random.Random()).choice(tier)
