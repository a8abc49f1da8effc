"""
ApproverSelector -- wires the pure approver policy to the directory and the
assignment repository.

The policy itself lives in ``points_kernel.domain.approver_policy``; this
class only gathers its inputs (candidates, pending load) and logs the result.
"""

from __future__ import annotations

import random

from points_kernel.config import ApproverSettings
from points_kernel.domain.approver_policy import SelectionStrategy, select_approver
from points_kernel.domain.roles import DirectoryUser
from points_kernel.logging_config import get_logger
from points_kernel.services.assignment_repository import AssignmentRepository
from points_kernel.services.directory_service import DirectoryPort

logger = get_logger("services.approver_selection")


class ApproverSelector:
    def __init__(
        self,
        directory: DirectoryPort,
        repository: AssignmentRepository,
        settings: ApproverSettings | None = None,
        rng: random.Random | None = None,
    ):
        self._directory = directory
        self._repository = repository
        self._settings = settings or ApproverSettings()
        self._rng = rng or random.Random()

    def select(self, requester: DirectoryUser, target: DirectoryUser) -> DirectoryUser:
        """
        Choose the approver for a new assignment.

        Raises:
            NoApproverAvailableError: nobody is eligible.
        """
        candidates = self._directory.list_approver_candidates(target.department)

        pending_load = None
        if self._settings.strategy == SelectionStrategy.LEAST_LOADED:
            pending_load = self._repository.pending_counts(c.id for c in candidates)

        approver = select_approver(
            requester,
            target,
            candidates,
            strategy=self._settings.strategy,
            pending_load=pending_load,
            rng=self._rng,
            admin_fallback=self._settings.admin_fallback,
        )
        logger.info(
            "approver_selected",
            extra={
                "requester_id": str(requester.id),
                "target_user_id": str(target.id),
                "approver_id": str(approver.id),
                "strategy": self._settings.strategy.value,
                "candidate_count": len(candidates),
            },
        )
        return approver
