"""
Change notification value objects.

The kernel only *emits* ``{type, user_id, payload}`` events; transport
(websocket, SSE, polling) lives outside.  Delivery is at-least-once from the
subscriber's point of view and the kernel never depends on it succeeding.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from uuid import UUID


class ChangeType(str, Enum):
    LEDGER_POSTED = "ledger.posted"
    ASSIGNMENT_CREATED = "assignment.created"
    ASSIGNMENT_APPROVED = "assignment.approved"
    ASSIGNMENT_REJECTED = "assignment.rejected"
    REDEMPTION_CREATED = "redemption.created"
    REDEMPTION_CLOSED = "redemption.closed"


@dataclass(frozen=True)
class ChangeEvent:
    type: ChangeType
    user_id: UUID
    payload: dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "userId": str(self.user_id),
            "payload": self.payload,
        }
