"""
Typed Exception Hierarchy for the Points Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the kernel (HTTP handlers, bots, the reconciliation CLI) must be
able to tell "fix your input" apart from "someone else already decided this"
and from "the ledger needs a human".  Every error therefore has:

  1. A TYPED exception class (catch by type, not message)
  2. A CODE class attribute (machine-readable, API-safe)
  3. Structured DATA as attributes (not just a message string)

Example:
    try:
        workflow.approve_assignment(assignment_id, approver_id)
    except AlreadyDecidedError as e:
        refresh_queue()                      # normal concurrent usage
    except AuthorizationError as e:
        api_response(code=e.code, message=str(e))

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    PointsKernelError (base)
    |
    +-- ValidationError
    |   +-- InvalidAmountError
    |   +-- IdempotencyKeyConflictError
    |
    +-- AuthorizationError
    |   +-- SelfAssignmentError
    |
    +-- NotFoundError
    |   +-- AssignmentNotFoundError
    |   +-- UserNotFoundError
    |   +-- RedemptionNotFoundError
    |
    +-- ConcurrencyError
    |   +-- TransitionConflictError
    |       +-- AlreadyDecidedError
    |
    +-- InvalidAssignmentTransitionError
    +-- NoApproverAvailableError
    |
    +-- LedgerError
    |   +-- InsufficientBalanceError
    |
    +-- RedemptionError
    |   +-- RedemptionWindowClosedError
    |   +-- RedemptionAlreadyClosedError
    |
    +-- InconsistentStateError
    +-- OutcomeUnknownError
    +-- ImmutabilityViolationError

===============================================================================
PROPAGATION
===============================================================================

ValidationError / AuthorizationError   -> user-facing message at the boundary
AlreadyDecidedError                    -> refresh the read view, not a failure
NoApproverAvailableError               -> actionable message (roster gap)
InconsistentStateError                 -> operational alert, NEVER auto-recovered
OutcomeUnknownError                    -> re-query actual status before retrying

===============================================================================
"""


class PointsKernelError(Exception):
    """
    Base exception for all points kernel errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    identification.
    """

    code: str = "POINTS_KERNEL_ERROR"


# Validation


class ValidationError(PointsKernelError):
    """Bad input. Safe to fix and retry."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


class InvalidAmountError(ValidationError):
    """Ledger amounts and assignment points must be positive integers."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, amount: object):
        self.amount = amount
        super().__init__("amount", f"must be a positive integer, got {amount!r}")


class IdempotencyKeyConflictError(ValidationError):
    """An idempotency key was reused for a different request."""

    code: str = "IDEMPOTENCY_KEY_CONFLICT"

    def __init__(self, idempotency_key: str, existing_assignment_id: str):
        self.idempotency_key = idempotency_key
        self.existing_assignment_id = existing_assignment_id
        super().__init__(
            "idempotency_key",
            f"{idempotency_key} already used by assignment "
            f"{existing_assignment_id} with different parameters",
        )


# Authorization


class AuthorizationError(PointsKernelError):
    """Caller lacks standing. Not retryable without a role change."""

    code: str = "AUTHORIZATION_ERROR"

    def __init__(self, actor_id: str, action: str, reason: str):
        self.actor_id = actor_id
        self.action = action
        self.reason = reason
        super().__init__(f"User {actor_id} may not {action}: {reason}")


class SelfAssignmentError(AuthorizationError):
    """Requester tried to assign points to themselves."""

    code: str = "SELF_ASSIGNMENT_FORBIDDEN"

    def __init__(self, actor_id: str):
        super().__init__(
            actor_id, "assign points", "self assignment is disabled",
        )


# Not found


class NotFoundError(PointsKernelError):
    """Base exception for missing records."""

    code: str = "NOT_FOUND"


class AssignmentNotFoundError(NotFoundError):
    """Point assignment with given ID was not found."""

    code: str = "ASSIGNMENT_NOT_FOUND"

    def __init__(self, assignment_id: str):
        self.assignment_id = assignment_id
        super().__init__(f"Point assignment not found: {assignment_id}")


class UserNotFoundError(NotFoundError):
    """User with given ID was not found."""

    code: str = "USER_NOT_FOUND"

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"User not found: {user_id}")


class RedemptionNotFoundError(NotFoundError):
    """Redemption with given ID was not found."""

    code: str = "REDEMPTION_NOT_FOUND"

    def __init__(self, redemption_id: str):
        self.redemption_id = redemption_id
        super().__init__(f"Redemption not found: {redemption_id}")


# Concurrency / lifecycle


class ConcurrencyError(PointsKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class TransitionConflictError(ConcurrencyError):
    """
    Conditional status update matched no row.

    Raised by the assignment repository when the stored status no longer
    equals the expected prior status at write time.
    """

    code: str = "TRANSITION_CONFLICT"

    def __init__(self, assignment_id: str, expected_status: str, current_status: str):
        self.assignment_id = assignment_id
        self.expected_status = expected_status
        self.current_status = current_status
        super().__init__(
            f"Assignment {assignment_id} is {current_status}, "
            f"expected {expected_status}"
        )


class AlreadyDecidedError(TransitionConflictError):
    """
    Assignment was already approved or rejected.

    Expected outcome of two approvers racing on the same assignment.  The
    caller should refresh its view and stop.
    """

    code: str = "ALREADY_DECIDED"

    def __init__(self, assignment_id: str, current_status: str):
        super().__init__(assignment_id, "pending", current_status)


class InvalidAssignmentTransitionError(PointsKernelError):
    """Status change not permitted by the assignment lifecycle."""

    code: str = "INVALID_ASSIGNMENT_TRANSITION"

    def __init__(self, from_status: str, to_status: str):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid assignment transition: {from_status} -> {to_status}"
        )


class NoApproverAvailableError(PointsKernelError):
    """No eligible approver exists for the target's department."""

    code: str = "NO_APPROVER_AVAILABLE"

    def __init__(self, requester_id: str, target_user_id: str, department: str | None):
        self.requester_id = requester_id
        self.target_user_id = target_user_id
        self.department = department
        super().__init__(
            f"No eligible approver for department {department or '(none)'} "
            f"(requester {requester_id}, target {target_user_id})"
        )


# Ledger


class LedgerError(PointsKernelError):
    """Base exception for ledger errors."""

    code: str = "LEDGER_ERROR"


class InsufficientBalanceError(LedgerError):
    """A debit would take the balance below zero."""

    code: str = "INSUFFICIENT_BALANCE"

    def __init__(self, user_id: str, balance: int, requested: int):
        self.user_id = user_id
        self.balance = balance
        self.requested = requested
        super().__init__(
            f"Insufficient balance for user {user_id}: "
            f"balance {balance}, requested {requested}"
        )


# Redemption


class RedemptionError(PointsKernelError):
    """Base exception for redemption errors."""

    code: str = "REDEMPTION_ERROR"


class RedemptionWindowClosedError(RedemptionError):
    """Redemptions are only open between start_day and end_day."""

    code: str = "REDEMPTION_WINDOW_CLOSED"

    def __init__(self, day: int, start_day: int, end_day: int):
        self.day = day
        self.start_day = start_day
        self.end_day = end_day
        super().__init__(
            f"Redemption window closed on day {day} "
            f"(open from day {start_day} to {end_day})"
        )


class RedemptionAlreadyClosedError(RedemptionError):
    """Redemption is no longer pending."""

    code: str = "REDEMPTION_ALREADY_CLOSED"

    def __init__(self, redemption_id: str, status: str):
        self.redemption_id = redemption_id
        self.status = status
        super().__init__(f"Redemption {redemption_id} is already {status}")


# Fatal / operational


class InconsistentStateError(PointsKernelError):
    """
    Ledger and assignment state disagree, or nearly did.

    Never recovered automatically.  Must propagate to an operational alert
    and be resolved through the reconciliation tooling.
    """

    code: str = "INCONSISTENT_STATE"

    def __init__(self, message: str, *, assignment_id: str | None = None, rolled_back: bool = False):
        self.assignment_id = assignment_id
        self.rolled_back = rolled_back
        super().__init__(message)


class OutcomeUnknownError(PointsKernelError):
    """
    Store call failed in a way that leaves the outcome unknown.

    Re-query the actual status before retrying.  Approve/reject retries are
    safe by construction; create retries are safe only with an idempotency key.
    """

    code: str = "OUTCOME_UNKNOWN"

    def __init__(self, operation: str, entity_id: str | None = None):
        self.operation = operation
        self.entity_id = entity_id
        super().__init__(
            f"Outcome of {operation} unknown"
            + (f" for {entity_id}" if entity_id else "")
        )


class ImmutabilityViolationError(PointsKernelError):
    """Attempted to modify or delete an immutable record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
