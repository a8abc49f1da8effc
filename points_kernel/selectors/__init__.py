"""Read-only query selectors."""

from points_kernel.selectors.assignment_selector import AssignmentSelector
from points_kernel.selectors.ledger_selector import LedgerSelector

__all__ = ["AssignmentSelector", "LedgerSelector"]
