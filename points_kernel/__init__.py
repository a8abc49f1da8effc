"""
Points Kernel - recognition points ledger and assignment approval workflow.

A small transactional core with:
- Append-only ledger with a cached, always-consistent balance
- Two-party approval of manager-initiated point assignments
- Compare-and-swap status transitions (at most one decision per assignment)
- Post-commit change notifications
"""

__version__ = "0.1.0"
