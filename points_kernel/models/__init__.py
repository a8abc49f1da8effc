"""ORM models for the points kernel."""

from points_kernel.models.assignment import PointAssignmentModel
from points_kernel.models.ledger import LedgerEntryModel
from points_kernel.models.redemption import RedemptionModel, RedemptionPeriodModel
from points_kernel.models.user import GestorDepartmentModel, UserModel

__all__ = [
    "UserModel",
    "GestorDepartmentModel",
    "LedgerEntryModel",
    "PointAssignmentModel",
    "RedemptionModel",
    "RedemptionPeriodModel",
]
