"""
Directory -- read-only identity provider.

The workflow only needs two questions answered about people: "who is this
user" and "who could approve a grant into this department".  ``DirectoryPort``
is that contract; ``SqlDirectory`` answers it from the ``users`` and
``gestor_departments`` tables.
"""

from __future__ import annotations

from typing import Protocol
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from points_kernel.domain.roles import Department, DirectoryUser, Role
from points_kernel.exceptions import UserNotFoundError
from points_kernel.models.user import GestorDepartmentModel, UserModel


class DirectoryPort(Protocol):
    """Identity lookups the workflow depends on."""

    def get_user(self, user_id: UUID) -> DirectoryUser: ...

    def list_approver_candidates(self, department: Department | None) -> list[DirectoryUser]: ...


class SqlDirectory:
    """``DirectoryPort`` backed by the kernel's own tables."""

    def __init__(self, session: Session):
        self.session = session

    def get_user(self, user_id: UUID) -> DirectoryUser:
        model = self.session.get(UserModel, user_id)
        if model is None:
            raise UserNotFoundError(str(user_id))
        return model.to_directory_user()

    def list_approver_candidates(self, department: Department | None) -> list[DirectoryUser]:
        """
        Active gestores managing ``department`` plus every active adm.

        The policy decides which of these are actually eligible; the query
        only narrows the table scan.
        """
        conditions = [UserModel.role == Role.ADM.value]
        if department is not None:
            rostered = select(GestorDepartmentModel.gestor_id).where(
                GestorDepartmentModel.department == department.value,
            )
            conditions.append(
                (UserModel.role == Role.GESTOR.value)
                & or_(
                    UserModel.department == department.value,
                    UserModel.id.in_(rostered),
                ),
            )

        stmt = (
            select(UserModel)
            .where(UserModel.is_active.is_(True), or_(*conditions))
            .order_by(UserModel.id)
        )
        return [m.to_directory_user() for m in self.session.scalars(stmt)]
