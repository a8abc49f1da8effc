"""
Module: points_kernel.models.user
Responsibility: ORM persistence for users (the directory) and the gestor
    department roster.
Architecture position: Kernel > Models.  May import from db/base.py only
    (domain types are imported lazily inside conversion methods).

Invariants enforced:
    - role is one of colaborador / gestor / adm (check constraint).
    - lab_points is never negative (check constraint) and is only changed by
      the ledger service's atomic UPDATE (ORM listener blocks other writes).
    - A gestor lists a department at most once (unique constraint).

Failure modes:
    - IntegrityError on a negative balance or a duplicate roster row.
    - ImmutabilityViolationError on an ORM write to lab_points.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from points_kernel.db.base import Base, UUIDString

if TYPE_CHECKING:
    from points_kernel.domain.roles import DirectoryUser


def _utcnow() -> datetime:
    return datetime.now(UTC)


class UserModel(Base):
    """A person who can hold, request, approve or redeem points."""

    __tablename__ = "users"

    __table_args__ = (
        CheckConstraint(
            "role IN ('colaborador', 'gestor', 'adm')",
            name="ck_users_valid_role",
        ),
        CheckConstraint("lab_points >= 0", name="ck_users_non_negative_balance"),
        Index("ix_users_role_active", "role", "is_active"),
        Index("ix_users_department", "department"),
    )

    display_name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    email: Mapped[str | None] = mapped_column(String(320), nullable=True, unique=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="colaborador")
    department: Mapped[str | None] = mapped_column(String(50), nullable=True)
    lab_points: Mapped[int] = mapped_column(nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=_utcnow)

    managed_department_rows: Mapped[list[GestorDepartmentModel]] = relationship(
        "GestorDepartmentModel",
        back_populates="gestor",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<User {self.id} role={self.role} department={self.department}>"

    def to_directory_user(self) -> DirectoryUser:
        """
        Convert to the domain view.  A gestor's managed departments are the
        roster rows plus their own department.
        """
        from points_kernel.domain.roles import Department, DirectoryUser, Role

        role = Role(self.role)
        department = Department(self.department) if self.department else None
        managed: set[Department] = set()
        if role == Role.GESTOR:
            managed = {Department(row.department) for row in self.managed_department_rows}
            if department is not None:
                managed.add(department)

        return DirectoryUser(
            id=self.id,
            role=role,
            department=department,
            managed_departments=frozenset(managed),
            is_active=self.is_active,
            display_name=self.display_name,
        )


class GestorDepartmentModel(Base):
    """Roster row: gestor ``gestor_id`` manages ``department``."""

    __tablename__ = "gestor_departments"

    __table_args__ = (
        UniqueConstraint("gestor_id", "department", name="uq_gestor_departments_pair"),
        Index("ix_gestor_departments_department", "department"),
    )

    gestor_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("users.id"), nullable=False,
    )
    department: Mapped[str] = mapped_column(String(50), nullable=False)

    gestor: Mapped[UserModel] = relationship(
        "UserModel", back_populates="managed_department_rows",
    )

    def __repr__(self) -> str:
        return f"<GestorDepartment gestor={self.gestor_id} department={self.department}>"
