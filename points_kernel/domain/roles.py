"""
Directory value types (``points_kernel.domain.roles``).

Roles and departments are closed enums at the kernel boundary; string values
from the store are converted here once instead of being compared ad hoc by
every caller.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from uuid import UUID


class Role(str, Enum):
    """User role."""

    COLABORADOR = "colaborador"
    GESTOR = "gestor"
    ADM = "adm"


class Department(str, Enum):
    """Organisational department a user belongs to or a gestor manages."""

    ADMINISTRATIVO = "administrativo"
    COMERCIAL = "comercial"
    FINANCEIRO = "financeiro"
    JURIDICO = "juridico"
    MARKETING = "marketing"
    OPERACOES = "operacoes"
    PESSOAS = "pessoas"
    TECNOLOGIA = "tecnologia"


class AssignmentReason(str, Enum):
    """Recognition category a gestor picks when requesting points."""

    COLABORACAO_INTERSETORIAL = "colaboracao_intersetorial"
    COLABORACAO_INTRASETORIAL = "colaboracao_intrasetorial"
    AUDITORIA_PROCESSOS_INTERNOS = "auditoria_processos_internos"
    OTIMIZACAO_PROCESSOS = "otimizacao_processos"
    POSTURA_EMPATICA = "postura_empatica"
    POSTURA_DISCIPLINA_AUTOCONTROLE = "postura_disciplina_autocontrole"
    RESPONSABILIDADE_COMPROMISSO = "responsabilidade_compromisso"
    PROATIVIDADE_INOVACAO = "proatividade_inovacao"
    PROTAGONISMO_DESAFIOS = "protagonismo_desafios"
    ESTRATEGIA_ORGANIZACAO_PLANEJAMENTO = "estrategia_organizacao_planejamento"
    PROMOVER_SUSTENTABILIDADE_FINANCEIRA = "promover_sustentabilidade_financeira"
    REALIZAR_NETWORKING_PARCEIROS = "realizar_networking_parceiros"


@dataclass(frozen=True)
class DirectoryUser:
    """
    Read-only view of a user as the directory reports it.

    ``managed_departments`` is only meaningful for gestores: the departments
    listed in the gestor roster plus the gestor's own department.
    """

    id: UUID
    role: Role
    department: Department | None = None
    managed_departments: frozenset[Department] = frozenset()
    is_active: bool = True
    display_name: str = ""

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADM

    @property
    def is_gestor(self) -> bool:
        return self.role == Role.GESTOR

    def manages(self, department: Department | None) -> bool:
        """True when this user is a gestor with standing over ``department``."""
        return self.is_gestor and department is not None and department in self.managed_departments
