"""
Pytest fixtures for the points kernel test suite.

Provides:
- A fresh database per test (SQLite file under tmp_path by default)
- Deterministic clock, event bus and settings
- User factories and a standard organisation
- Captured structured logs

Environment Variables:
- DATABASE_URL: when it points at PostgreSQL, tests run there instead of
  SQLite and ``@pytest.mark.postgres`` tests are enabled.
"""

import json
import logging
import os
import random
from dataclasses import dataclass
from io import StringIO
from typing import Generator
from uuid import UUID

import pytest
from sqlalchemy.orm import Session

from points_kernel.config import ApproverSettings, AssignmentSettings, KernelSettings
from points_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from points_kernel.db.immutability import register_immutability_listeners
from points_kernel.domain.approver_policy import SelectionStrategy
from points_kernel.domain.clock import DeterministicClock
from points_kernel.domain.ledger import EntryKind, EntrySource
from points_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from points_kernel.models.user import GestorDepartmentModel, UserModel
from points_kernel.services.ledger_service import LedgerService
from points_kernel.services.notification_service import InMemoryEventBus
from points_kernel.services.workflow_service import AssignmentWorkflow


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )
    config.addinivalue_line(
        "markers", "slow_locks: mark test as potentially waiting for DB locks"
    )


def _postgres_url() -> str | None:
    url = os.environ.get("DATABASE_URL", "")
    return url if url.startswith("postgresql") else None


def pytest_collection_modifyitems(config, items):
    if _postgres_url():
        return
    skip_pg = pytest.mark.skip(reason="DATABASE_URL does not point at PostgreSQL")
    for item in items:
        if "postgres" in item.keywords:
            item.add_marker(skip_pg)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture points_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, workflow):
            workflow.create_assignment(...)
            logs = captured_logs()
            assert any(r["message"] == "assignment_created" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("points_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def db_url(tmp_path) -> str:
    return _postgres_url() or f"sqlite:///{tmp_path / 'points.db'}"


@pytest.fixture
def db_engine(db_url):
    """Fresh schema per test.  Immutability listeners stay registered."""
    engine = init_engine_from_url(
        db_url, echo=False, pool_size=30, max_overflow=20, pool_timeout=10,
    )
    if _postgres_url():
        drop_tables()
    create_tables()
    register_immutability_listeners()
    yield engine
    if _postgres_url():
        drop_tables()
    reset_engine()


@pytest.fixture
def session_factory(db_engine):
    return get_session_factory()


@pytest.fixture
def session(session_factory) -> Generator[Session, None, None]:
    """A real session; workflows commit through it."""
    sess = session_factory()
    yield sess
    sess.rollback()
    sess.close()


# =============================================================================
# Kernel collaborators
# =============================================================================


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    return DeterministicClock()


@pytest.fixture
def event_bus() -> InMemoryEventBus:
    return InMemoryEventBus()


@pytest.fixture
def settings() -> KernelSettings:
    """Defaults, except a deterministic approver choice."""
    return KernelSettings(
        approvers=ApproverSettings(strategy=SelectionStrategy.FIRST_ELIGIBLE),
        assignments=AssignmentSettings(),
    )


@pytest.fixture
def make_workflow(deterministic_clock, event_bus, settings):
    """Build an ``AssignmentWorkflow`` over any session."""

    def _make(sess: Session, **overrides) -> AssignmentWorkflow:
        kwargs = dict(
            clock=deterministic_clock,
            settings=settings,
            events=event_bus,
            rng=random.Random(7),
        )
        kwargs.update(overrides)
        return AssignmentWorkflow(sess, **kwargs)

    return _make


@pytest.fixture
def workflow(session, make_workflow) -> AssignmentWorkflow:
    return make_workflow(session)


# =============================================================================
# Users
# =============================================================================


@pytest.fixture
def make_user(session):
    """
    Create and commit a user.

    Usage::

        gestor = make_user("gestor", "tecnologia", managed=("comercial",))
    """

    counter = {"n": 0}

    def _make(
        role: str = "colaborador",
        department: str | None = "tecnologia",
        *,
        managed: tuple[str, ...] = (),
        is_active: bool = True,
        name: str | None = None,
    ) -> UUID:
        counter["n"] += 1
        user = UserModel(
            display_name=name or f"{role}-{counter['n']}",
            email=f"{role}{counter['n']}@example.test",
            role=role,
            department=department,
            is_active=is_active,
        )
        for dept in managed:
            user.managed_department_rows.append(GestorDepartmentModel(department=dept))
        session.add(user)
        session.commit()
        return user.id

    return _make


@pytest.fixture
def fund(session, deterministic_clock):
    """Give a user an opening balance through the ledger."""

    def _fund(user_id: UUID, amount: int) -> None:
        LedgerService(session, deterministic_clock).post(
            user_id,
            EntryKind.CREDIT,
            amount,
            "Opening balance",
            source=EntrySource.ADMIN_GRANT,
        )
        session.commit()

    return _fund


@dataclass(frozen=True)
class Org:
    """Standard cast used across workflow tests."""

    adm: UUID
    gestor_tec: UUID
    gestor_tec_2: UUID
    gestor_com: UUID
    colab_tec: UUID
    colab_tec_2: UUID
    colab_com: UUID
    colab_mkt: UUID


@pytest.fixture
def org(make_user) -> Org:
    """
    tecnologia: two gestores, two colaboradores.
    comercial:  one gestor, one colaborador.
    marketing:  one colaborador, no gestor.
    """
    return Org(
        adm=make_user("adm", "administrativo", name="Ana Adm"),
        gestor_tec=make_user("gestor", "tecnologia", name="Gil Tec"),
        gestor_tec_2=make_user("gestor", "tecnologia", name="Gui Tec"),
        gestor_com=make_user("gestor", "comercial", name="Gabi Com"),
        colab_tec=make_user("colaborador", "tecnologia", name="Caio Tec"),
        colab_tec_2=make_user("colaborador", "tecnologia", name="Cris Tec"),
        colab_com=make_user("colaborador", "comercial", name="Cora Com"),
        colab_mkt=make_user("colaborador", "marketing", name="Clara Mkt"),
    )
