"""
Kernel configuration (``points_kernel.config``).

Responsibility
--------------
Loads the YAML settings file and parses it into frozen dataclasses.  The
single runtime entry point is ``get_settings()``; services receive the parsed
dataclasses by constructor injection and never read files or environment
variables themselves.

Resolution order
----------------
1. Path passed to ``load_settings(path)``.
2. ``POINTS_KERNEL_CONFIG`` environment variable.
3. The packaged ``defaults.yaml``.

``DATABASE_URL`` always overrides ``database.url`` when set.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown strategy / out of range values  -> ``ValueError``.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml

from points_kernel.domain.approver_policy import SelectionStrategy

_logger = logging.getLogger("points_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"
CONFIG_ENV_VAR = "POINTS_KERNEL_CONFIG"
DATABASE_URL_ENV_VAR = "DATABASE_URL"


@dataclass(frozen=True)
class DatabaseSettings:
    url: str = "sqlite:///points_kernel.db"
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_pre_ping: bool = True
    pool_timeout: int = 30
    statement_timeout_ms: int | None = 5000


@dataclass(frozen=True)
class ApproverSettings:
    """How an approver is chosen when an assignment is created."""

    strategy: SelectionStrategy = SelectionStrategy.RANDOM
    # When true, adms are candidates for gestor-initiated requests too.
    admin_fallback: bool = False


@dataclass(frozen=True)
class AssignmentSettings:
    allow_self_assignment: bool = False
    max_justification_length: int = 1000
    history_limit: int = 20


@dataclass(frozen=True)
class KernelSettings:
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    approvers: ApproverSettings = field(default_factory=ApproverSettings)
    assignments: AssignmentSettings = field(default_factory=AssignmentSettings)
    log_level: str = "INFO"
    source_path: str | None = None


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a single YAML file and return its contents as a dict."""
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_database(data: dict[str, Any]) -> DatabaseSettings:
    timeout = data.get("statement_timeout_ms", DatabaseSettings.statement_timeout_ms)
    if timeout is not None and int(timeout) <= 0:
        raise ValueError(f"statement_timeout_ms must be positive, got {timeout!r}")
    return DatabaseSettings(
        url=data.get("url", DatabaseSettings.url),
        echo=bool(data.get("echo", False)),
        pool_size=int(data.get("pool_size", DatabaseSettings.pool_size)),
        max_overflow=int(data.get("max_overflow", DatabaseSettings.max_overflow)),
        pool_pre_ping=bool(data.get("pool_pre_ping", DatabaseSettings.pool_pre_ping)),
        pool_timeout=int(data.get("pool_timeout", DatabaseSettings.pool_timeout)),
        statement_timeout_ms=int(timeout) if timeout is not None else None,
    )


def parse_approvers(data: dict[str, Any]) -> ApproverSettings:
    raw_strategy = data.get("strategy", SelectionStrategy.RANDOM.value)
    try:
        strategy = SelectionStrategy(raw_strategy)
    except ValueError:
        valid = ", ".join(s.value for s in SelectionStrategy)
        raise ValueError(
            f"Unknown approver strategy {raw_strategy!r} (expected one of: {valid})"
        ) from None
    return ApproverSettings(
        strategy=strategy,
        admin_fallback=bool(data.get("admin_fallback", False)),
    )


def parse_assignments(data: dict[str, Any]) -> AssignmentSettings:
    max_len = int(data.get("max_justification_length", AssignmentSettings.max_justification_length))
    limit = int(data.get("history_limit", AssignmentSettings.history_limit))
    if max_len <= 0:
        raise ValueError(f"max_justification_length must be positive, got {max_len}")
    if limit <= 0:
        raise ValueError(f"history_limit must be positive, got {limit}")
    return AssignmentSettings(
        allow_self_assignment=bool(data.get("allow_self_assignment", False)),
        max_justification_length=max_len,
        history_limit=limit,
    )


def parse_settings(data: dict[str, Any], source_path: str | None = None) -> KernelSettings:
    """Build ``KernelSettings`` from an already-parsed YAML mapping."""
    settings = KernelSettings(
        database=parse_database(data.get("database") or {}),
        approvers=parse_approvers(data.get("approvers") or {}),
        assignments=parse_assignments(data.get("assignments") or {}),
        log_level=str((data.get("logging") or {}).get("level", "INFO")).upper(),
        source_path=source_path,
    )

    env_url = os.environ.get(DATABASE_URL_ENV_VAR)
    if env_url:
        settings = replace(settings, database=replace(settings.database, url=env_url))
    return settings


def load_settings(path: str | Path | None = None) -> KernelSettings:
    """
    Load settings from YAML.

    Raises:
        FileNotFoundError: if the resolved file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: on invalid values.
    """
    resolved = Path(path or os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH)
    settings = parse_settings(load_yaml_file(resolved), source_path=str(resolved))
    _logger.info(
        "settings_loaded",
        extra={
            "source_path": str(resolved),
            "approver_strategy": settings.approvers.strategy.value,
            "admin_fallback": settings.approvers.admin_fallback,
            "allow_self_assignment": settings.assignments.allow_self_assignment,
        },
    )
    return settings


@lru_cache(maxsize=1)
def get_settings() -> KernelSettings:
    """Process-wide settings, loaded once."""
    return load_settings()
