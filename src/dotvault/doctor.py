"""
Health diagnostics for the vault setup on this machine.

Checks provider tooling, authentication, the configuration document and
local file permissions, and reports pass/fail with actionable fixes.

Usage:
    dotvault doctor
    dotvault doctor --json-out
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from .preflight import run_preflight

if TYPE_CHECKING:
    from .models import Settings, VaultConfig
    from .vault.backends import VaultBackend
    from .vault.models import Session


@dataclass
class Check:
    """A single diagnostic check result.

    Attributes:
        name: Short check identifier.
        description: Human-readable description.
        passed: Whether the check passed.
        detail: Extra info (version, path, count, etc.).
        fix: Suggested fix if the check failed.
        category: Grouping (tools, backend, config, files).
    """

    name: str
    description: str
    passed: bool
    detail: str = ""
    fix: str = ""
    category: str = "general"


@dataclass
class DiagnosticReport:
    """Full diagnostic report across all categories."""

    checks: list[Check] = field(default_factory=list)
    home: str = ""
    backend: str = ""

    @property
    def passed_count(self) -> int:
        """Number of checks that passed."""
        return sum(1 for c in self.checks if c.passed)

    @property
    def failed_count(self) -> int:
        """Number of checks that failed."""
        return sum(1 for c in self.checks if not c.passed)

    @property
    def total_count(self) -> int:
        return len(self.checks)

    @property
    def all_passed(self) -> bool:
        """Whether every check passed."""
        return self.failed_count == 0

    def to_dict(self) -> dict:
        """Serialize to a JSON-friendly dict."""
        return {
            "home": self.home,
            "backend": self.backend,
            "passed": self.passed_count,
            "failed": self.failed_count,
            "total": self.total_count,
            "all_passed": self.all_passed,
            "checks": [
                {
                    "name": c.name,
                    "category": c.category,
                    "description": c.description,
                    "passed": c.passed,
                    "detail": c.detail,
                    "fix": c.fix,
                }
                for c in self.checks
            ],
        }


def run_diagnostics(
    home: Path,
    settings: "Settings",
    config: Optional["VaultConfig"] = None,
    config_file: Optional[Path] = None,
    backend: Optional["VaultBackend"] = None,
    session: Optional["Session"] = None,
    user_home: Optional[Path] = None,
) -> DiagnosticReport:
    """Run every diagnostic check.

    Args:
        home: dotvault state directory (~/.dotvault).
        settings: Active runtime settings.
        config: Loaded configuration, if it loaded.
        config_file: Where the configuration was looked for.
        backend: Backend instance for provider health checks.
        session: Session to use for provider health checks.
        user_home: Base for ``~/`` paths (tests).

    Returns:
        DiagnosticReport with results for every check.
    """
    report = DiagnosticReport(home=str(home), backend=settings.backend.value)

    report.checks.extend(_check_tools(settings))
    report.checks.extend(_check_home(home))
    report.checks.extend(_check_config(config, config_file))
    if backend is not None:
        report.checks.extend(backend.health_check(session))
    if config is not None:
        report.checks.extend(_check_file_permissions(config, user_home))

    return report


def _check_tools(settings: "Settings") -> list[Check]:
    """Check that the provider CLI tools are installed."""
    checks = []
    for tool in run_preflight(settings.backend.value).checks:
        checks.append(Check(
            name=f"tools:{tool.binary}",
            description=tool.name,
            passed=tool.installed,
            detail=tool.version if tool.installed else "not found",
            fix="" if tool.installed else tool.hint(),
            category="tools",
        ))
    return checks


def _check_home(home: Path) -> list[Check]:
    """Check the state directory and session cache permissions."""
    checks = [Check(
        name="home:dir",
        description="State directory",
        passed=home.is_dir(),
        detail=str(home),
        fix="" if home.is_dir() else "dotvault init",
        category="config",
    )]

    for cache in sorted(home.glob(".*-session")) if home.is_dir() else []:
        mode = cache.stat().st_mode & 0o777
        ok = mode & 0o077 == 0
        checks.append(Check(
            name=f"home:{cache.name}",
            description="Session cache is owner-only",
            passed=ok,
            detail=oct(mode),
            fix="" if ok else f"chmod 600 {cache}",
            category="config",
        ))
    return checks


def _check_config(config: Optional["VaultConfig"], config_file: Optional[Path]) -> list[Check]:
    """Check that the configuration document loaded."""
    where = str(config_file) if config_file else ""
    if config is None:
        return [Check(
            name="config:load",
            description="Configuration document",
            passed=False,
            detail=where or "not found",
            fix="dotvault discover  (or dotvault validate for details)",
            category="config",
        )]
    return [
        Check(
            name="config:load",
            description="Configuration document",
            passed=True,
            detail=where,
            category="config",
        ),
        Check(
            name="config:items",
            description="Vault items",
            passed=bool(config.vault_items),
            detail=(
                f"{len(config.required_items())} required, "
                f"{len(config.optional_items())} optional, "
                f"{len(config.syncable_items)} syncable"
            ),
            fix="" if config.vault_items else "dotvault discover --merge",
            category="config",
        ),
    ]


def _check_file_permissions(config: "VaultConfig", user_home: Optional[Path]) -> list[Check]:
    """Private material on disk must not be group/world readable."""
    from .config import expand_path
    from .vault.engine import permission_for

    checks = []
    for name, item in sorted(config.vault_items.items()):
        path = expand_path(item.path, user_home)
        if not path.is_file():
            continue
        wanted = permission_for(item, path)
        mode = os.stat(path).st_mode & 0o777
        if wanted & 0o077 or not mode & 0o077:
            continue
        checks.append(Check(
            name=f"files:{name}",
            description=f"{name} is owner-only",
            passed=False,
            detail=f"{path} is {oct(mode)}",
            fix=f"chmod 600 {path}",
            category="files",
        ))
    if not checks:
        checks.append(Check(
            name="files:permissions",
            description="Private files are owner-only",
            passed=True,
            category="files",
        ))
    return checks
