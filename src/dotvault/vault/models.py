"""
Vault data models -- items, sessions, results and persisted state.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class CanonicalItem(BaseModel):
    """A vault record normalized across providers.

    Bitwarden notes, 1Password field lists and pass blobs all end up
    as "logical name -> opaque text content".
    """

    id: Optional[str] = None
    name: str
    type: str = "note"
    content: str = ""
    location: Optional[str] = None


class SessionSource(str, Enum):
    """Where a session token came from."""

    ENV = "env"
    CACHE = "cache"
    UNLOCK = "unlock"
    AMBIENT = "ambient"


class Session(BaseModel):
    """An unlock credential for one backend.

    The token may be empty for providers whose authentication is
    ambient (1Password app integration, gpg-agent).
    """

    backend: str
    token: str = ""
    source: SessionSource = SessionSource.UNLOCK

    def __repr__(self) -> str:
        return f"Session(backend={self.backend!r}, source={self.source.value!r})"

    __str__ = __repr__


class ItemAction(str, Enum):
    """Outcome of a single-item operation."""

    CREATED = "created"
    UPDATED = "updated"
    RESTORED = "restored"
    DELETED = "deleted"
    UNCHANGED = "unchanged"
    PLANNED = "planned"
    SKIPPED = "skipped"
    FAILED = "failed"


class ItemResult(BaseModel):
    """Typed success/failure record for one item."""

    name: str
    action: ItemAction
    message: str = ""
    path: Optional[str] = None
    flagged: bool = False

    @property
    def ok(self) -> bool:
        return self.action != ItemAction.FAILED

    @property
    def changed(self) -> bool:
        return self.action in (
            ItemAction.CREATED,
            ItemAction.UPDATED,
            ItemAction.RESTORED,
            ItemAction.DELETED,
        )


class DriftStatus(str, Enum):
    """Relationship between a local file and its vault item."""

    IN_SYNC = "in_sync"
    DIVERGED = "diverged"
    LOCAL_ONLY = "local_only"
    VAULT_ONLY = "vault_only"
    UNKNOWN = "unknown"


class DriftEntry(BaseModel):
    """Drift classification for one item."""

    name: str
    status: DriftStatus
    path: Optional[str] = None


class DriftReport(BaseModel):
    """Aggregate drift scan over a set of items."""

    entries: list[DriftEntry] = Field(default_factory=list)

    def names(self, status: DriftStatus) -> list[str]:
        return [e.name for e in self.entries if e.status == status]

    @property
    def diverged(self) -> list[str]:
        return self.names(DriftStatus.DIVERGED)

    @property
    def local_only(self) -> list[str]:
        return self.names(DriftStatus.LOCAL_ONLY)

    @property
    def at_risk(self) -> list[str]:
        """Items whose local content is not safely in the vault."""
        return sorted(self.diverged + self.local_only)

    @property
    def has_drift(self) -> bool:
        return bool(self.diverged)


class OperationSummary(BaseModel):
    """Result of a batch operation (restore, push, delete).

    This and ``exit_code``/``summary_line()`` are the only things
    external callers should rely on.
    """

    operation: str
    results: list[ItemResult] = Field(default_factory=list)
    dry_run: bool = False
    offline: bool = False
    missing_required: list[str] = Field(default_factory=list)
    drift: Optional[DriftReport] = None

    def add(self, result: ItemResult) -> ItemResult:
        self.results.append(result)
        return result

    def count(self, *actions: ItemAction) -> int:
        return sum(1 for r in self.results if r.action in actions)

    @property
    def succeeded(self) -> int:
        return self.count(
            ItemAction.CREATED,
            ItemAction.UPDATED,
            ItemAction.RESTORED,
            ItemAction.DELETED,
            ItemAction.PLANNED,
        )

    @property
    def unchanged(self) -> int:
        return self.count(ItemAction.UNCHANGED)

    @property
    def skipped(self) -> int:
        return self.count(ItemAction.SKIPPED)

    @property
    def failures(self) -> list[ItemResult]:
        return [r for r in self.results if r.action == ItemAction.FAILED]

    @property
    def flagged(self) -> list[ItemResult]:
        return [r for r in self.results if r.flagged]

    @property
    def exit_code(self) -> int:
        """Number of hard failures; zero means success."""
        return len(self.failures)

    def summary_line(self) -> str:
        if self.offline:
            return f"{self.operation}: offline mode, no vault operations performed"
        verb = "planned" if self.dry_run else "done"
        line = (
            f"{self.operation}: {self.succeeded} {verb}, {self.unchanged} unchanged, "
            f"{self.skipped} skipped, {len(self.failures)} failed"
        )
        if self.missing_required:
            line += f" (missing required: {', '.join(self.missing_required)})"
        return line


class InventoryEntry(BaseModel):
    """One row of ``dotvault list``: a vault item and/or a configured item."""

    name: str
    in_vault: bool = False
    configured: bool = False
    required: bool = False
    type: Optional[str] = None
    path: Optional[str] = None
    local_exists: bool = False
    location: Optional[str] = None


class VaultState(BaseModel):
    """Restore/push bookkeeping persisted to ``~/.dotvault/state.json``."""

    backend: Optional[str] = None
    last_pull: Optional[datetime] = None
    last_push: Optional[datetime] = None
    pull_count: int = 0
    push_count: int = 0
    checksums: dict[str, str] = Field(default_factory=dict)
    last_error: Optional[str] = None
