"""
Drift detector -- compare local files against their vault items.

classify() is pure: it looks only at the two contents and decides. The
DriftDetector wraps it with file reads and vault fetches so restore
(as a safety gate) and ``dotvault status`` share one implementation.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Optional

from ..config import expand_path
from ..models import ItemType, VaultConfig, VaultItem
from .backends import VaultBackend
from .errors import KeyMaterialError
from .keys import parse_key_material
from .models import DriftEntry, DriftReport, DriftStatus, Session

logger = logging.getLogger("dotvault.vault.drift")


def classify(local: Optional[bytes], vault: Optional[str], has_path: bool = True) -> DriftStatus:
    """Classify one item.

    Args:
        local: Local file bytes, or None if the file does not exist.
        vault: Vault content, or None if the item is absent.
        has_path: Whether the item maps to a local path at all.

    Returns:
        The DriftStatus. Only DIVERGED means local data would be lost.
    """
    if not has_path:
        return DriftStatus.UNKNOWN
    vault_empty = not vault
    if local is None:
        return DriftStatus.UNKNOWN if vault_empty else DriftStatus.VAULT_ONLY
    if vault_empty:
        return DriftStatus.LOCAL_ONLY
    return DriftStatus.IN_SYNC if local == vault.encode("utf-8") else DriftStatus.DIVERGED


def restored_text(item: Optional[VaultItem], content: str) -> str:
    """What restore writes to the item's own path for this vault content.

    Key pairs write only the private block there; anything unparseable
    is written as-is.
    """
    if item is not None and item.type == ItemType.SSHKEY:
        try:
            return parse_key_material(content).private
        except KeyMaterialError:
            return content
    return content


class DriftDetector:
    """Scans items for drift between disk and vault."""

    def __init__(
        self,
        config: VaultConfig,
        backend: VaultBackend,
        session: Session,
        home: Optional[Path] = None,
    ):
        self.config = config
        self.backend = backend
        self.session = session
        self.home = home

    def local_path(self, name: str) -> Optional[Path]:
        item = self.config.vault_items.get(name)
        raw = item.path if item is not None else self.config.syncable_items.get(name)
        return expand_path(raw, self.home) if raw else None

    def check_item(self, name: str) -> DriftEntry:
        path = self.local_path(name)
        if path is None:
            return DriftEntry(name=name, status=DriftStatus.UNKNOWN)

        local = path.read_bytes() if path.is_file() else None
        content = self.backend.get_content(name, self.session)
        if content:
            content = restored_text(self.config.vault_items.get(name), content)

        status = classify(local, content, has_path=True)
        if status == DriftStatus.LOCAL_ONLY:
            logger.warning("%s exists locally but is not backed up in the vault", name)
        return DriftEntry(name=name, status=status, path=str(path))

    def scan(self, names: Optional[Iterable[str]] = None) -> DriftReport:
        """Classify every named item (default: all syncable items)."""
        if names is None:
            names = self.config.syncable_items
        return DriftReport(entries=[self.check_item(n) for n in sorted(names)])
