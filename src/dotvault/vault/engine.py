"""
Vault engine -- orchestrates restore, push and item management.

This is the command center. It takes the frozen configuration, one
backend and a session manager, and runs the operations behind the CLI:

    dotvault restore  ->  session -> drift gate -> fetch -> atomic write
    dotvault push     ->  session -> compare -> update changed items

Everything that mutates local files or the vault runs under an
exclusive lock on ~/.dotvault/.lock so two invocations never interleave.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

from ..config import (
    LOCK_FILENAME,
    SETTINGS_FILENAME,
    STATE_FILENAME,
    contract_path,
    dotvault_home,
    expand_path,
    load_config,
    load_settings,
    save_settings,
    session_file_path,
)
from ..fileio import (
    EXEC_MODE,
    PRIVATE_MODE,
    PUBLIC_MODE,
    atomic_write,
    backup_file,
    file_lock,
    file_mode,
)
from ..models import BackendType, ItemType, Settings, VaultConfig, VaultItem, VaultLocation
from ..prompts import ConsolePrompter, Prompter, confirm_typed_name
from ..validation import NAME_PATTERN, ValidationReport, validate_remote
from .backends import VaultBackend, create_backend
from .drift import DriftDetector
from .errors import DriftDetected, KeyMaterialError, VaultError
from .keys import combine_key_material, parse_key_material
from .models import (
    DriftReport,
    InventoryEntry,
    ItemAction,
    ItemResult,
    OperationSummary,
    Session,
    VaultState,
)
from .session import SessionManager

logger = logging.getLogger("dotvault.vault.engine")

ENV_SECRETS_ITEM = "Environment-Secrets"
ENV_LOADER_NAME = "load-env.sh"

_ENV_LOADER = """#!/usr/bin/env bash
# Generated by dotvault restore.
# Source this file to load environment secrets: source {loader}

ENV_FILE="{secrets}"

if [[ -f "$ENV_FILE" ]]; then
    while IFS= read -r line || [[ -n "$line" ]]; do
        [[ -z "$line" || "$line" =~ ^[[:space:]]*# ]] && continue
        export "$line"
    done < "$ENV_FILE"
fi
"""


@dataclass
class PlannedWrite:
    """One file restore will write."""

    path: Path
    content: str
    mode: int


def is_env_secrets(item: VaultItem, path: Path) -> bool:
    return item.name == ENV_SECRETS_ITEM or path.name.endswith("env.secrets")


def permission_for(item: VaultItem, path: Path) -> int:
    """Permission bits for the item's main file."""
    if item.type == ItemType.SSHKEY or is_env_secrets(item, path):
        return PRIVATE_MODE
    parts = set(path.parts)
    if ".ssh" in parts or ".aws" in parts:
        return PRIVATE_MODE
    return PUBLIC_MODE


def _shell_path(path: Path, home: Path) -> str:
    shown = contract_path(path, home)
    return "$HOME/" + shown[2:] if shown.startswith("~/") else shown


def plan_writes(
    item: VaultItem, path: Path, content: str, home: Path
) -> tuple[list[PlannedWrite], Optional[str]]:
    """Decide which files restore writes for one item.

    Returns:
        The planned writes and, if the content could not be parsed as
        key material, the reason it is flagged.
    """
    if item.type == ItemType.SSHKEY:
        try:
            pair = parse_key_material(content)
        except KeyMaterialError as exc:
            return [PlannedWrite(path, content, PRIVATE_MODE)], f"{exc}; written as-is"
        writes = [PlannedWrite(path, pair.private, PRIVATE_MODE)]
        if pair.public:
            writes.append(PlannedWrite(path.with_name(path.name + ".pub"), pair.public, PUBLIC_MODE))
        return writes, None

    writes = [PlannedWrite(path, content, permission_for(item, path))]
    if is_env_secrets(item, path):
        loader = path.with_name(ENV_LOADER_NAME)
        writes.append(PlannedWrite(
            loader,
            _ENV_LOADER.format(loader=_shell_path(loader, home), secrets=_shell_path(path, home)),
            EXEC_MODE,
        ))
    return writes, None


def _sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class VaultEngine:
    """Runs vault operations for one configuration and one backend.

    Args:
        config: The frozen configuration document.
        backend: Provider adapter.
        settings: Runtime settings.
        state_dir: dotvault state directory (~/.dotvault).
        user_home: Base for ``~/`` paths in the configuration.
        prompter: Interaction port for confirmations.
        sessions: Session manager override (tests).
    """

    def __init__(
        self,
        config: VaultConfig,
        backend: VaultBackend,
        settings: Settings,
        state_dir: Optional[Path] = None,
        user_home: Optional[Path] = None,
        prompter: Optional[Prompter] = None,
        sessions: Optional[SessionManager] = None,
    ):
        self.config = config
        self.backend = backend
        self.settings = settings
        self.state_dir = Path(state_dir) if state_dir is not None else dotvault_home()
        self.user_home = Path(user_home) if user_home is not None else Path.home()
        self.prompter = prompter or ConsolePrompter()
        self.sessions = sessions or SessionManager(
            backend,
            session_file_path(settings, self.state_dir),
            env=backend.env,
            max_attempts=settings.unlock_attempts,
        )
        self.state = self._load_state()
        self._session: Optional[Session] = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def offline(self) -> bool:
        return self.settings.offline

    def _load_state(self) -> VaultState:
        """Load restore/push state from disk."""
        state_file = self.state_dir / STATE_FILENAME
        if state_file.exists():
            try:
                return VaultState(**json.loads(state_file.read_text(encoding="utf-8")))
            except (json.JSONDecodeError, ValueError) as exc:
                logger.warning("Failed to load vault state: %s", exc)
        return VaultState()

    def _save_state(self) -> None:
        """Persist restore/push state to disk."""
        self.state.backend = self.backend.name
        atomic_write(self.state_dir / STATE_FILENAME, self.state.model_dump_json(indent=2), PRIVATE_MODE)

    def _lock(self):
        return file_lock(self.state_dir / LOCK_FILENAME)

    def local_path(self, name: str) -> Optional[Path]:
        item = self.config.vault_items.get(name)
        raw = item.path if item is not None else self.config.syncable_items.get(name)
        return expand_path(raw, self.user_home) if raw else None

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    def session(self, sync: bool = True) -> Session:
        """Verify tooling, obtain a session and refresh the provider cache.

        Raises:
            PrerequisiteMissing: If the provider CLI is not installed.
            AuthenticationRequired: If the provider cannot be unlocked.
        """
        if self._session is None:
            self.backend.init()
            self._session = self.sessions.get()
            if sync:
                self.backend.sync_remote(self._session)
        return self._session

    # ------------------------------------------------------------------
    # Drift
    # ------------------------------------------------------------------

    def drift(self, names: Optional[Iterable[str]] = None) -> DriftReport:
        """Drift report for the named items (default: syncable items)."""
        detector = DriftDetector(self.config, self.backend, self.session(), self.user_home)
        return detector.scan(names)

    def status(self) -> DriftReport:
        """Drift report over every configured item."""
        return self.drift(set(self.config.vault_items) | set(self.config.syncable_items))

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    def restore(self, force: bool = False, preview: bool = False) -> OperationSummary:
        """Pull every configured item from the vault to its local path.

        Args:
            force: Overwrite local files even if they have drifted.
            preview: Report what would be written without writing.

        Returns:
            OperationSummary of the run.

        Raises:
            DriftDetected: If local files would be overwritten (no force).
        """
        summary = OperationSummary(operation="restore", dry_run=preview)
        if self.offline:
            summary.offline = True
            logger.info("Offline mode: skipping restore")
            return summary

        with self._lock():
            session = self.session()

            report = DriftDetector(self.config, self.backend, session, self.user_home).scan()
            summary.drift = report
            if report.has_drift and not force:
                if not preview:
                    raise DriftDetected(report.diverged)
                logger.warning("Restore would stop on drift: %s", ", ".join(report.diverged))
            elif report.has_drift:
                logger.warning("Overwriting drifted items: %s", ", ".join(report.diverged))

            for name, item in sorted(self.config.vault_items.items()):
                content = self.backend.get_content(name, session)
                if not content:
                    if item.required:
                        summary.missing_required.append(name)
                    summary.add(ItemResult(
                        name=name,
                        action=ItemAction.SKIPPED,
                        message=f"not in vault ({item.requirement})",
                    ))
                    continue
                summary.add(self._restore_item(item, content, preview))

            if not preview and summary.exit_code == 0:
                self.state.last_pull = datetime.now(timezone.utc)
                self.state.pull_count += 1
                self._save_state()

        logger.info(summary.summary_line())
        return summary

    def _restore_item(self, item: VaultItem, content: str, preview: bool) -> ItemResult:
        path = expand_path(item.path, self.user_home)
        writes, flag = plan_writes(item, path, content, self.user_home)
        shown = ", ".join(str(w.path) for w in writes)

        if preview:
            return ItemResult(
                name=item.name, action=ItemAction.PLANNED, path=str(path),
                message=f"would write {shown}", flagged=flag is not None,
            )

        try:
            pending = [
                w for w in writes
                if not (w.path.is_file() and w.path.read_bytes() == w.content.encode("utf-8"))
            ]
            for w in writes:
                if w not in pending and file_mode(w.path) != w.mode:
                    os.chmod(w.path, w.mode)
            for w in pending:
                if self.settings.backup_on_restore:
                    backup_file(w.path)
                atomic_write(w.path, w.content, w.mode)
        except OSError as exc:
            logger.error("%s: write failed: %s", item.name, exc)
            return ItemResult(
                name=item.name, action=ItemAction.FAILED, path=str(path),
                message=f"write failed: {exc}",
            )

        self.state.checksums[item.name] = _sha256(writes[0].content)
        if flag:
            logger.warning("%s: %s", item.name, flag)
        return ItemResult(
            name=item.name,
            action=ItemAction.RESTORED if pending else ItemAction.UNCHANGED,
            path=str(path),
            message=flag or shown,
            flagged=flag is not None,
        )

    # ------------------------------------------------------------------
    # Push
    # ------------------------------------------------------------------

    def push(
        self,
        names: Optional[Iterable[str]] = None,
        all_items: bool = False,
        dry_run: bool = False,
    ) -> OperationSummary:
        """Send local edits of syncable items back to the vault.

        Args:
            names: Items to push. Ignored when all_items is set.
            all_items: Push every syncable item.
            dry_run: Report intended writes without writing.

        Returns:
            OperationSummary; exit_code is the number of hard failures.
        """
        summary = OperationSummary(operation="push", dry_run=dry_run)
        if self.offline:
            summary.offline = True
            logger.info("Offline mode: skipping push")
            return summary

        targets = sorted(self.config.syncable_items) if all_items or not names else list(names)

        with self._lock():
            session = self.session()
            for name in targets:
                summary.add(self._push_item(name, session, dry_run))

            if not dry_run and summary.count(ItemAction.UPDATED):
                self.state.last_push = datetime.now(timezone.utc)
                self.state.push_count += 1
                self._save_state()

        logger.info(summary.summary_line())
        return summary

    def _push_item(self, name: str, session: Session, dry_run: bool) -> ItemResult:
        if name not in self.config.syncable_items:
            return ItemResult(name=name, action=ItemAction.FAILED, message="not a syncable item")

        path = expand_path(self.config.syncable_items[name], self.user_home)
        if not path.is_file():
            return ItemResult(name=name, action=ItemAction.SKIPPED, path=str(path),
                              message="local file missing")
        try:
            local = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            return ItemResult(name=name, action=ItemAction.FAILED, path=str(path),
                              message=f"cannot read local file: {exc}")

        vault = self.backend.get_content(name, session)
        if vault is None:
            return ItemResult(name=name, action=ItemAction.SKIPPED, path=str(path),
                              message=f"not in vault; use 'dotvault create {name}'")
        if vault == local:
            return ItemResult(name=name, action=ItemAction.UNCHANGED, path=str(path))
        if dry_run:
            return ItemResult(name=name, action=ItemAction.PLANNED, path=str(path),
                              message="would update vault")

        result = self.backend.update_item(name, local, session)
        result.path = str(path)
        if result.action == ItemAction.UPDATED:
            self.state.checksums[name] = _sha256(local)
        return result

    # ------------------------------------------------------------------
    # Item management
    # ------------------------------------------------------------------

    def _read_for_create(self, item: Optional[VaultItem], path: Path) -> str:
        text = path.read_text(encoding="utf-8")
        if item is not None and item.type == ItemType.SSHKEY:
            pub = path.with_name(path.name + ".pub")
            public = pub.read_text(encoding="utf-8") if pub.is_file() else None
            return combine_key_material(text, public)
        return text

    def create(
        self,
        name: str,
        path: Optional[str] = None,
        force: bool = False,
        dry_run: bool = False,
    ) -> ItemResult:
        """Create a vault item from a local file.

        An existing item with identical content is a no-op; with
        different content it is only overwritten when force is set.
        """
        if not NAME_PATTERN.match(name):
            return ItemResult(name=name, action=ItemAction.FAILED,
                              message="invalid item name (e.g. SSH-Work, Git-Config)")

        item = self.config.vault_items.get(name)
        local = expand_path(path, self.user_home) if path else self.local_path(name)
        if local is None:
            return ItemResult(name=name, action=ItemAction.FAILED,
                              message="no path configured; pass one explicitly")
        if not local.is_file():
            return ItemResult(name=name, action=ItemAction.FAILED, path=str(local),
                              message="local file not found")
        try:
            content = self._read_for_create(item, local)
        except (OSError, UnicodeDecodeError) as exc:
            return ItemResult(name=name, action=ItemAction.FAILED, path=str(local),
                              message=f"cannot read local file: {exc}")
        if not content.strip():
            return ItemResult(name=name, action=ItemAction.FAILED, path=str(local),
                              message="local file is empty")

        if self.offline:
            return ItemResult(name=name, action=ItemAction.SKIPPED, message="offline mode")

        with self._lock():
            session = self.session()
            existing = self.backend.get_item(name, session)
            if existing is not None and existing.content == content:
                return ItemResult(name=name, action=ItemAction.UNCHANGED, path=str(local),
                                  message="already in vault")
            if existing is not None and not force:
                return ItemResult(name=name, action=ItemAction.FAILED, path=str(local),
                                  message="already exists in vault; use --force to overwrite")
            if dry_run:
                verb = "update" if existing is not None else "create"
                return ItemResult(name=name, action=ItemAction.PLANNED, path=str(local),
                                  message=f"would {verb} from {local}")
            if existing is not None:
                result = self.backend.update_item(name, content, session)
            else:
                result = self.backend.create_item(name, content, session)
        result.path = str(local)
        return result

    def delete(
        self,
        names: Iterable[str],
        force: bool = False,
        dry_run: bool = False,
    ) -> OperationSummary:
        """Delete items from the vault.

        Protected items (those in the configuration) always require the
        exact name to be typed, even with force. Others need a yes/no
        confirmation unless force is set.
        """
        summary = OperationSummary(operation="delete", dry_run=dry_run)
        if self.offline:
            summary.offline = True
            return summary

        with self._lock():
            session = self.session()
            for name in names:
                if not self.backend.item_exists(name, session):
                    summary.add(ItemResult(name=name, action=ItemAction.FAILED,
                                           message="not found in vault"))
                    continue
                if dry_run:
                    summary.add(ItemResult(name=name, action=ItemAction.PLANNED,
                                           message="would delete"))
                    continue

                if self.config.is_protected(name):
                    if not confirm_typed_name(self.prompter, name):
                        logger.info("Deletion of protected item %s not confirmed", name)
                        summary.add(ItemResult(name=name, action=ItemAction.SKIPPED,
                                               message="confirmation did not match; not deleted"))
                        continue
                elif not force and not self.prompter.confirm(f"Delete '{name}' from the vault?"):
                    summary.add(ItemResult(name=name, action=ItemAction.SKIPPED, message="cancelled"))
                    continue

                summary.add(self.backend.delete_item(name, session))

        return summary

    def inventory(self, location_filter: Optional[str] = None) -> list[InventoryEntry]:
        """Vault items joined with the configuration for ``dotvault list``."""
        location = VaultLocation.parse(location_filter) if location_filter else None
        session = self.session()
        rows: dict[str, InventoryEntry] = {}
        for found in self.backend.list_items(session, location):
            rows[found.name] = InventoryEntry(name=found.name, in_vault=True, location=found.location)

        for name, item in self.config.vault_items.items():
            if location is not None and name not in rows:
                continue
            path = expand_path(item.path, self.user_home)
            row = rows.setdefault(name, InventoryEntry(name=name))
            row.configured = True
            row.required = item.required
            row.type = item.type.value
            row.path = item.path
            row.local_exists = path.is_file()
        return sorted(rows.values(), key=lambda r: r.name)

    def locations(self) -> list[str]:
        return self.backend.list_locations(self.session())

    def check(self) -> ValidationReport:
        """Check that every configured item exists in the vault."""
        report = ValidationReport()
        present = {i.name for i in self.backend.list_items(self.session())}
        for name, item in sorted(self.config.vault_items.items()):
            report.checked += 1
            if name in present:
                continue
            if item.required:
                report.error(name, "required item missing from vault")
            else:
                report.warn(name, "optional item not in vault")
        return report

    def validate_remote(self) -> ValidationReport:
        """Check the content shape of every configured item."""
        return validate_remote(self.config, self.backend, self.session())


# ---------------------------------------------------------------------------
# Construction and collaborator entry points
# ---------------------------------------------------------------------------

def open_engine(
    config_file: Optional[Path] = None,
    home: Optional[Path] = None,
    prompter: Optional[Prompter] = None,
    settings: Optional[Settings] = None,
) -> VaultEngine:
    """Build an engine from the on-disk configuration and settings.

    Raises:
        SchemaInvalid: If the configuration document is invalid.
        VaultError: If settings select an unknown backend.
    """
    home = Path(home) if home is not None else dotvault_home()
    settings = settings or load_settings(home)
    config = load_config(config_file)
    backend = create_backend(settings.backend, settings, location=config.vault_location)
    return VaultEngine(config, backend, settings, state_dir=home, prompter=prompter)


def restore(force: bool = False, preview: bool = False, config_file: Optional[Path] = None) -> OperationSummary:
    """Restore every configured item. See VaultEngine.restore."""
    return open_engine(config_file).restore(force=force, preview=preview)


def push(
    names: Optional[Iterable[str]] = None,
    all_items: bool = False,
    dry_run: bool = False,
    config_file: Optional[Path] = None,
) -> OperationSummary:
    """Push local edits. See VaultEngine.push."""
    return open_engine(config_file).push(names, all_items=all_items, dry_run=dry_run)


def init_vault(
    home: Optional[Path] = None,
    backend: BackendType = BackendType.BITWARDEN,
    force: bool = False,
) -> Settings:
    """Create ~/.dotvault and record the chosen backend.

    Raises:
        VaultError: If already initialized and force is not set.
    """
    home = Path(home) if home is not None else dotvault_home()
    settings_file = home / SETTINGS_FILENAME
    if settings_file.exists() and not force:
        raise VaultError(
            f"dotvault is already initialized at {home}",
            remediation="Use --force to reinitialize.",
        )
    existing = load_settings(home, env={}) if settings_file.exists() else Settings()
    settings = existing.model_copy(update={"backend": BackendType(backend)})
    home.mkdir(parents=True, exist_ok=True)
    os.chmod(home, 0o700)
    save_settings(settings, home)
    logger.info("Initialized dotvault at %s with backend %s", home, settings.backend.value)
    return settings
