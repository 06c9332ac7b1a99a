"""
Vault backends -- where the secrets live.

Each backend drives a provider's command-line tool and translates its
native records into CanonicalItem (logical name -> text content). The
rest of dotvault never sees a provider-specific shape.

Bitwarden: explicit unlock token (BW_SESSION), secure notes, folders.
1Password: op v2, ambient app/biometric auth or a service account token.
pass:      GPG-encrypted files under PASSWORD_STORE_DIR, gpg-agent auth.
"""

from __future__ import annotations

import base64
import json
import logging
import os
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Mapping, Optional, Sequence, Union

from ..doctor import Check
from ..models import BackendType, Settings, VaultLocation
from ..preflight import check_tool, require_tools
from .errors import (
    AuthenticationRequired,
    PrerequisiteMissing,
    ProviderUnavailable,
    SessionInvalid,
    VaultError,
    WriteFailure,
)
from .models import CanonicalItem, ItemAction, ItemResult, Session, SessionSource

logger = logging.getLogger("dotvault.vault.backends")


class VaultBackend(ABC):
    """Abstract vault provider.

    Subclasses implement the provider primitives (``_create``,
    ``_update``, ``_delete`` and the read operations). The public
    mutating operations wrap them with the shared rules: identical
    content is a successful no-op, and a missing item on update/delete
    is a failed ItemResult, never an exception.
    """

    session_env_var: Optional[str] = None

    def __init__(
        self,
        settings: Settings,
        location: Optional[VaultLocation] = None,
        env: Optional[Mapping[str, str]] = None,
    ):
        self.settings = settings
        self.location = location
        self.timeout = settings.timeout_seconds
        self.env = dict(os.environ if env is None else env)

    @property
    @abstractmethod
    def name(self) -> str:
        """Backend identifier (bitwarden, 1password, pass)."""

    # ------------------------------------------------------------------
    # Process plumbing
    # ------------------------------------------------------------------

    def _process_env(self, session: Optional[Session] = None) -> dict[str, str]:
        env = dict(self.env)
        if session is not None and session.token and self.session_env_var:
            env[self.session_env_var] = session.token
        return env

    def _run(
        self,
        args: Sequence[str],
        session: Optional[Session] = None,
        input: Optional[str] = None,
        interactive: bool = False,
    ) -> subprocess.CompletedProcess:
        """Run a provider command with the configured timeout.

        Interactive commands inherit the terminal for stdin/stderr so the
        provider can prompt for a master password; only stdout is
        captured.

        Raises:
            PrerequisiteMissing: If the executable is not installed.
            ProviderUnavailable: On timeout or any other OS failure.
        """
        logger.debug("%s: running %s", self.name, " ".join(args[:3]))
        try:
            if interactive:
                return subprocess.run(
                    list(args), stdout=subprocess.PIPE, text=True,
                    check=False, timeout=self.timeout, env=self._process_env(session),
                )
            return subprocess.run(
                list(args), input=input, capture_output=True, text=True,
                check=False, timeout=self.timeout, env=self._process_env(session),
            )
        except FileNotFoundError as exc:
            tool = check_tool(args[0])
            raise PrerequisiteMissing(
                f"'{args[0]}' is not installed", remediation=tool.hint()
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise ProviderUnavailable(
                f"{self.name}: '{' '.join(args[:3])}' timed out after {self.timeout:g}s",
                remediation="Check network connectivity, or set DOTVAULT_OFFLINE=1.",
            ) from exc
        except OSError as exc:
            raise ProviderUnavailable(f"{self.name}: {exc}") from exc

    def _json(self, result: subprocess.CompletedProcess, what: str):
        try:
            return json.loads(result.stdout or "null")
        except json.JSONDecodeError as exc:
            raise ProviderUnavailable(f"{self.name}: unreadable {what} output") from exc

    @staticmethod
    def _stderr(result: subprocess.CompletedProcess) -> str:
        """Last line of stderr, where provider CLIs put the actual error."""
        lines = (result.stderr or "").strip().splitlines()
        return lines[-1] if lines else f"exit status {result.returncode}"

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def init(self) -> None:
        """Verify the provider tooling is installed.

        Raises:
            PrerequisiteMissing: With install instructions.
        """
        require_tools(self.name)

    @abstractmethod
    def login_check(self) -> bool:
        """True if the user is authenticated to the provider."""

    @abstractmethod
    def acquire_session(self) -> Session:
        """Unlock the provider and return a reusable session.

        Raises:
            AuthenticationRequired: If the user must log in first.
            SessionInvalid: If the unlock attempt was rejected.
        """

    @abstractmethod
    def validate_session(self, token: str) -> bool:
        """True if token (possibly empty) is accepted by the provider."""

    @abstractmethod
    def sync_remote(self, session: Session) -> bool:
        """Refresh the provider's local cache. Failure is non-fatal."""

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @abstractmethod
    def get_item(self, name: str, session: Session) -> Optional[CanonicalItem]:
        """Fetch one item by exact name, or None if absent."""

    @abstractmethod
    def list_items(
        self, session: Session, location: Optional[VaultLocation] = None
    ) -> list[CanonicalItem]:
        """List items (content not populated), optionally within a location."""

    def list_locations(self, session: Session) -> list[str]:
        """Names of the provider's namespaces (folders, vaults, directories)."""
        return []

    def get_content(self, name: str, session: Session) -> Optional[str]:
        item = self.get_item(name, session)
        return item.content if item is not None else None

    def item_exists(self, name: str, session: Session) -> bool:
        return self.get_item(name, session) is not None

    def get_item_id(self, name: str, session: Session) -> Optional[str]:
        item = self.get_item(name, session)
        return item.id if item is not None else None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @abstractmethod
    def _create(self, name: str, content: str, session: Session) -> None:
        """Provider primitive: create a new item. Raises WriteFailure."""

    @abstractmethod
    def _update(self, item: CanonicalItem, content: str, session: Session) -> None:
        """Provider primitive: replace an item's content. Raises WriteFailure."""

    @abstractmethod
    def _delete(self, item: CanonicalItem, session: Session) -> None:
        """Provider primitive: delete an item. Raises WriteFailure."""

    def create_item(self, name: str, content: str, session: Session) -> ItemResult:
        """Create an item; an identical existing item is a no-op success."""
        existing = self.get_item(name, session)
        if existing is not None:
            if existing.content == content:
                return ItemResult(name=name, action=ItemAction.UNCHANGED, message="already in vault")
            return ItemResult(
                name=name, action=ItemAction.FAILED,
                message="already exists with different content; use update",
            )
        try:
            self._create(name, content, session)
        except WriteFailure as exc:
            return ItemResult(name=name, action=ItemAction.FAILED, message=str(exc))
        logger.info("%s: created %s", self.name, name)
        return ItemResult(name=name, action=ItemAction.CREATED)

    def update_item(self, name: str, content: str, session: Session) -> ItemResult:
        """Replace an item's content; a missing item is a failed result."""
        existing = self.get_item(name, session)
        if existing is None:
            return ItemResult(name=name, action=ItemAction.FAILED, message="not found in vault")
        if existing.content == content:
            return ItemResult(name=name, action=ItemAction.UNCHANGED)
        try:
            self._update(existing, content, session)
        except WriteFailure as exc:
            return ItemResult(name=name, action=ItemAction.FAILED, message=str(exc))
        logger.info("%s: updated %s", self.name, name)
        return ItemResult(name=name, action=ItemAction.UPDATED)

    def delete_item(self, name: str, session: Session) -> ItemResult:
        """Delete an item; a missing item is a failed result."""
        existing = self.get_item(name, session)
        if existing is None:
            return ItemResult(name=name, action=ItemAction.FAILED, message="not found in vault")
        try:
            self._delete(existing, session)
        except WriteFailure as exc:
            return ItemResult(name=name, action=ItemAction.FAILED, message=str(exc))
        logger.info("%s: deleted %s", self.name, name)
        return ItemResult(name=name, action=ItemAction.DELETED)

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def health_check(self, session: Optional[Session] = None) -> list[Check]:
        """Provider diagnostics: authentication and item count."""
        checks = []
        try:
            logged_in = self.login_check()
        except VaultError as exc:
            logged_in = False
            detail = str(exc)
        else:
            detail = "authenticated" if logged_in else "not authenticated"
        checks.append(Check(
            name=f"{self.name}:login",
            description=f"Signed in to {self.name}",
            passed=logged_in,
            detail=detail,
            fix="" if logged_in else self.login_hint(),
            category="backend",
        ))

        if session is not None and logged_in:
            try:
                count = len(self.list_items(session))
                checks.append(Check(
                    name=f"{self.name}:items",
                    description="Vault reachable",
                    passed=True,
                    detail=f"{count} item(s)",
                    category="backend",
                ))
            except VaultError as exc:
                checks.append(Check(
                    name=f"{self.name}:items",
                    description="Vault reachable",
                    passed=False,
                    detail=str(exc),
                    fix=exc.remediation or "",
                    category="backend",
                ))
        return checks

    def login_hint(self) -> str:
        return f"Log in to {self.name}"


class BitwardenBackend(VaultBackend):
    """Bitwarden via the ``bw`` CLI.

    Items are secure notes; the secret lives in the ``notes`` field.
    Locations are folders (``folder:<name>``) or name prefixes
    (``prefix:<text>``).
    """

    session_env_var = "BW_SESSION"

    @property
    def name(self) -> str:
        return BackendType.BITWARDEN.value

    def login_hint(self) -> str:
        return "bw login"

    # The token travels in BW_SESSION, never on the command line.

    def login_check(self) -> bool:
        return self._run(["bw", "login", "--check"]).returncode == 0

    def validate_session(self, token: str) -> bool:
        if not token:
            return False
        probe = Session(backend=self.name, token=token)
        return self._run(["bw", "unlock", "--check"], session=probe).returncode == 0

    def acquire_session(self) -> Session:
        if not self.login_check():
            raise AuthenticationRequired(
                "Not logged in to Bitwarden", remediation="Run: bw login"
            )
        result = self._run(["bw", "unlock", "--raw"], interactive=True)
        token = (result.stdout or "").strip()
        if result.returncode != 0 or not token:
            raise SessionInvalid(
                "Bitwarden unlock failed", remediation="Check your master password and retry."
            )
        return Session(backend=self.name, token=token, source=SessionSource.UNLOCK)

    def sync_remote(self, session: Session) -> bool:
        try:
            result = self._run(["bw", "sync"], session=session)
        except VaultError as exc:
            logger.warning("bw sync failed (%s); using cached vault data", exc)
            return False
        if result.returncode != 0:
            logger.warning("bw sync failed; using cached vault data")
            return False
        return True

    def _get_raw(self, name: str, session: Session) -> Optional[dict]:
        result = self._run(["bw", "get", "item", name], session=session)
        if result.returncode != 0:
            stderr = (result.stderr or "").lower()
            if "more than one result" in stderr:
                return self._search_exact(name, session)
            if "not found" in stderr:
                return None
            if "locked" in stderr or "not logged in" in stderr:
                raise SessionInvalid(
                    f"Bitwarden refused to read '{name}': {self._stderr(result)}",
                    remediation="Run: dotvault unlock",
                )
            raise ProviderUnavailable(f"bw get item '{name}' failed: {self._stderr(result)}")
        data = self._json(result, "item")
        if not isinstance(data, dict) or data.get("name") != name:
            return self._search_exact(name, session)
        return data

    def _search_exact(self, name: str, session: Session) -> Optional[dict]:
        result = self._run(
            ["bw", "list", "items", "--search", name], session=session
        )
        if result.returncode != 0:
            return None
        for data in self._json(result, "item list") or []:
            if data.get("name") == name:
                return data
        return None

    @staticmethod
    def _canonical(data: dict) -> CanonicalItem:
        return CanonicalItem(
            id=data.get("id"),
            name=data.get("name", ""),
            type="secure_note" if data.get("type") == 2 else "login",
            content=data.get("notes") or "",
            location=data.get("folderId"),
        )

    def get_item(self, name: str, session: Session) -> Optional[CanonicalItem]:
        data = self._get_raw(name, session)
        return self._canonical(data) if data is not None else None

    def _folders(self, session: Session) -> dict[str, str]:
        result = self._run(["bw", "list", "folders"], session=session)
        if result.returncode != 0:
            return {}
        return {
            f["name"]: f["id"]
            for f in self._json(result, "folder list") or []
            if f.get("id")
        }

    def list_locations(self, session: Session) -> list[str]:
        return sorted(self._folders(session))

    def list_items(
        self, session: Session, location: Optional[VaultLocation] = None
    ) -> list[CanonicalItem]:
        location = location or self.location
        args = ["bw", "list", "items"]
        if location is not None and location.type == "folder" and location.value:
            folder_id = self._folders(session).get(location.value)
            if folder_id is None:
                logger.warning("Bitwarden folder '%s' not found", location.value)
                return []
            args += ["--folderid", folder_id]
        result = self._run(args, session=session)
        if result.returncode != 0:
            raise ProviderUnavailable(f"bw list items failed: {self._stderr(result)}")
        items = [
            self._canonical(d).model_copy(update={"content": ""})
            for d in self._json(result, "item list") or []
        ]
        if location is not None and location.type == "prefix" and location.value:
            items = [i for i in items if i.name.startswith(location.value)]
        return sorted(items, key=lambda i: i.name)

    def _ensure_folder(self, folder: str, session: Session) -> str:
        folders = self._folders(session)
        if folder in folders:
            return folders[folder]
        encoded = base64.b64encode(json.dumps({"name": folder}).encode("utf-8")).decode("ascii")
        result = self._run(
            ["bw", "create", "folder"], session=session, input=encoded
        )
        if result.returncode != 0:
            raise WriteFailure(f"could not create folder '{folder}': {self._stderr(result)}")
        return self._json(result, "folder")["id"]

    def _create(self, name: str, content: str, session: Session) -> None:
        template = {
            "type": 2,
            "secureNote": {"type": 0},
            "name": name,
            "notes": content,
            "favorite": False,
        }
        if self.location is not None and self.location.type == "folder" and self.location.value:
            template["folderId"] = self._ensure_folder(self.location.value, session)
        encoded = base64.b64encode(json.dumps(template).encode("utf-8")).decode("ascii")
        result = self._run(
            ["bw", "create", "item"], session=session, input=encoded
        )
        if result.returncode != 0:
            raise WriteFailure(f"bw create failed: {self._stderr(result)}")

    def _update(self, item: CanonicalItem, content: str, session: Session) -> None:
        data = self._get_raw(item.name, session)
        if data is None:
            raise WriteFailure("item disappeared before update")
        data["notes"] = content
        encoded = base64.b64encode(json.dumps(data).encode("utf-8")).decode("ascii")
        result = self._run(
            ["bw", "edit", "item", data["id"]],
            session=session, input=encoded,
        )
        if result.returncode != 0:
            raise WriteFailure(f"bw edit failed: {self._stderr(result)}")

    def _delete(self, item: CanonicalItem, session: Session) -> None:
        result = self._run(
            ["bw", "delete", "item", item.id or item.name],
            session=session,
        )
        if result.returncode != 0:
            raise WriteFailure(f"bw delete failed: {self._stderr(result)}")


class OnePasswordBackend(VaultBackend):
    """1Password via the ``op`` CLI (v2).

    Items are Secure Notes; the secret lives in the ``notesPlain``
    field. Authentication is ambient (desktop app integration) or
    via OP_SERVICE_ACCOUNT_TOKEN, so the session token is usually empty.
    """

    DEFAULT_VAULT = "Personal"
    CATEGORY = "Secure Note"

    @property
    def name(self) -> str:
        return BackendType.ONEPASSWORD.value

    @property
    def vault(self) -> str:
        if self.location is not None and self.location.type == "vault" and self.location.value:
            return self.location.value
        return self.settings.onepassword_vault or self.DEFAULT_VAULT

    def login_hint(self) -> str:
        return "op signin  (or enable CLI integration in the 1Password app)"

    @staticmethod
    def _session_args(session: Optional[Session]) -> list[str]:
        return ["--session", session.token] if session is not None and session.token else []

    def _args(self, session: Optional[Session], vault: Optional[str] = None) -> list[str]:
        return ["--vault", vault or self.vault, *self._session_args(session)]

    def login_check(self) -> bool:
        if self.env.get("OP_SERVICE_ACCOUNT_TOKEN"):
            return self._run(["op", "whoami"]).returncode == 0
        result = self._run(["op", "account", "list"])
        return result.returncode == 0 and bool(result.stdout.strip())

    def validate_session(self, token: str) -> bool:
        args = ["op", "vault", "list"]
        if token:
            args += ["--session", token]
        return self._run(args).returncode == 0

    def acquire_session(self) -> Session:
        if self.login_check() and self.validate_session(""):
            return Session(backend=self.name, token="", source=SessionSource.AMBIENT)
        result = self._run(["op", "signin", "--raw"], interactive=True)
        if result.returncode != 0:
            raise AuthenticationRequired(
                "Not signed in to 1Password",
                remediation=(
                    "Run: op signin, enable 'Integrate with 1Password CLI' in the app, "
                    "or set OP_SERVICE_ACCOUNT_TOKEN."
                ),
            )
        token = (result.stdout or "").strip()
        source = SessionSource.UNLOCK if token else SessionSource.AMBIENT
        return Session(backend=self.name, token=token, source=source)

    def sync_remote(self, session: Session) -> bool:
        try:
            result = self._run(["op", "vault", "list", *self._session_args(session)], session=session)
        except VaultError as exc:
            logger.warning("Unable to reach 1Password: %s", exc)
            return False
        if result.returncode != 0:
            logger.warning("Unable to reach 1Password")
            return False
        return True

    @staticmethod
    def _notes(data: dict) -> str:
        for field in data.get("fields") or []:
            if field.get("id") == "notesPlain" or field.get("purpose") == "NOTES":
                return field.get("value") or ""
        return ""

    def get_item(self, name: str, session: Session) -> Optional[CanonicalItem]:
        result = self._run(
            ["op", "item", "get", name, "--format", "json", *self._args(session)], session=session
        )
        if result.returncode != 0:
            return None
        data = self._json(result, "item")
        if not isinstance(data, dict):
            return None
        return CanonicalItem(
            id=data.get("id"),
            name=data.get("title", name),
            type=(data.get("category") or "SECURE_NOTE").lower(),
            content=self._notes(data),
            location=(data.get("vault") or {}).get("name"),
        )

    def list_items(
        self, session: Session, location: Optional[VaultLocation] = None
    ) -> list[CanonicalItem]:
        vault = location.value if location is not None and location.type == "vault" else None
        result = self._run(
            ["op", "item", "list", "--format", "json", *self._args(session, vault)], session=session
        )
        if result.returncode != 0:
            raise ProviderUnavailable(f"op item list failed: {self._stderr(result)}")
        items = [
            CanonicalItem(
                id=d.get("id"),
                name=d.get("title", ""),
                type=(d.get("category") or "").lower(),
                location=(d.get("vault") or {}).get("name"),
            )
            for d in self._json(result, "item list") or []
        ]
        return sorted(items, key=lambda i: i.name)

    def list_locations(self, session: Session) -> list[str]:
        args = ["op", "vault", "list", "--format", "json"]
        if session.token:
            args += ["--session", session.token]
        result = self._run(args, session=session)
        if result.returncode != 0:
            return []
        return sorted(v.get("name", "") for v in self._json(result, "vault list") or [])

    def _create(self, name: str, content: str, session: Session) -> None:
        result = self._run(
            ["op", "item", "create", "--category", self.CATEGORY, "--title", name,
             *self._args(session), f"notesPlain={content}"],
            session=session,
        )
        if result.returncode != 0:
            raise WriteFailure(f"op item create failed: {self._stderr(result)}")

    def _update(self, item: CanonicalItem, content: str, session: Session) -> None:
        result = self._run(
            ["op", "item", "edit", item.id or item.name, *self._args(session),
             f"notesPlain={content}"],
            session=session,
        )
        if result.returncode != 0:
            raise WriteFailure(f"op item edit failed: {self._stderr(result)}")

    def _delete(self, item: CanonicalItem, session: Session) -> None:
        result = self._run(
            ["op", "item", "delete", item.id or item.name, *self._args(session)], session=session
        )
        if result.returncode != 0:
            raise WriteFailure(f"op item delete failed: {self._stderr(result)}")

    def health_check(self, session: Optional[Session] = None) -> list[Check]:
        checks = super().health_check(session)
        if session is not None:
            try:
                ok = self._run(["op", "vault", "get", self.vault, *self._session_args(session)],
                               session=session).returncode == 0
            except VaultError as exc:
                ok = False
                detail = str(exc)
            else:
                detail = ""
            checks.append(Check(
                name="1password:vault",
                description=f"Vault '{self.vault}' accessible",
                passed=ok,
                detail=detail,
                fix="" if ok else "Set ONEPASSWORD_VAULT to an existing vault",
                category="backend",
            ))
        return checks


class PassBackend(VaultBackend):
    """pass (the standard Unix password manager).

    Each item is ``$PASSWORD_STORE_DIR/<prefix>/<name>.gpg``. gpg-agent
    handles authentication, so sessions are always empty tokens.
    Locations are top-level store directories (``directory:<name>``).
    """

    DEFAULT_PREFIX = "dotvault"

    def __init__(
        self,
        settings: Settings,
        location: Optional[VaultLocation] = None,
        env: Optional[Mapping[str, str]] = None,
    ):
        super().__init__(settings, location, env)
        store = settings.password_store_dir or self.env.get("PASSWORD_STORE_DIR")
        self.store_dir = Path(store).expanduser() if store else Path.home() / ".password-store"
        if location is not None and location.type == "directory" and location.value:
            self.prefix = location.value
        else:
            self.prefix = settings.pass_prefix or self.DEFAULT_PREFIX

    @property
    def name(self) -> str:
        return BackendType.PASS.value

    def login_hint(self) -> str:
        return "pass init <gpg-id>"

    def _process_env(self, session: Optional[Session] = None) -> dict[str, str]:
        env = super()._process_env(session)
        env["PASSWORD_STORE_DIR"] = str(self.store_dir)
        return env

    def _entry(self, name: str) -> str:
        return f"{self.prefix}/{name}"

    def init(self) -> None:
        super().init()
        if not (self.store_dir / ".gpg-id").is_file():
            raise PrerequisiteMissing(
                f"Password store not initialized at {self.store_dir}",
                remediation="Initialize with: pass init <gpg-id>",
            )

    def login_check(self) -> bool:
        return (self.store_dir / ".gpg-id").is_file()

    def validate_session(self, token: str) -> bool:
        return self.login_check()

    def acquire_session(self) -> Session:
        if not self.login_check():
            raise AuthenticationRequired(
                f"No password store at {self.store_dir}",
                remediation="Initialize with: pass init <gpg-id>",
            )
        return Session(backend=self.name, token="", source=SessionSource.AMBIENT)

    def sync_remote(self, session: Session) -> bool:
        if not (self.store_dir / ".git").is_dir():
            return True
        ok = True
        for args in (["git", "pull", "--rebase"], ["git", "push"]):
            try:
                result = self._run(["git", "-C", str(self.store_dir), *args[1:]])
            except VaultError as exc:
                logger.warning("pass store: '%s' failed: %s", " ".join(args), exc)
                return False
            if result.returncode != 0:
                logger.warning("pass store: '%s' failed", " ".join(args))
                ok = False
        return ok

    def get_item(self, name: str, session: Session) -> Optional[CanonicalItem]:
        entry = self._entry(name)
        if not (self.store_dir / f"{entry}.gpg").is_file():
            return None
        result = self._run(["pass", "show", entry], session=session)
        if result.returncode != 0:
            raise SessionInvalid(
                f"gpg could not decrypt '{entry}'",
                remediation="Check that gpg-agent is running and your key is available.",
            )
        return CanonicalItem(id=entry, name=name, type="gpg", content=result.stdout, location=self.prefix)

    def list_items(
        self, session: Session, location: Optional[VaultLocation] = None
    ) -> list[CanonicalItem]:
        prefix = location.value if location is not None and location.value else self.prefix
        root = self.store_dir / prefix
        if not root.is_dir():
            return []
        items = []
        for gpg_file in sorted(root.rglob("*.gpg")):
            rel = gpg_file.relative_to(root).with_suffix("").as_posix()
            items.append(CanonicalItem(id=f"{prefix}/{rel}", name=rel, type="gpg", location=prefix))
        return items

    def list_locations(self, session: Session) -> list[str]:
        if not self.store_dir.is_dir():
            return []
        return sorted(
            p.name for p in self.store_dir.iterdir()
            if p.is_dir() and not p.name.startswith(".")
        )

    def _insert(self, name: str, content: str, session: Session, force: bool) -> None:
        args = ["pass", "insert", "-m"] + (["-f"] if force else []) + [self._entry(name)]
        result = self._run(args, session=session, input=content)
        if result.returncode != 0:
            raise WriteFailure(f"pass insert failed: {self._stderr(result)}")

    def _create(self, name: str, content: str, session: Session) -> None:
        self._insert(name, content, session, force=False)

    def _update(self, item: CanonicalItem, content: str, session: Session) -> None:
        self._insert(item.name, content, session, force=True)

    def _delete(self, item: CanonicalItem, session: Session) -> None:
        result = self._run(["pass", "rm", "-f", self._entry(item.name)], session=session)
        if result.returncode != 0:
            raise WriteFailure(f"pass rm failed: {self._stderr(result)}")

    def health_check(self, session: Optional[Session] = None) -> list[Check]:
        checks = super().health_check(session)
        try:
            agent = self._run(["gpg-connect-agent", "/bye"]).returncode == 0
        except VaultError as exc:
            agent = False
            detail = str(exc)
        else:
            detail = "" if agent else "gpg may prompt for your passphrase"
        checks.append(Check(
            name="pass:gpg-agent",
            description="GPG agent running",
            passed=agent,
            detail=detail,
            fix="" if agent else "gpgconf --launch gpg-agent",
            category="backend",
        ))
        return checks


_BACKENDS: dict[BackendType, type[VaultBackend]] = {
    BackendType.BITWARDEN: BitwardenBackend,
    BackendType.ONEPASSWORD: OnePasswordBackend,
    BackendType.PASS: PassBackend,
}


def available_backends() -> list[str]:
    return [b.value for b in _BACKENDS]


def create_backend(
    name: Union[str, BackendType],
    settings: Optional[Settings] = None,
    location: Optional[VaultLocation] = None,
    env: Optional[Mapping[str, str]] = None,
) -> VaultBackend:
    """Factory to create the right backend from its name.

    Args:
        name: bitwarden, 1password or pass.
        settings: Runtime settings (timeouts, provider options).
        location: Default namespace from the configuration document.
        env: Environment override (tests).

    Returns:
        Configured VaultBackend instance.

    Raises:
        ValueError: If the backend name is unknown.
    """
    try:
        backend_type = BackendType(name)
    except ValueError:
        raise ValueError(
            f"Unknown vault backend: {name}. Available: {', '.join(available_backends())}"
        ) from None
    settings = settings or Settings(backend=backend_type)
    return _BACKENDS[backend_type](settings, location=location, env=env)

