"""Tests for the Bitwarden, 1Password and pass adapters.

Provider CLIs are never executed: subprocess.run is patched and each
test scripts the provider's responses.
"""

from __future__ import annotations

import base64
import json
import subprocess
from unittest.mock import MagicMock, patch

import pytest

from conftest import ScriptedPrompter
from dotvault.models import Settings, VaultLocation
from dotvault.vault.backends import (
    BitwardenBackend,
    OnePasswordBackend,
    PassBackend,
    available_backends,
    create_backend,
)
from dotvault.vault.errors import (
    AuthenticationRequired,
    PrerequisiteMissing,
    ProviderUnavailable,
    SessionInvalid,
)
from dotvault.vault.engine import VaultEngine
from dotvault.vault.models import ItemAction, Session

RUN = "dotvault.vault.backends.subprocess.run"


def done(stdout: str = "", returncode: int = 0, stderr: str = "") -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


def argv(mock_run: MagicMock, index: int = -1) -> list[str]:
    return mock_run.call_args_list[index].args[0]


def bw_item(name: str, notes: str, item_id: str = "uuid-1") -> str:
    return json.dumps({"id": item_id, "name": name, "type": 2, "notes": notes, "folderId": None})


@pytest.fixture
def bw() -> BitwardenBackend:
    return BitwardenBackend(Settings(), env={"PATH": "/usr/bin"})


@pytest.fixture
def bw_session() -> Session:
    return Session(backend="bitwarden", token="bw-token")


class TestFactory:
    """Tests for create_backend()."""

    def test_known_backends(self) -> None:
        assert available_backends() == ["bitwarden", "1password", "pass"]
        assert isinstance(create_backend("1password", env={}), OnePasswordBackend)

    def test_unknown_backend(self) -> None:
        with pytest.raises(ValueError, match="Available: bitwarden, 1password, pass"):
            create_backend("keepass")


class TestProcessPlumbing:
    """Timeouts and missing executables map onto the error taxonomy."""

    def test_timeout(self, bw) -> None:
        with patch(RUN, side_effect=subprocess.TimeoutExpired(cmd="bw", timeout=60)):
            with pytest.raises(ProviderUnavailable, match="timed out"):
                bw.login_check()

    def test_missing_executable(self, bw) -> None:
        with patch(RUN, side_effect=FileNotFoundError("bw")), \
                patch("dotvault.preflight.shutil.which", return_value=None):
            with pytest.raises(PrerequisiteMissing) as exc_info:
                bw.login_check()
        assert "bitwarden.com" in exc_info.value.remediation

    def test_timeout_setting_applied(self) -> None:
        backend = BitwardenBackend(Settings(timeout_seconds=7), env={})
        with patch(RUN, return_value=done()) as mock_run:
            backend.login_check()
        assert mock_run.call_args.kwargs["timeout"] == 7


class TestBitwardenSession:
    """Tests for Bitwarden unlock and session validation."""

    def test_token_travels_in_env_only(self, bw) -> None:
        with patch(RUN, return_value=done()) as mock_run:
            assert bw.validate_session("bw-token") is True
        assert argv(mock_run) == ["bw", "unlock", "--check"]
        assert mock_run.call_args.kwargs["env"]["BW_SESSION"] == "bw-token"

    def test_empty_token_is_invalid(self, bw) -> None:
        with patch(RUN) as mock_run:
            assert bw.validate_session("") is False
        mock_run.assert_not_called()

    def test_acquire(self, bw) -> None:
        with patch(RUN, side_effect=[done(), done("fresh-token\n")]) as mock_run:
            session = bw.acquire_session()
        assert session.token == "fresh-token"
        assert argv(mock_run) == ["bw", "unlock", "--raw"]

    def test_acquire_not_logged_in(self, bw) -> None:
        with patch(RUN, return_value=done(returncode=1)):
            with pytest.raises(AuthenticationRequired, match="Not logged in"):
                bw.acquire_session()

    def test_acquire_wrong_password(self, bw) -> None:
        with patch(RUN, side_effect=[done(), done("", returncode=1)]):
            with pytest.raises(SessionInvalid):
                bw.acquire_session()

    def test_sync_failure_is_not_fatal(self, bw, bw_session) -> None:
        with patch(RUN, return_value=done(returncode=1)):
            assert bw.sync_remote(bw_session) is False

    def test_sync_timeout_is_not_fatal(self, bw, bw_session) -> None:
        with patch(RUN, side_effect=subprocess.TimeoutExpired(["bw", "sync"], 60)):
            assert bw.sync_remote(bw_session) is False

    def test_sync_os_error_is_not_fatal(self, bw, bw_session) -> None:
        with patch(RUN, side_effect=PermissionError("denied")):
            assert bw.sync_remote(bw_session) is False


class TestBitwardenItems:
    """Tests for Bitwarden reads and writes."""

    def test_get_item(self, bw, bw_session) -> None:
        with patch(RUN, return_value=done(bw_item("Git-Config", "[user]\n"))) as mock_run:
            item = bw.get_item("Git-Config", bw_session)
        assert item.content == "[user]\n"
        assert item.id == "uuid-1"
        assert argv(mock_run) == ["bw", "get", "item", "Git-Config"]

    def test_get_item_not_found(self, bw, bw_session) -> None:
        with patch(RUN, return_value=done(returncode=1, stderr="Not found.")):
            assert bw.get_item("Nope", bw_session) is None
            assert bw.get_item_id("Nope", bw_session) is None
            assert not bw.item_exists("Nope", bw_session)

    def test_locked_vault_is_not_a_missing_item(self, bw, bw_session) -> None:
        """A lapsed session must not look like an absent item."""
        with patch(RUN, return_value=done(returncode=1, stderr="Vault is locked.")):
            with pytest.raises(SessionInvalid, match="Vault is locked"):
                bw.get_item("Git-Config", bw_session)

    def test_other_read_failure_raises(self, bw, bw_session) -> None:
        with patch(RUN, return_value=done(returncode=1, stderr="fetch failed: ECONNREFUSED")):
            with pytest.raises(ProviderUnavailable, match="ECONNREFUSED"):
                bw.get_item("Git-Config", bw_session)

    def test_get_item_id(self, bw, bw_session) -> None:
        with patch(RUN, return_value=done(bw_item("Git-Config", "[user]\n", item_id="uuid-7"))):
            assert bw.get_item_id("Git-Config", bw_session) == "uuid-7"

    def test_fuzzy_match_falls_back_to_exact_search(self, bw, bw_session) -> None:
        """bw get matches by search; only an exact name counts."""
        listing = json.dumps([
            {"id": "a", "name": "SSH-Work-Old", "notes": "old"},
            {"id": "b", "name": "SSH-Work", "notes": "key"},
        ])
        responses = [done(bw_item("SSH-Work-Old", "old", "a")), done(listing)]
        with patch(RUN, side_effect=responses) as mock_run:
            item = bw.get_item("SSH-Work", bw_session)
        assert item.id == "b"
        assert argv(mock_run) == ["bw", "list", "items", "--search", "SSH-Work"]

    def test_list_items_by_folder(self, bw, bw_session) -> None:
        folders = json.dumps([{"id": "f1", "name": "dotfiles"}])
        items = json.dumps([{"id": "1", "name": "Git-Config", "notes": "secret"}])
        with patch(RUN, side_effect=[done(folders), done(items)]) as mock_run:
            found = bw.list_items(bw_session, VaultLocation(type="folder", value="dotfiles"))
        assert [i.name for i in found] == ["Git-Config"]
        assert found[0].content == ""
        assert argv(mock_run) == ["bw", "list", "items", "--folderid", "f1"]

    def test_list_items_unknown_folder(self, bw, bw_session) -> None:
        with patch(RUN, return_value=done("[]")):
            assert bw.list_items(bw_session, VaultLocation(type="folder", value="nope")) == []

    def test_create_sends_secure_note_on_stdin(self, bw, bw_session) -> None:
        with patch(RUN, side_effect=[done(returncode=1, stderr="Not found."), done("{}")]) as mock_run:
            result = bw.create_item("NPM-Config", "registry=x\n", bw_session)
        assert result.action == ItemAction.CREATED
        assert argv(mock_run) == ["bw", "create", "item"]
        payload = json.loads(base64.b64decode(mock_run.call_args.kwargs["input"]))
        assert payload["name"] == "NPM-Config"
        assert payload["notes"] == "registry=x\n"
        assert payload["type"] == 2

    def test_create_existing_identical_is_noop(self, bw, bw_session) -> None:
        with patch(RUN, return_value=done(bw_item("NPM-Config", "same"))) as mock_run:
            result = bw.create_item("NPM-Config", "same", bw_session)
        assert result.action == ItemAction.UNCHANGED
        assert mock_run.call_count == 1

    def test_update_identical_is_noop(self, bw, bw_session) -> None:
        with patch(RUN, return_value=done(bw_item("Git-Config", "same"))) as mock_run:
            result = bw.update_item("Git-Config", "same", bw_session)
        assert result.action == ItemAction.UNCHANGED
        assert mock_run.call_count == 1

    def test_update_edits_by_id(self, bw, bw_session) -> None:
        current = done(bw_item("Git-Config", "old"))
        with patch(RUN, side_effect=[current, current, done("{}")]) as mock_run:
            result = bw.update_item("Git-Config", "new", bw_session)
        assert result.action == ItemAction.UPDATED
        assert argv(mock_run) == ["bw", "edit", "item", "uuid-1"]
        payload = json.loads(base64.b64decode(mock_run.call_args.kwargs["input"]))
        assert payload["notes"] == "new"

    def test_update_missing_item_fails_softly(self, bw, bw_session) -> None:
        with patch(RUN, return_value=done(returncode=1, stderr="Not found.")):
            result = bw.update_item("Ghost", "x", bw_session)
        assert result.action == ItemAction.FAILED
        assert "not found" in result.message

    def test_write_failure_is_a_result(self, bw, bw_session) -> None:
        responses = [done(bw_item("Git-Config", "old")), done(returncode=1, stderr="boom")]
        with patch(RUN, side_effect=responses):
            result = bw.delete_item("Git-Config", bw_session)
        assert result.action == ItemAction.FAILED
        assert "boom" in result.message


class TestOnePassword:
    """Tests for the 1Password adapter."""

    @pytest.fixture
    def op(self) -> OnePasswordBackend:
        return OnePasswordBackend(Settings(), env={})

    @pytest.fixture
    def session(self) -> Session:
        return Session(backend="1password")

    def test_vault_precedence(self) -> None:
        assert OnePasswordBackend(Settings(), env={}).vault == "Personal"
        assert OnePasswordBackend(Settings(onepassword_vault="Dev"), env={}).vault == "Dev"
        located = OnePasswordBackend(
            Settings(onepassword_vault="Dev"), location=VaultLocation(type="vault", value="Secrets"), env={}
        )
        assert located.vault == "Secrets"

    def test_service_account_login(self) -> None:
        op = OnePasswordBackend(Settings(), env={"OP_SERVICE_ACCOUNT_TOKEN": "ops_x"})
        with patch(RUN, return_value=done()) as mock_run:
            assert op.login_check() is True
        assert argv(mock_run) == ["op", "whoami"]

    def test_ambient_session(self, op) -> None:
        with patch(RUN, side_effect=[done("acct\n"), done("[]")]):
            session = op.acquire_session()
        assert session.token == ""
        assert session.source.value == "ambient"

    def test_get_item_reads_notes_field(self, op, session) -> None:
        data = {
            "id": "op-1",
            "title": "Git-Config",
            "category": "SECURE_NOTE",
            "vault": {"name": "Personal"},
            "fields": [{"id": "notesPlain", "purpose": "NOTES", "value": "[user]\n"}],
        }
        with patch(RUN, return_value=done(json.dumps(data))) as mock_run:
            item = op.get_item("Git-Config", session)
        assert item.content == "[user]\n"
        assert item.location == "Personal"
        assert argv(mock_run)[:6] == ["op", "item", "get", "Git-Config", "--format", "json"]
        assert "--vault" in argv(mock_run)

    def test_sync_timeout_is_not_fatal(self, op, session) -> None:
        with patch(RUN, side_effect=subprocess.TimeoutExpired(["op", "vault", "list"], 60)):
            assert op.sync_remote(session) is False

    def test_vault_probe_failure_is_a_failed_check(self, op, session) -> None:
        with patch(RUN, side_effect=[done("acct\n"), done("[]"), FileNotFoundError("op")]):
            checks = {c.name: c for c in op.health_check(session)}
        assert checks["1password:login"].passed
        assert not checks["1password:vault"].passed
        assert "not installed" in checks["1password:vault"].detail

    def test_create(self, op, session) -> None:
        with patch(RUN, side_effect=[done(returncode=1), done("{}")]) as mock_run:
            result = op.create_item("NPM-Config", "registry=x", session)
        assert result.action == ItemAction.CREATED
        args = argv(mock_run)
        assert args[:4] == ["op", "item", "create", "--category"]
        assert args[-1] == "notesPlain=registry=x"


class TestPass:
    """Tests for the pass adapter."""

    @pytest.fixture
    def store(self, tmp_path):
        store = tmp_path / "store"
        (store / "dotvault").mkdir(parents=True)
        (store / ".gpg-id").write_text("ABCDEF\n")
        return store

    @pytest.fixture
    def backend(self, store) -> PassBackend:
        return PassBackend(Settings(password_store_dir=store), env={})

    @pytest.fixture
    def session(self) -> Session:
        return Session(backend="pass")

    def test_missing_entry_needs_no_gpg(self, backend, session) -> None:
        with patch(RUN) as mock_run:
            assert backend.get_item("Git-Config", session) is None
        mock_run.assert_not_called()

    def test_show(self, backend, store, session) -> None:
        (store / "dotvault" / "Git-Config.gpg").write_bytes(b"encrypted")
        with patch(RUN, return_value=done("[user]\n")) as mock_run:
            item = backend.get_item("Git-Config", session)
        assert item.content == "[user]\n"
        assert argv(mock_run) == ["pass", "show", "dotvault/Git-Config"]
        assert mock_run.call_args.kwargs["env"]["PASSWORD_STORE_DIR"] == str(store)

    def test_decrypt_failure(self, backend, store, session) -> None:
        (store / "dotvault" / "Git-Config.gpg").write_bytes(b"encrypted")
        with patch(RUN, return_value=done(returncode=2, stderr="gpg: decryption failed")):
            with pytest.raises(SessionInvalid):
                backend.get_item("Git-Config", session)

    def test_insert_multiline_on_stdin(self, backend, session) -> None:
        with patch(RUN, return_value=done()) as mock_run:
            result = backend.create_item("NPM-Config", "a=1\nb=2\n", session)
        assert result.action == ItemAction.CREATED
        assert argv(mock_run) == ["pass", "insert", "-m", "dotvault/NPM-Config"]
        assert mock_run.call_args.kwargs["input"] == "a=1\nb=2\n"

    def test_list_items(self, backend, store, session) -> None:
        (store / "dotvault" / "Git-Config.gpg").write_bytes(b"x")
        (store / "dotvault" / "SSH-Work.gpg").write_bytes(b"x")
        (store / "other").mkdir()
        assert [i.name for i in backend.list_items(session)] == ["Git-Config", "SSH-Work"]
        assert backend.list_locations(session) == ["dotvault", "other"]

    def test_directory_location_sets_prefix(self, store) -> None:
        backend = PassBackend(
            Settings(password_store_dir=store), location=VaultLocation(type="directory", value="work"), env={}
        )
        assert backend.prefix == "work"

    def test_init_requires_gpg_id(self, tmp_path) -> None:
        backend = PassBackend(Settings(password_store_dir=tmp_path / "empty"), env={})
        with patch("dotvault.vault.backends.require_tools"):
            with pytest.raises(PrerequisiteMissing, match="not initialized"):
                backend.init()

    def test_session_is_ambient(self, backend) -> None:
        session = backend.acquire_session()
        assert session.token == ""
        assert backend.validate_session("") is True

    def test_sync_timeout_is_not_fatal(self, backend, store, session) -> None:
        (store / ".git").mkdir()
        with patch(RUN, side_effect=subprocess.TimeoutExpired(["git", "pull"], 60)):
            assert backend.sync_remote(session) is False

    def test_sync_without_git_is_not_fatal(self, backend, store, session) -> None:
        (store / ".git").mkdir()
        with patch(RUN, side_effect=FileNotFoundError("git")):
            assert backend.sync_remote(session) is False

    def test_missing_gpg_agent_is_a_failed_check(self, backend) -> None:
        with patch(RUN, side_effect=FileNotFoundError("gpg-connect-agent")):
            checks = {c.name: c for c in backend.health_check()}
        assert checks["pass:login"].passed
        assert not checks["pass:gpg-agent"].passed
        assert "not installed" in checks["pass:gpg-agent"].detail

    def test_restore_completes_when_git_hangs(self, store, config, state_dir, user_home) -> None:
        """A stuck git pull on the store does not stop a restore."""
        (store / ".git").mkdir()
        (store / "dotvault" / "Git-Config.gpg").write_bytes(b"encrypted")
        settings = Settings(password_store_dir=store)
        engine = VaultEngine(
            config=config, backend=PassBackend(settings, env={}), settings=settings,
            state_dir=state_dir, user_home=user_home, prompter=ScriptedPrompter(),
        )

        def provider(args, **kwargs):
            if args[0] == "git":
                raise subprocess.TimeoutExpired(args, 60)
            return done("[user]\n")

        with patch(RUN, side_effect=provider), patch("dotvault.vault.backends.require_tools"):
            summary = engine.restore()

        assert summary.count(ItemAction.RESTORED) == 1
        assert (user_home / ".gitconfig").read_text() == "[user]\n"
