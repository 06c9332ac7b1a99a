"""Tests for the item registry loader and runtime settings."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
import yaml

from dotvault.config import (
    config_path,
    contract_path,
    dotvault_home,
    expand_path,
    load_config,
    load_settings,
    save_config,
    save_settings,
    session_file_path,
)
from dotvault.models import BackendType, Settings
from dotvault.vault.errors import SchemaInvalid, VaultError


def _write(path: Path, doc) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(doc) if not isinstance(doc, str) else doc)
    return path


class TestPaths:
    """Tests for path resolution helpers."""

    @pytest.mark.parametrize("raw", ["~/.gitconfig", "$HOME/.gitconfig", "${HOME}/.gitconfig"])
    def test_expand_home_forms(self, raw, tmp_path) -> None:
        assert expand_path(raw, tmp_path) == tmp_path / ".gitconfig"

    def test_expand_absolute_unchanged(self, tmp_path) -> None:
        assert expand_path("/etc/hosts", tmp_path) == Path("/etc/hosts")

    def test_contract(self, tmp_path) -> None:
        assert contract_path(tmp_path / ".ssh" / "id_rsa", tmp_path) == "~/.ssh/id_rsa"
        assert contract_path(Path("/opt/key"), tmp_path) == "/opt/key"

    def test_config_path_precedence(self, tmp_path) -> None:
        """Explicit path, then DOTVAULT_CONFIG, then XDG."""
        env = {"DOTVAULT_CONFIG": str(tmp_path / "a.json"), "XDG_CONFIG_HOME": str(tmp_path / "xdg")}
        assert config_path(tmp_path / "b.json", env=env) == tmp_path / "b.json"
        assert config_path(env=env) == tmp_path / "a.json"
        assert config_path(env={"XDG_CONFIG_HOME": str(tmp_path / "xdg")}) == (
            tmp_path / "xdg" / "dotvault" / "vault-items.json"
        )

    def test_dotvault_home_env(self, tmp_path) -> None:
        assert dotvault_home({"DOTVAULT_HOME": str(tmp_path)}) == tmp_path


class TestLoadConfig:
    """Tests for load_config()."""

    def test_loads_valid_document(self, tmp_path) -> None:
        path = _write(tmp_path / "vault-items.json", {
            "vault_items": {"Git-Config": {"path": "~/.gitconfig", "required": True, "type": "file"}},
        })
        config = load_config(path)
        assert list(config.vault_items) == ["Git-Config"]

    def test_missing_file(self, tmp_path) -> None:
        with pytest.raises(VaultError, match="No configuration found"):
            load_config(tmp_path / "nope.json")

    def test_invalid_json(self, tmp_path) -> None:
        path = _write(tmp_path / "vault-items.json", "{not json")
        with pytest.raises(SchemaInvalid) as exc_info:
            load_config(path)
        assert "Invalid JSON" in exc_info.value.errors[0]

    def test_collects_every_error(self, tmp_path) -> None:
        """All schema problems are reported together."""
        path = _write(tmp_path / "vault-items.json", {
            "vault_items": {
                "bad name": {"path": "~/.x", "required": True, "type": "file"},
                "Git-Config": {"path": "~/.gitconfig", "required": "yes", "type": "blob"},
            },
        })
        with pytest.raises(SchemaInvalid) as exc_info:
            load_config(path)
        assert len(exc_info.value.errors) == 3

    def test_save_then_load(self, tmp_path, config) -> None:
        path = save_config(config, tmp_path / "out" / "vault-items.json")
        assert load_config(path) == config
        assert path.stat().st_mode & 0o777 == 0o644


class TestSettings:
    """Tests for load_settings()/save_settings()."""

    def test_defaults(self, tmp_path) -> None:
        settings = load_settings(tmp_path, env={})
        assert settings.backend == BackendType.BITWARDEN
        assert settings.offline is False

    def test_file_then_env(self, tmp_path) -> None:
        """Environment overrides the settings file."""
        (tmp_path / "config.yaml").write_text(yaml.dump({"backend": "pass", "timeout_seconds": 5}))
        assert load_settings(tmp_path, env={}).backend == BackendType.PASS
        settings = load_settings(tmp_path, env={"DOTVAULT_VAULT_BACKEND": "1password"})
        assert settings.backend == BackendType.ONEPASSWORD
        assert settings.timeout_seconds == 5

    def test_unknown_backend(self, tmp_path) -> None:
        with pytest.raises(VaultError, match="Unknown vault backend"):
            load_settings(tmp_path, env={"DOTVAULT_VAULT_BACKEND": "keepass"})

    @pytest.mark.parametrize("value,expected", [("1", True), ("true", True), ("0", False), ("", False)])
    def test_offline_flag(self, tmp_path, value, expected) -> None:
        assert load_settings(tmp_path, env={"DOTVAULT_OFFLINE": value}).offline is expected

    def test_save_excludes_offline(self, tmp_path) -> None:
        save_settings(Settings(backend=BackendType.PASS, offline=True), tmp_path)
        data = yaml.safe_load((tmp_path / "config.yaml").read_text())
        assert data["backend"] == "pass"
        assert "offline" not in data

    def test_session_file_path(self, tmp_path) -> None:
        assert session_file_path(Settings(), tmp_path) == tmp_path / ".bitwarden-session"
        custom = Settings(session_file=tmp_path / "bw.token")
        assert session_file_path(custom, tmp_path) == tmp_path / "bw.token"
