"""Tests for VaultEngine.push()."""

from __future__ import annotations

import json

import pytest

from conftest import FakeBackend
from dotvault.models import Settings
from dotvault.vault.models import ItemAction


@pytest.fixture
def synced_home(user_home):
    """Local files identical to the vault for every syncable item."""
    (user_home / ".gitconfig").write_text("[user]\n  name = Dev\n")
    (user_home / ".aws").mkdir()
    (user_home / ".aws" / "credentials").write_text("[default]\n")
    (user_home / ".npmrc").write_text("registry=x\n")
    return user_home


@pytest.fixture
def synced_backend() -> FakeBackend:
    return FakeBackend({
        "Git-Config": "[user]\n  name = Dev\n",
        "AWS-Credentials": "[default]\n",
        "NPM-Config": "registry=x\n",
    })


class TestPush:
    """Tests for pushing local edits."""

    def test_nothing_to_push(self, make_engine, synced_home, synced_backend) -> None:
        """Identical content everywhere: zero synced, zero failures."""
        summary = make_engine(backend=synced_backend).push(all_items=True)
        assert summary.exit_code == 0
        assert summary.succeeded == 0
        assert summary.unchanged == 3
        assert synced_backend.writes() == []

    def test_pushes_changed_item(self, make_engine, synced_home, synced_backend, state_dir) -> None:
        (synced_home / ".gitconfig").write_text("[user]\n  name = New\n")
        summary = make_engine(backend=synced_backend).push(all_items=True)
        assert synced_backend.items["Git-Config"] == "[user]\n  name = New\n"
        assert synced_backend.writes() == [("update", "Git-Config")]
        assert summary.count(ItemAction.UPDATED) == 1
        assert json.loads((state_dir / "state.json").read_text())["push_count"] == 1

    def test_idempotent(self, make_engine, synced_home, synced_backend) -> None:
        """A second push right after the first changes nothing."""
        (synced_home / ".npmrc").write_text("registry=y\n")
        engine = make_engine(backend=synced_backend)
        engine.push(all_items=True)
        second = engine.push(all_items=True)
        assert second.succeeded == 0
        assert synced_backend.writes() == [("update", "NPM-Config")]

    def test_dry_run(self, make_engine, synced_home, synced_backend) -> None:
        (synced_home / ".gitconfig").write_text("changed")
        summary = make_engine(backend=synced_backend).push(["Git-Config"], dry_run=True)
        assert summary.results[0].action == ItemAction.PLANNED
        assert synced_backend.writes() == []
        assert synced_backend.items["Git-Config"] == "[user]\n  name = Dev\n"

    def test_key_pairs_are_not_pushable(self, make_engine, synced_home, synced_backend) -> None:
        summary = make_engine(backend=synced_backend).push(["SSH-Work"])
        assert summary.results[0].action == ItemAction.FAILED
        assert summary.exit_code == 1

    def test_missing_local_file_skipped(self, make_engine, user_home, synced_backend) -> None:
        summary = make_engine(backend=synced_backend).push(["Git-Config"])
        assert summary.results[0].action == ItemAction.SKIPPED
        assert summary.exit_code == 0

    def test_absent_vault_item_soft_skip(self, make_engine, synced_home) -> None:
        backend = FakeBackend({"AWS-Credentials": "[default]\n"})
        summary = make_engine(backend=backend).push(["Git-Config"])
        result = summary.results[0]
        assert result.action == ItemAction.SKIPPED
        assert "dotvault create Git-Config" in result.message
        assert backend.writes() == []

    def test_failures_counted(self, make_engine, synced_home, synced_backend) -> None:
        (synced_home / ".gitconfig").write_text("a")
        (synced_home / ".npmrc").write_text("b")
        synced_backend.fail_writes = {"Git-Config", "NPM-Config"}
        summary = make_engine(backend=synced_backend).push(all_items=True)
        assert summary.exit_code == 2

    def test_offline(self, make_engine, synced_home, synced_backend) -> None:
        summary = make_engine(backend=synced_backend, settings=Settings(offline=True)).push(all_items=True)
        assert summary.offline
        assert synced_backend.calls == []
