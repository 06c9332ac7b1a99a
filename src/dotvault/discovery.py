"""
Secret discovery and configuration merge.

Scans the well-known places developer secrets live and builds a
candidate configuration. No hardcoded machine paths: everything is
relative to the home directory being scanned, and recorded as ``~/...``
so the document travels between machines.

merge() reconciles a fresh candidate with a hand-edited document. It is
a pure function over two VaultConfig values.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from .config import contract_path
from .models import ItemType, VaultConfig, VaultItem, VaultLocation
from .vault.keys import looks_like_private_key

logger = logging.getLogger("dotvault.discovery")

REQUIRED_FILES = (
    ("AWS-Credentials", ".aws/credentials"),
    ("AWS-Config", ".aws/config"),
    ("Git-Config", ".gitconfig"),
    ("SSH-Config", ".ssh/config"),
)

OPTIONAL_FILES = (
    ("Claude-Profiles", ".claude/profiles.json"),
    ("NPM-Config", ".npmrc"),
    ("PyPI-Config", ".pypirc"),
    ("Docker-Config", ".docker/config.json"),
    ("Environment-Secrets", ".local/env.secrets"),
)

# Files in ~/.ssh that are never private keys
_SSH_NON_KEYS = {"config", "known_hosts", "known_hosts.old", "authorized_keys", "environment"}

_ID_KEY_RE = re.compile(r"^id_[^_]+_(.+)$")
_AWS_SECTION_RE = re.compile(r"^\s*\[(?:profile\s+)?([^\]]+?)\s*\]\s*$")


@dataclass(frozen=True)
class MergeConflict:
    """A rediscovered item whose metadata disagrees with the saved document."""

    name: str
    field: str
    existing: str
    candidate: str

    def __str__(self) -> str:
        return f"{self.name}: {self.field} {self.existing} -> {self.candidate}"


def _title_segments(text: str) -> str:
    parts = [p for p in re.split(r"[-_.\s]+", text) if p]
    return "-".join(p[:1].upper() + p[1:] for p in parts)


def normalize_ssh_key_name(filename: str) -> str:
    """Derive a vault item name from an SSH key filename.

    id_ed25519_work -> SSH-Work, id_rsa_my_laptop -> SSH-My-Laptop,
    id_ed25519 -> SSH-Personal, github -> SSH-Github.
    """
    match = _ID_KEY_RE.match(filename)
    if match:
        return "SSH-" + _title_segments(match.group(1))
    if filename.startswith("id_"):
        return "SSH-Personal"
    return "SSH-" + _title_segments(filename)


def _first_line(path: Path) -> str:
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as fh:
            return fh.readline()
    except OSError:
        return ""


def discover_ssh_keys(ssh_dir: Path, home: Path) -> dict[str, str]:
    """Find private keys in a directory.

    Generic ``id_*`` keys all map to SSH-Personal; when more than one is
    present the first (sorted) keeps that name and the others get their
    algorithm appended (SSH-Personal-Rsa).

    Returns:
        Mapping of item name to home-relative path.
    """
    keys: dict[str, str] = {}
    if not ssh_dir.is_dir():
        return keys

    for path in sorted(ssh_dir.iterdir()):
        if not path.is_file() or path.suffix == ".pub" or path.name in _SSH_NON_KEYS:
            continue
        if not looks_like_private_key(_first_line(path)):
            continue
        name = normalize_ssh_key_name(path.name)
        if name in keys and name == "SSH-Personal":
            name = f"SSH-Personal-{_title_segments(path.name[3:])}"
        if name in keys:
            logger.warning("Skipping %s: name %s already used by %s", path, name, keys[name])
            continue
        keys[name] = contract_path(path, home)
        logger.info("Found SSH key %s -> %s", path.name, name)
    return keys


def parse_aws_profiles(text: str) -> list[str]:
    """Profile names from an AWS credentials or config file, in order."""
    profiles = []
    for line in text.splitlines():
        match = _AWS_SECTION_RE.match(line)
        if match and match.group(1) not in profiles:
            profiles.append(match.group(1))
    return profiles


def discover(
    home: Optional[Path] = None,
    extra_ssh_dirs: Iterable[Path] = (),
    location: Optional[VaultLocation] = None,
) -> VaultConfig:
    """Scan home for secrets and build a candidate configuration.

    Args:
        home: Directory to scan. Defaults to the user's home.
        extra_ssh_dirs: Additional directories to scan for SSH keys.
        location: Vault namespace to record in the document.

    Returns:
        Candidate VaultConfig (SSH keys, required and optional files).
    """
    home = Path(home) if home is not None else Path.home()
    items: dict[str, VaultItem] = {}
    ssh_keys: dict[str, str] = {}

    for ssh_dir in [home / ".ssh", *map(Path, extra_ssh_dirs)]:
        for name, path in discover_ssh_keys(Path(ssh_dir).expanduser(), home).items():
            if name in ssh_keys:
                continue
            ssh_keys[name] = path
            items[name] = VaultItem(name=name, path=path, required=True, type=ItemType.SSHKEY)

    syncable: dict[str, str] = {}
    for required, table in ((True, REQUIRED_FILES), (False, OPTIONAL_FILES)):
        for name, rel in table:
            if not (home / rel).is_file():
                continue
            path = "~/" + rel
            items[name] = VaultItem(name=name, path=path, required=required, type=ItemType.FILE)
            syncable[name] = path
            logger.info("Found %s at %s", name, path)

    profiles: list[str] = []
    for rel in (".aws/credentials", ".aws/config"):
        aws_file = home / rel
        if aws_file.is_file():
            for profile in parse_aws_profiles(aws_file.read_text(encoding="utf-8", errors="replace")):
                if profile not in profiles:
                    profiles.append(profile)

    return VaultConfig(
        ssh_keys=ssh_keys,
        vault_items=items,
        syncable_items=syncable,
        aws_expected_profiles=profiles,
        vault_location=location,
    )


def merge(candidate: VaultConfig, existing: VaultConfig) -> VaultConfig:
    """Reconcile a freshly discovered document with a saved one.

    Per field:
      - ssh_keys, syncable_items: union; the candidate's path wins.
      - vault_items: rediscovered items take the candidate's path and
        type but keep a saved ``required: false``; saved items that were
        not rediscovered are kept unchanged; new items are added.
      - aws_expected_profiles: union, saved order first.
      - vault_location: the candidate's if set, else the saved one.

    merge(x, x) == x and merge(x, VaultConfig()) == x.
    """
    items: dict[str, VaultItem] = {}
    for name, old in existing.vault_items.items():
        new = candidate.vault_items.get(name)
        if new is None:
            items[name] = old
            continue
        items[name] = new.model_copy(update={
            "required": new.required and old.required,
            "id": new.id or old.id,
        })
    for name, new in candidate.vault_items.items():
        items.setdefault(name, new)

    syncable = {**existing.syncable_items, **candidate.syncable_items}
    syncable = {
        name: path for name, path in syncable.items()
        if name in items and items[name].type == ItemType.FILE
    }

    return VaultConfig(
        ssh_keys={**existing.ssh_keys, **candidate.ssh_keys},
        vault_items=items,
        syncable_items=syncable,
        aws_expected_profiles=list(existing.aws_expected_profiles) + list(candidate.aws_expected_profiles),
        vault_location=candidate.vault_location or existing.vault_location,
    )


def find_conflicts(candidate: VaultConfig, existing: VaultConfig) -> list[MergeConflict]:
    """Rediscovered items whose type changed since the document was saved."""
    conflicts = []
    for name in sorted(set(candidate.vault_items) & set(existing.vault_items)):
        old = existing.vault_items[name]
        new = candidate.vault_items[name]
        if old.type != new.type:
            conflicts.append(MergeConflict(name, "type", old.type.value, new.type.value))
    return conflicts
