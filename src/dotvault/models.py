"""
Pydantic models for the item registry and runtime settings.

The configuration document is read once, frozen, and handed to every
component explicitly. Nothing in dotvault keeps a module-level registry
of secrets.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class ItemType(str, Enum):
    """Shape of the content stored for a vault item."""

    FILE = "file"
    SSHKEY = "sshkey"


class BackendType(str, Enum):
    """Supported vault providers."""

    BITWARDEN = "bitwarden"
    ONEPASSWORD = "1password"
    PASS = "pass"


class VaultItem(BaseModel):
    """One managed secret: a logical vault name mapped to a local file."""

    model_config = ConfigDict(frozen=True)

    name: str = ""
    path: str
    required: bool = True
    type: ItemType = ItemType.FILE
    id: Optional[str] = None

    @property
    def requirement(self) -> str:
        return "required" if self.required else "optional"

    @property
    def is_key_pair(self) -> bool:
        """Key-pair items are restore-only; they never take part in push."""
        return self.type == ItemType.SSHKEY


class VaultLocation(BaseModel):
    """Namespace hint for the backend (Bitwarden folder, pass directory...)."""

    model_config = ConfigDict(frozen=True)

    type: str
    value: str = ""

    @classmethod
    def parse(cls, text: str) -> "VaultLocation":
        """Parse the ``type:value`` form used on the command line.

        Raises:
            ValueError: If the text has no type component.
        """
        loc_type, _, value = text.partition(":")
        if not loc_type.strip():
            raise ValueError(f"Invalid location '{text}' (expected type:value)")
        return cls(type=loc_type.strip(), value=value.strip())


class VaultConfig(BaseModel):
    """The configuration document (``vault-items.json``).

    Immutable once constructed. Item names are the keys of
    ``vault_items``; each VaultItem also carries its own name.
    """

    model_config = ConfigDict(frozen=True)

    ssh_keys: dict[str, str] = Field(default_factory=dict)
    vault_items: dict[str, VaultItem] = Field(default_factory=dict)
    syncable_items: dict[str, str] = Field(default_factory=dict)
    aws_expected_profiles: list[str] = Field(default_factory=list)
    vault_location: Optional[VaultLocation] = None

    @model_validator(mode="before")
    @classmethod
    def _normalize_document(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = {k: v for k, v in data.items() if not str(k).startswith("$")}

        items = data.get("vault_items") or {}
        if isinstance(items, dict):
            named = {}
            for name, item in items.items():
                if isinstance(item, dict):
                    item = {**item, "name": name}
                elif isinstance(item, VaultItem) and item.name != name:
                    item = item.model_copy(update={"name": name})
                named[name] = item
            data["vault_items"] = named

            # Older documents omit syncable_items; every file item is then pushable
            if "syncable_items" not in data:
                data["syncable_items"] = {
                    name: (item["path"] if isinstance(item, dict) else item.path)
                    for name, item in named.items()
                    if _raw_type(item) == ItemType.FILE.value
                }
        return data

    @field_validator("aws_expected_profiles")
    @classmethod
    def _dedupe_profiles(cls, value: list[str]) -> list[str]:
        return list(dict.fromkeys(value))

    @model_validator(mode="after")
    def _check_syncable_subset(self) -> "VaultConfig":
        orphans = sorted(set(self.syncable_items) - set(self.vault_items))
        if orphans:
            raise ValueError(
                f"syncable_items not present in vault_items: {', '.join(orphans)}"
            )
        keys = sorted(
            name for name in self.syncable_items
            if self.vault_items[name].type != ItemType.FILE
        )
        if keys:
            raise ValueError(
                f"sshkey items are restore-only and cannot be syncable: {', '.join(keys)}"
            )
        return self

    def is_protected(self, name: str) -> bool:
        """Every item known to the registry is protected from casual deletion."""
        return name in self.vault_items

    def required_items(self) -> list[str]:
        return sorted(n for n, i in self.vault_items.items() if i.required)

    def optional_items(self) -> list[str]:
        return sorted(n for n, i in self.vault_items.items() if not i.required)

    def to_document(self) -> dict:
        """Serialize back to the on-disk JSON shape."""
        doc: dict[str, Any] = {
            "ssh_keys": dict(sorted(self.ssh_keys.items())),
            "vault_items": {
                name: item.model_dump(mode="json", exclude={"name"}, exclude_none=True)
                for name, item in sorted(self.vault_items.items())
            },
            "syncable_items": dict(sorted(self.syncable_items.items())),
            "aws_expected_profiles": list(self.aws_expected_profiles),
        }
        if self.vault_location is not None:
            doc["vault_location"] = self.vault_location.model_dump(mode="json")
        return doc


def _raw_type(item: Any) -> str:
    if isinstance(item, VaultItem):
        return item.type.value
    value = item.get("type", ItemType.FILE.value)
    return value.value if isinstance(value, ItemType) else str(value)


class Settings(BaseModel):
    """Runtime settings persisted to ``~/.dotvault/config.yaml``."""

    backend: BackendType = BackendType.BITWARDEN
    session_file: Optional[Path] = None
    timeout_seconds: float = 60.0
    unlock_attempts: int = 3
    backup_on_restore: bool = True
    offline: bool = False

    # 1Password
    onepassword_vault: Optional[str] = None

    # pass
    pass_prefix: Optional[str] = None
    password_store_dir: Optional[Path] = None
