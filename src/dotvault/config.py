"""
Item registry -- loading, saving and resolving configuration.

Two files are involved:

    vault-items.json   which secrets exist and where they live (JSON,
                       hand-editable, generated by ``dotvault discover``)
    config.yaml        runtime settings for this machine (backend,
                       session cache, timeouts) under ~/.dotvault

Environment overrides:

    DOTVAULT_HOME           relocate ~/.dotvault
    DOTVAULT_CONFIG         explicit path to vault-items.json
    DOTVAULT_VAULT_BACKEND  bitwarden | 1password | pass
    DOTVAULT_OFFLINE        1 to skip every vault operation
    VAULT_SESSION_FILE      session cache location
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Mapping, Optional

import yaml
from pydantic import ValidationError

from . import DOTVAULT_HOME
from .fileio import PUBLIC_MODE, atomic_write
from .models import BackendType, Settings, VaultConfig
from .validation import validate_document
from .vault.errors import SchemaInvalid, VaultError

logger = logging.getLogger("dotvault.config")

APP_NAME = "dotvault"
CONFIG_FILENAME = "vault-items.json"
SETTINGS_FILENAME = "config.yaml"
STATE_FILENAME = "state.json"
LOCK_FILENAME = ".lock"

_TRUTHY = {"1", "true", "yes", "on"}


def dotvault_home(env: Optional[Mapping[str, str]] = None) -> Path:
    """Resolve the dotvault state directory (~/.dotvault by default)."""
    env = os.environ if env is None else env
    return Path(env.get("DOTVAULT_HOME", DOTVAULT_HOME)).expanduser()


def config_path(
    explicit: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
) -> Path:
    """Locate vault-items.json.

    Order: explicit argument, ``$DOTVAULT_CONFIG``, then
    ``${XDG_CONFIG_HOME:-~/.config}/dotvault/vault-items.json``.
    """
    if explicit is not None:
        return Path(explicit).expanduser()
    env = os.environ if env is None else env
    if env.get("DOTVAULT_CONFIG"):
        return Path(env["DOTVAULT_CONFIG"]).expanduser()
    xdg = env.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(xdg).expanduser() / APP_NAME / CONFIG_FILENAME


def expand_path(path: str, home: Optional[Path] = None) -> Path:
    """Expand the home shorthands allowed in the config document.

    Supports ``~/``, ``$HOME/`` and ``${HOME}/`` prefixes. Other paths
    are returned unchanged.
    """
    home = Path(home) if home is not None else Path.home()
    for prefix in ("~/", "$HOME/", "${HOME}/"):
        if path.startswith(prefix):
            return home / path[len(prefix):]
    if path in ("~", "$HOME", "${HOME}"):
        return home
    return Path(path)


def contract_path(path: Path, home: Optional[Path] = None) -> str:
    """Inverse of expand_path: record paths under home as ``~/...``."""
    home = Path(home) if home is not None else Path.home()
    try:
        return "~/" + Path(path).relative_to(home).as_posix()
    except ValueError:
        return str(path)


def read_document(path: Path) -> dict:
    """Read the raw JSON document without validating it.

    Raises:
        VaultError: If the file is missing.
        SchemaInvalid: If the file is not valid JSON.
    """
    if not path.exists():
        raise VaultError(
            f"No configuration found at {path}",
            remediation="Run 'dotvault discover' to generate one.",
        )
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise SchemaInvalid([f"Invalid JSON: {exc}"], source=str(path)) from exc


def load_config(path: Optional[Path] = None) -> VaultConfig:
    """Load and validate the configuration document.

    Args:
        path: Explicit location. Defaults to config_path().

    Returns:
        The frozen VaultConfig.

    Raises:
        SchemaInvalid: With every problem found, if the document is invalid.
    """
    path = config_path(path)
    raw = read_document(path)

    report = validate_document(raw)
    if not report.ok:
        raise SchemaInvalid(report.errors, source=str(path))

    try:
        config = VaultConfig.model_validate(raw)
    except ValidationError as exc:
        raise SchemaInvalid(
            [err["msg"] for err in exc.errors()], source=str(path)
        ) from exc

    logger.info("Loaded %d vault items from %s", len(config.vault_items), path)
    return config


def save_config(config: VaultConfig, path: Optional[Path] = None) -> Path:
    """Write the configuration document atomically.

    Returns:
        The path written.
    """
    path = config_path(path)
    text = json.dumps(config.to_document(), indent=2) + "\n"
    atomic_write(path, text, PUBLIC_MODE)
    logger.info("Saved configuration to %s", path)
    return path


def load_settings(
    home: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Load runtime settings from config.yaml plus environment overrides.

    Backend precedence: ``$DOTVAULT_VAULT_BACKEND`` > settings file >
    bitwarden.

    Raises:
        VaultError: If the selected backend is not a known provider.
    """
    env = os.environ if env is None else env
    home = Path(home) if home is not None else dotvault_home(env)

    data: dict = {}
    settings_file = home / SETTINGS_FILENAME
    if settings_file.exists():
        try:
            data = yaml.safe_load(settings_file.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as exc:
            logger.warning("Failed to load settings: %s", exc)

    overrides = {
        "backend": env.get("DOTVAULT_VAULT_BACKEND"),
        "session_file": env.get("VAULT_SESSION_FILE"),
        "onepassword_vault": env.get("ONEPASSWORD_VAULT"),
        "pass_prefix": env.get("PASS_PREFIX"),
        "password_store_dir": env.get("PASSWORD_STORE_DIR"),
    }
    data.update({k: v for k, v in overrides.items() if v})
    if env.get("DOTVAULT_OFFLINE", "").strip().lower() in _TRUTHY:
        data["offline"] = True

    backend = data.get("backend")
    if backend is not None:
        valid = [b.value for b in BackendType]
        if str(backend) not in valid:
            raise VaultError(
                f"Unknown vault backend '{backend}'",
                remediation=f"Available backends: {', '.join(valid)}",
            )

    try:
        return Settings(**data)
    except ValidationError as exc:
        raise VaultError(f"Invalid settings in {settings_file}: {exc}") from exc


def save_settings(settings: Settings, home: Optional[Path] = None) -> Path:
    """Persist settings to config.yaml (environment-only fields excluded)."""
    home = Path(home) if home is not None else dotvault_home()
    home.mkdir(parents=True, exist_ok=True)
    data = settings.model_dump(mode="json", exclude={"offline"}, exclude_none=True)
    settings_file = home / SETTINGS_FILENAME
    atomic_write(settings_file, yaml.dump(data, default_flow_style=False), PUBLIC_MODE)
    return settings_file


def session_file_path(settings: Settings, home: Optional[Path] = None) -> Path:
    """Session cache location for the selected backend."""
    if settings.session_file is not None:
        return Path(settings.session_file).expanduser()
    home = Path(home) if home is not None else dotvault_home()
    return home / f".{settings.backend.value}-session"
