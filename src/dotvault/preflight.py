"""
Preflight checks -- detect provider tooling and explain how to install it.

Each backend drives a command-line tool:

  - bitwarden:  bw (Bitwarden CLI)
  - 1password:  op (1Password CLI v2)
  - pass:       pass + gpg

Missing tools surface as PrerequisiteMissing with a platform-specific
install command and a download URL as fallback.
"""

from __future__ import annotations

import platform
import shutil
import subprocess
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .vault.errors import PrerequisiteMissing


class ToolStatus(str, Enum):
    """Status of a system tool."""
    INSTALLED = "installed"
    MISSING = "missing"


@dataclass
class ToolCheck:
    """Result of checking a single provider tool."""

    name: str
    binary: str
    status: ToolStatus
    required: bool = True
    version: str = ""
    install_cmd: str = ""
    download_url: str = ""
    install_note: str = ""

    @property
    def installed(self) -> bool:
        """Whether the tool is installed."""
        return self.status == ToolStatus.INSTALLED

    @property
    def ok(self) -> bool:
        """Whether this check passes (installed, or optional and missing)."""
        return self.installed or not self.required

    def hint(self) -> str:
        """One-line install instruction."""
        parts = []
        if self.install_cmd:
            parts.append(f"Install with: {self.install_cmd}")
        if self.download_url:
            parts.append(f"Download: {self.download_url}")
        return "  ".join(parts) or f"Install '{self.binary}' and make sure it is on PATH."


@dataclass
class PreflightResult:
    """Combined result of the tool checks for one backend."""

    backend: str
    checks: list[ToolCheck] = field(default_factory=list)

    @property
    def all_ok(self) -> bool:
        """True if all required tools pass."""
        return all(c.ok for c in self.checks)

    @property
    def required_missing(self) -> list[ToolCheck]:
        """List of required tools that are missing."""
        return [c for c in self.checks if c.required and not c.installed]


# ---------------------------------------------------------------------------
# Tool catalog
# ---------------------------------------------------------------------------

_TOOLS = {
    "bw": {
        "name": "Bitwarden CLI",
        "download_url": "https://bitwarden.com/help/cli/",
        "install": {
            "Darwin": "brew install bitwarden-cli",
            "Linux": "sudo npm install -g @bitwarden/cli",
            "Windows": "winget install --id Bitwarden.CLI",
        },
        "note": "Log in once with 'bw login', then dotvault unlocks as needed.",
    },
    "op": {
        "name": "1Password CLI",
        "download_url": "https://developer.1password.com/docs/cli/get-started/",
        "install": {
            "Darwin": "brew install --cask 1password-cli",
            "Windows": "winget install --id AgileBits.1Password.CLI",
        },
        "note": "Enable 'Integrate with 1Password CLI' in the app, or set OP_SERVICE_ACCOUNT_TOKEN.",
    },
    "pass": {
        "name": "pass",
        "download_url": "https://www.passwordstore.org/",
        "install": {
            "Darwin": "brew install pass",
            "Linux": {
                "apt": "sudo apt install -y pass",
                "dnf": "sudo dnf install -y pass",
                "pacman": "sudo pacman -S --noconfirm pass",
                "zypper": "sudo zypper install -y password-store",
                "apk": "sudo apk add pass",
            },
        },
        "note": "Initialize the store with 'pass init <gpg-id>'.",
    },
    "gpg": {
        "name": "GnuPG",
        "download_url": "https://gnupg.org/download/",
        "install": {
            "Darwin": "brew install gnupg",
            "Linux": {
                "apt": "sudo apt install -y gnupg",
                "dnf": "sudo dnf install -y gnupg2",
                "pacman": "sudo pacman -S --noconfirm gnupg",
                "zypper": "sudo zypper install -y gpg2",
                "apk": "sudo apk add gnupg",
            },
            "Windows": "winget install --id GnuPG.Gpg4win",
        },
        "note": "pass encrypts every entry with GPG.",
    },
}

BACKEND_TOOLS = {
    "bitwarden": ("bw",),
    "1password": ("op",),
    "pass": ("pass", "gpg"),
}


# ---------------------------------------------------------------------------
# Platform detection
# ---------------------------------------------------------------------------

def _system() -> str:
    """Canonical platform name."""
    return platform.system()


def _detect_linux_pkg_manager() -> Optional[str]:
    """Detect the Linux package manager."""
    for mgr in ("apt", "dnf", "pacman", "zypper", "apk"):
        if shutil.which(mgr) is not None:
            return mgr
    return None


def _install_cmd(binary: str) -> str:
    commands = _TOOLS.get(binary, {}).get("install", {}).get(_system(), "")
    if isinstance(commands, dict):
        mgr = _detect_linux_pkg_manager()
        return commands.get(mgr, "") if mgr else ""
    return commands


def _tool_version(binary: str) -> str:
    try:
        result = subprocess.run(
            [binary, "--version"],
            capture_output=True, text=True, timeout=5,
        )
        if result.returncode == 0 and result.stdout.strip():
            return result.stdout.strip().split("\n")[0][:60]
    except (OSError, subprocess.TimeoutExpired):
        pass
    return ""


# ---------------------------------------------------------------------------
# Checks
# ---------------------------------------------------------------------------

def check_tool(binary: str, required: bool = True) -> ToolCheck:
    """Check whether a provider tool is on PATH.

    Args:
        binary: Executable name (bw, op, pass, gpg).
        required: Whether the current backend needs it.

    Returns:
        ToolCheck with version or install instructions.
    """
    info = _TOOLS.get(binary, {})
    name = info.get("name", binary)

    if shutil.which(binary):
        return ToolCheck(
            name=name,
            binary=binary,
            status=ToolStatus.INSTALLED,
            required=required,
            version=_tool_version(binary),
        )

    return ToolCheck(
        name=name,
        binary=binary,
        status=ToolStatus.MISSING,
        required=required,
        install_cmd=_install_cmd(binary),
        download_url=info.get("download_url", ""),
        install_note=info.get("note", ""),
    )


def run_preflight(backend: str) -> PreflightResult:
    """Check every tool the given backend needs.

    Raises:
        ValueError: If the backend name is unknown.
    """
    if backend not in BACKEND_TOOLS:
        raise ValueError(
            f"Unknown backend: {backend}. Available: {', '.join(BACKEND_TOOLS)}"
        )
    return PreflightResult(
        backend=backend,
        checks=[check_tool(binary) for binary in BACKEND_TOOLS[backend]],
    )


def require_tools(backend: str) -> None:
    """Raise PrerequisiteMissing if any tool for backend is missing."""
    result = run_preflight(backend)
    missing = result.required_missing
    if not missing:
        return
    first = missing[0]
    names = ", ".join(c.binary for c in missing)
    raise PrerequisiteMissing(
        f"{backend} backend requires: {names}",
        remediation="\n".join(
            filter(None, [c.hint() for c in missing] + [first.install_note])
        ),
    )
