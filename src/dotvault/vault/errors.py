"""
Error taxonomy for vault operations.

Prerequisite, authentication and provider errors abort the current
command before any batch work starts. Per-item problems (missing items,
empty content, write failures) are recorded in operation summaries
instead of being raised out of the batch loop.
"""

from __future__ import annotations

from typing import Iterable, Optional


class VaultError(Exception):
    """Base class for every dotvault failure.

    Attributes:
        remediation: Optional hint shown to the user under the message.
    """

    def __init__(self, message: str, remediation: Optional[str] = None):
        super().__init__(message)
        self.remediation = remediation


class PrerequisiteMissing(VaultError):
    """A provider tool (bw, op, pass, gpg) is not installed."""


class AuthenticationRequired(VaultError):
    """The user must log in or unlock the provider before continuing."""


class SessionInvalid(VaultError):
    """A session token was rejected by the provider."""


class ItemNotFound(VaultError):
    """The named item does not exist in the vault."""


class ContentEmpty(VaultError):
    """The vault item exists but holds no content."""


class SchemaInvalid(VaultError):
    """The configuration document failed validation.

    Carries every problem found, not just the first.
    """

    def __init__(self, errors: Iterable[str], source: Optional[str] = None):
        self.errors = list(errors)
        where = f" ({source})" if source else ""
        super().__init__(
            f"Configuration is invalid{where}: {len(self.errors)} error(s)",
            remediation="Run 'dotvault validate' for the full list.",
        )


class DriftDetected(VaultError):
    """Local files differ from the vault; restore would overwrite them."""

    def __init__(self, items: Iterable[str]):
        self.items = sorted(items)
        super().__init__(
            f"Local changes would be overwritten: {', '.join(self.items)}",
            remediation=(
                "Options:\n"
                "  1. Push local changes first:  dotvault push --all\n"
                "  2. Overwrite local files:     dotvault restore --force\n"
                "  3. Inspect the differences:   dotvault status"
            ),
        )


class WriteFailure(VaultError):
    """A local or vault write failed for one item."""


class ProviderUnavailable(VaultError):
    """The provider CLI hung, crashed, or could not be reached."""


class KeyMaterialError(VaultError):
    """SSH key content could not be split into private and public parts."""
