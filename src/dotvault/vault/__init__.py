"""
Vault synchronization -- secrets between this machine and your vault.

Restore pulls every configured item down to its local path; push sends
local edits back up. Nothing is overwritten while local files have
drifted from the vault unless you ask for it.

Backends: Bitwarden (bw), 1Password (op), pass (gpg).
"""

from .errors import VaultError
from .models import DriftStatus, ItemResult, OperationSummary, Session

__all__ = ["DriftStatus", "ItemResult", "OperationSummary", "Session", "VaultError"]
