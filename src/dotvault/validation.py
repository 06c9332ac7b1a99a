"""
Validation engine -- configuration schema and remote content shape.

Both checks collect every problem before returning so the user sees the
complete list in one pass:

    dotvault validate            schema of vault-items.json
    dotvault validate --remote   plus the shape of each vault item
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

from .vault.keys import extract_private_block, extract_public_line

if TYPE_CHECKING:
    from .models import VaultConfig, VaultItem
    from .vault.backends import VaultBackend
    from .vault.models import Session

NAME_PATTERN = re.compile(r"^[A-Z][A-Za-z0-9]*(?:[-_.][A-Za-z0-9]+)*$")
ITEM_TYPES = ("file", "sshkey")
REQUIRED_ITEM_FIELDS = ("path", "required", "type")
MIN_FILE_CONTENT_LENGTH = 8


@dataclass
class ValidationIssue:
    """One problem found during validation."""

    item: str
    message: str
    severity: str = "error"

    def __str__(self) -> str:
        return f"{self.item}: {self.message}" if self.item else self.message


@dataclass
class ValidationReport:
    """Aggregated validation outcome.

    Attributes:
        issues: Every error and warning found.
        checked: Number of items examined.
    """

    issues: list[ValidationIssue] = field(default_factory=list)
    checked: int = 0

    def error(self, item: str, message: str) -> None:
        self.issues.append(ValidationIssue(item, message, "error"))

    def warn(self, item: str, message: str) -> None:
        self.issues.append(ValidationIssue(item, message, "warning"))

    @property
    def errors(self) -> list[str]:
        return [str(i) for i in self.issues if i.severity == "error"]

    @property
    def warnings(self) -> list[str]:
        return [str(i) for i in self.issues if i.severity == "warning"]

    @property
    def error_count(self) -> int:
        return len(self.errors)

    @property
    def ok(self) -> bool:
        return self.error_count == 0

    def extend(self, other: "ValidationReport") -> None:
        self.issues.extend(other.issues)
        self.checked += other.checked


# ---------------------------------------------------------------------------
# Document schema
# ---------------------------------------------------------------------------

def validate_document(raw: Any) -> ValidationReport:
    """Check a parsed vault-items.json document.

    Args:
        raw: Result of json.loads on the configuration file.

    Returns:
        ValidationReport listing every schema problem.
    """
    report = ValidationReport()

    if not isinstance(raw, dict):
        report.error("", "configuration must be a JSON object")
        return report

    items = raw.get("vault_items")
    if items is None:
        report.error("", "missing required key 'vault_items'")
        items = {}
    elif not isinstance(items, dict):
        report.error("", "'vault_items' must be an object")
        items = {}

    for name, item in items.items():
        report.checked += 1
        _validate_item(report, name, item)

    _validate_string_map(report, raw, "ssh_keys")
    syncable = _validate_string_map(report, raw, "syncable_items")
    for name in syncable:
        if name not in items:
            report.error(name, "listed in syncable_items but not in vault_items")
        elif isinstance(items[name], dict) and items[name].get("type") == "sshkey":
            report.error(name, "sshkey items are restore-only and cannot be syncable")

    profiles = raw.get("aws_expected_profiles", [])
    if not isinstance(profiles, list) or not all(isinstance(p, str) for p in profiles):
        report.error("", "'aws_expected_profiles' must be a list of strings")

    location = raw.get("vault_location")
    if location is not None:
        if not isinstance(location, dict):
            report.error("", "'vault_location' must be an object with type and value")
        else:
            if not isinstance(location.get("type"), str) or not location.get("type"):
                report.error("", "'vault_location.type' must be a non-empty string")
            if not isinstance(location.get("value", ""), str):
                report.error("", "'vault_location.value' must be a string")

    return report


def _validate_item(report: ValidationReport, name: str, item: Any) -> None:
    if not NAME_PATTERN.match(name):
        report.error(
            name,
            "name must start with a capital letter and use letters, digits "
            "and single - _ . separators (e.g. SSH-Work, AWS-Credentials)",
        )
    if not isinstance(item, dict):
        report.error(name, "item must be an object")
        return

    for key in REQUIRED_ITEM_FIELDS:
        if key not in item:
            report.error(name, f"missing required field '{key}'")

    if "path" in item and (not isinstance(item["path"], str) or not item["path"]):
        report.error(name, "'path' must be a non-empty string")
    if "required" in item and not isinstance(item["required"], bool):
        report.error(name, "'required' must be true or false")
    if "type" in item and item["type"] not in ITEM_TYPES:
        report.error(
            name, f"invalid type '{item['type']}' (expected one of: {', '.join(ITEM_TYPES)})"
        )


def _validate_string_map(report: ValidationReport, raw: dict, key: str) -> dict:
    value = raw.get(key, {})
    if not isinstance(value, dict):
        report.error("", f"'{key}' must be an object")
        return {}
    for name, path in value.items():
        if not isinstance(path, str):
            report.error(name, f"'{key}' value must be a path string")
    return value


# ---------------------------------------------------------------------------
# Remote content shape
# ---------------------------------------------------------------------------

def check_content(item: "VaultItem", content: Optional[str]) -> Optional[str]:
    """Check the shape of one item's vault content.

    Returns:
        None if the content looks right, otherwise the reason it does not.
    """
    if content is None or not content.strip():
        return "vault item is empty"

    if item.type.value == "sshkey":
        if extract_private_block(content) is None:
            return "no private key BEGIN/END block"
        if extract_public_line(content) is None:
            return "no public key line (ssh-ed25519, ssh-rsa, ecdsa-sha2-...)"
        return None

    if len(content.strip()) < MIN_FILE_CONTENT_LENGTH:
        return f"content shorter than {MIN_FILE_CONTENT_LENGTH} characters"
    return None


def validate_remote(
    config: "VaultConfig",
    backend: "VaultBackend",
    session: "Session",
) -> ValidationReport:
    """Fetch every configured item and check its content shape.

    Missing required items are errors; missing optional items are
    warnings.
    """
    report = ValidationReport()

    for name, item in sorted(config.vault_items.items()):
        report.checked += 1
        content = backend.get_content(name, session)
        if content is None:
            if item.required:
                report.error(name, "required item missing from vault")
            else:
                report.warn(name, "optional item not in vault")
            continue

        problem = check_content(item, content)
        if problem is not None:
            report.error(name, problem)

    return report
