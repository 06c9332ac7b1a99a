"""
SSH key material parser.

A ``sshkey`` vault item stores the private key block followed by the
public key line in a single text blob. Restore splits it back into
``id_xxx`` and ``id_xxx.pub``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from .errors import KeyMaterialError

PRIVATE_KEY_TYPES = ("OPENSSH", "RSA", "EC", "DSA")

PUBLIC_KEY_PREFIXES = (
    "ssh-ed25519",
    "ssh-rsa",
    "ssh-ecdsa",
    "ecdsa-sha2-",
    "ssh-dss",
    "sk-ssh-ed25519@openssh.com",
    "sk-ecdsa-sha2-",
)

_BEGIN_RE = re.compile(r"^-----BEGIN (?:(OPENSSH|RSA|EC|DSA) )?PRIVATE KEY-----\s*$")
_ANY_PRIVATE_HEADER_RE = re.compile(r"^-----BEGIN .*PRIVATE KEY-----")


@dataclass(frozen=True)
class KeyPair:
    """Private block and (optional) public line, each newline-terminated."""

    private: str
    public: Optional[str] = None


def _lines(content: str) -> list[str]:
    return content.replace("\r\n", "\n").split("\n")


def extract_private_block(content: str) -> Optional[str]:
    """Return the first complete BEGIN...END private key block, or None."""
    lines = _lines(content)
    for start, line in enumerate(lines):
        match = _BEGIN_RE.match(line.strip())
        if not match:
            continue
        label = f"{match.group(1)} " if match.group(1) else ""
        end_marker = f"-----END {label}PRIVATE KEY-----"
        for end in range(start + 1, len(lines)):
            if lines[end].strip() == end_marker:
                block = [raw.strip() for raw in lines[start:end + 1]]
                return "\n".join(block) + "\n"
        return None
    return None


def extract_public_line(content: str) -> Optional[str]:
    """Return the first line that looks like an OpenSSH public key."""
    for line in _lines(content):
        stripped = line.strip()
        if stripped.startswith(PUBLIC_KEY_PREFIXES):
            return stripped + "\n"
    return None


def parse_key_material(content: str) -> KeyPair:
    """Split combined key material into its parts.

    Raises:
        KeyMaterialError: If no complete private key block is present.
    """
    private = extract_private_block(content)
    if private is None:
        raise KeyMaterialError("No complete private key block found")
    return KeyPair(private=private, public=extract_public_line(content))


def combine_key_material(private: str, public: Optional[str] = None) -> str:
    """Build the stored blob for a key pair (private block, then public line)."""
    text = private.rstrip("\n") + "\n"
    if public and public.strip():
        text += public.strip() + "\n"
    return text


def looks_like_private_key(first_line: str) -> bool:
    """True if a file's first line is a PEM/OpenSSH private key header."""
    return bool(_ANY_PRIVATE_HEADER_RE.match(first_line.strip()))
