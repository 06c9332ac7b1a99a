"""
Session manager -- acquire, cache and revalidate provider credentials.

    NO_SESSION -> UNLOCKING -> VALID -> (EXPIRED -> UNLOCKING)

Token sources, in order: the provider's environment variable (e.g.
BW_SESSION), the session cache file, then an interactive unlock. A
cached token is revalidated before every reuse. The cache is a single
line, owner-only, written atomically under an advisory lock.
"""

from __future__ import annotations

import logging
import os
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional

from ..fileio import PRIVATE_MODE, atomic_write, file_lock
from .backends import VaultBackend
from .errors import AuthenticationRequired, SessionInvalid
from .models import Session, SessionSource

logger = logging.getLogger("dotvault.vault.session")

DEFAULT_MAX_ATTEMPTS = 3


class SessionState(str, Enum):
    """Lifecycle of the manager's current session."""

    NO_SESSION = "no_session"
    UNLOCKING = "unlocking"
    VALID = "valid"
    EXPIRED = "expired"


class SessionManager:
    """Owns the unlock credential for one backend.

    Args:
        backend: Provider adapter used to validate and acquire tokens.
        cache_file: Where the token is persisted between runs.
        env: Environment to read the provider token variable from.
        max_attempts: Unlock attempts before giving up.
    """

    def __init__(
        self,
        backend: VaultBackend,
        cache_file: Path,
        env: Optional[Mapping[str, str]] = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ):
        self.backend = backend
        self.cache_file = Path(cache_file)
        self.env = os.environ if env is None else env
        self.max_attempts = max(1, max_attempts)
        self.state = SessionState.NO_SESSION
        self._session: Optional[Session] = None

    @property
    def lock_file(self) -> Path:
        return self.cache_file.with_name(self.cache_file.name + ".lock")

    def get(self) -> Session:
        """Return a valid session, unlocking the provider if needed.

        Raises:
            AuthenticationRequired: If no valid session could be obtained.
        """
        if self.state == SessionState.VALID and self._session is not None:
            return self._session

        env_var = self.backend.session_env_var
        token = self.env.get(env_var, "") if env_var else ""
        if token:
            if self.backend.validate_session(token):
                return self._valid(Session(backend=self.backend.name, token=token, source=SessionSource.ENV))
            logger.warning("%s is set but was rejected; ignoring it", env_var)

        cached = self.read_cache()
        if cached is not None:
            if self.backend.validate_session(cached):
                return self._valid(
                    Session(backend=self.backend.name, token=cached, source=SessionSource.CACHE)
                )
            logger.info("Cached %s session expired", self.backend.name)
            self.state = SessionState.EXPIRED
            self._remove_cache()

        return self._unlock()

    def peek(self) -> Optional[Session]:
        """Return an already-usable session without prompting, or None.

        Used by diagnostics, which must never trigger an unlock.
        """
        if self.state == SessionState.VALID and self._session is not None:
            return self._session
        env_var = self.backend.session_env_var
        candidates = []
        if env_var and self.env.get(env_var):
            candidates.append((self.env[env_var], SessionSource.ENV))
        cached = self.read_cache()
        if cached is not None:
            candidates.append((cached, SessionSource.CACHE))
        if not env_var:
            candidates.append(("", SessionSource.AMBIENT))
        for token, source in candidates:
            if self.backend.validate_session(token):
                return self._valid(Session(backend=self.backend.name, token=token, source=source))
        return None

    def expire(self) -> None:
        """Mark the current session as rejected; the next get() unlocks again."""
        self.state = SessionState.EXPIRED
        self._session = None
        self._remove_cache()

    def invalidate(self) -> bool:
        """Forget the session and remove the cache file.

        Returns:
            True if a cache file was removed.
        """
        self.state = SessionState.NO_SESSION
        self._session = None
        return self._remove_cache()

    def read_cache(self) -> Optional[str]:
        """Read the cached token, or None if there is none."""
        if not self.cache_file.is_file():
            return None
        mode = self.cache_file.stat().st_mode & 0o777
        if mode & 0o077:
            logger.warning("Session cache %s was %s; tightening to 0600", self.cache_file, oct(mode))
            os.chmod(self.cache_file, PRIVATE_MODE)
        token = self.cache_file.read_text(encoding="utf-8").strip()
        return token or None

    def persist(self, token: str) -> None:
        """Write token to the cache file (owner-only, atomic)."""
        with file_lock(self.lock_file):
            atomic_write(self.cache_file, token + "\n", PRIVATE_MODE)
        logger.debug("Session cached at %s", self.cache_file)

    def _valid(self, session: Session) -> Session:
        self.state = SessionState.VALID
        self._session = session
        return session

    def _remove_cache(self) -> bool:
        with file_lock(self.lock_file):
            try:
                self.cache_file.unlink()
            except FileNotFoundError:
                return False
        return True

    def _unlock(self) -> Session:
        self.state = SessionState.UNLOCKING
        last_error: Optional[SessionInvalid] = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                session = self.backend.acquire_session()
            except SessionInvalid as exc:
                last_error = exc
                logger.warning(
                    "Unlock attempt %d/%d for %s failed", attempt, self.max_attempts, self.backend.name
                )
                continue
            except AuthenticationRequired:
                self.state = SessionState.NO_SESSION
                raise
            if session.token:
                self.persist(session.token)
            return self._valid(session)

        self.state = SessionState.NO_SESSION
        raise AuthenticationRequired(
            f"Could not unlock {self.backend.name} after {self.max_attempts} attempt(s)"
            + (f": {last_error}" if last_error else ""),
            remediation=f"Run: {self.backend.login_hint()}",
        )
