"""
AbeFook Session

The authenticated identity (access token + user id) shared by the login
controller and every request built from it. One lock guards the whole
record so readers never see a token from one login and a uid from another.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Optional

from .storage import MemoryStorage
from .types import CredentialStore

logger = logging.getLogger("abefook.session")


@dataclass(frozen=True)
class SessionSnapshot:
    access_token: Optional[str]
    uid: Optional[str]
    is_valid: bool


class FacebookSession:
    """
    Session context passed by reference into FacebookLogin and FacebookRequest.

    Requests read the token once when they build their parameters; a request
    already on the wire keeps that token even if logout happens meanwhile.
    """

    def __init__(self, storage: Optional[CredentialStore] = None) -> None:
        self._storage: CredentialStore = storage if storage is not None else MemoryStorage()
        self._lock = threading.Lock()
        self._access_token: Optional[str] = None
        self._uid: Optional[str] = None
        self._is_valid = False
        self.load()

    @property
    def storage(self) -> CredentialStore:
        return self._storage

    def load(self) -> bool:
        """Read persisted credentials. Loaded credentials are not yet validated."""
        token = self._storage.get_access_token()
        uid = self._storage.get_uid()
        with self._lock:
            self._access_token = token or None
            self._uid = uid or None
            self._is_valid = False
        return bool(token)

    @property
    def access_token(self) -> Optional[str]:
        with self._lock:
            return self._access_token

    @property
    def uid(self) -> Optional[str]:
        with self._lock:
            return self._uid

    @property
    def is_valid(self) -> bool:
        with self._lock:
            return self._is_valid and bool(self._access_token)

    def snapshot(self) -> SessionSnapshot:
        with self._lock:
            return SessionSnapshot(
                self._access_token, self._uid, self._is_valid and bool(self._access_token)
            )

    def save(self, access_token: str, uid: Optional[str]) -> None:
        """Persist new credentials and mark the session valid."""
        self._storage.set_credentials(access_token, uid)
        with self._lock:
            self._access_token = access_token
            self._uid = uid
            self._is_valid = bool(access_token)

    def mark_validated(self, uid: Optional[str] = None) -> None:
        """Mark the loaded token as verified, refreshing the uid when one is given."""
        with self._lock:
            token = self._access_token
            if uid and uid != self._uid:
                self._uid = uid
            else:
                uid = None
            self._is_valid = bool(token)
        if token and uid:
            self._storage.set_credentials(token, uid)

    def invalidate(self) -> None:
        """Keep the credentials but mark them unusable."""
        with self._lock:
            self._is_valid = False

    def clear(self) -> None:
        """Drop in-memory and persisted credentials."""
        self._storage.clear_credentials()
        with self._lock:
            self._access_token = None
            self._uid = None
            self._is_valid = False
        logger.debug("Session cleared")
