"""
AbeFook Credential Storage Implementations

Persist one access token and one user id under an application namespace.
"""

import json
import os
import threading
from pathlib import Path
from typing import Any, Dict, Optional


class MemoryStorage:
    """In-memory credential storage (default, non-persistent)."""

    def __init__(self, namespace: str = "abefook") -> None:
        self.namespace = namespace
        self._access_token: Optional[str] = None
        self._uid: Optional[str] = None
        self._lock = threading.Lock()

    def get_access_token(self) -> Optional[str]:
        """Get the stored access token."""
        with self._lock:
            return self._access_token

    def get_uid(self) -> Optional[str]:
        """Get the stored user id."""
        with self._lock:
            return self._uid

    def set_credentials(self, access_token: str, uid: Optional[str]) -> None:
        """Store access token and user id."""
        with self._lock:
            self._access_token = access_token
            self._uid = uid

    def clear_credentials(self) -> None:
        """Clear all stored credentials."""
        with self._lock:
            self._access_token = None
            self._uid = None


class FileStorage:
    """File-based credential storage (persistent across restarts).

    Several namespaces can share one file; each gets its own entry.
    """

    def __init__(self, file_path: Optional[str] = None, namespace: str = "abefook") -> None:
        """
        Initialize file storage.

        Args:
            file_path: Path to credentials file. Defaults to ~/.abefook/credentials.json
            namespace: Key the credentials are stored under
        """
        if file_path:
            self._file_path = Path(file_path)
        else:
            self._file_path = Path.home() / ".abefook" / "credentials.json"

        self.namespace = namespace
        self._lock = threading.Lock()
        self._ensure_directory()

    def _ensure_directory(self) -> None:
        """Ensure the storage directory exists."""
        self._file_path.parent.mkdir(parents=True, exist_ok=True)

    def _read_data(self) -> Dict[str, Any]:
        """Read all namespaces from file. A missing or corrupt file reads as empty."""
        try:
            if self._file_path.exists():
                with open(self._file_path, "r", encoding="utf-8") as f:
                    data = json.load(f)
                    return data if isinstance(data, dict) else {}
        except (json.JSONDecodeError, OSError):
            pass
        return {}

    def _write_data(self, data: Dict[str, Any]) -> None:
        """Write all namespaces to file."""
        with open(self._file_path, "w", encoding="utf-8") as f:
            json.dump(data, f)
        # Owner read/write only
        os.chmod(self._file_path, 0o600)

    def _entry(self) -> Dict[str, Any]:
        entry = self._read_data().get(self.namespace)
        return entry if isinstance(entry, dict) else {}

    def get_access_token(self) -> Optional[str]:
        """Get the stored access token."""
        with self._lock:
            return self._entry().get("access_token")

    def get_uid(self) -> Optional[str]:
        """Get the stored user id."""
        with self._lock:
            return self._entry().get("uid")

    def set_credentials(self, access_token: str, uid: Optional[str]) -> None:
        """Store access token and user id."""
        with self._lock:
            data = self._read_data()
            data[self.namespace] = {"access_token": access_token, "uid": uid}
            self._write_data(data)

    def clear_credentials(self) -> None:
        """Clear credentials of this namespace, removing the file when it empties."""
        with self._lock:
            data = self._read_data()
            data.pop(self.namespace, None)
            if data:
                self._write_data(data)
            elif self._file_path.exists():
                self._file_path.unlink()


class EnvironmentStorage:
    """Environment variable based storage (for serverless/containers)."""

    def __init__(self, namespace: str = "abefook") -> None:
        prefix = namespace.upper().replace("-", "_").replace(".", "_")
        self.namespace = namespace
        self._access_token_var = f"{prefix}_ACCESS_TOKEN"
        self._uid_var = f"{prefix}_UID"
        self._lock = threading.Lock()

    def get_access_token(self) -> Optional[str]:
        """Get the stored access token from environment."""
        return os.environ.get(self._access_token_var)

    def get_uid(self) -> Optional[str]:
        """Get the stored user id from environment."""
        return os.environ.get(self._uid_var)

    def set_credentials(self, access_token: str, uid: Optional[str]) -> None:
        """Store credentials in environment variables."""
        with self._lock:
            os.environ[self._access_token_var] = access_token
            if uid:
                os.environ[self._uid_var] = uid
            else:
                os.environ.pop(self._uid_var, None)

    def clear_credentials(self) -> None:
        """Clear credentials from environment."""
        with self._lock:
            os.environ.pop(self._access_token_var, None)
            os.environ.pop(self._uid_var, None)
