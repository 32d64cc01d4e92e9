"""
Opaque key-value credential store with owner-only file permissions.

Holds the auth token and the current user id, apart from the SQLite cache:

    {
        "auth_token": "eyJhbGciOi...",
        "user_id":    "6f1c...",
    }

Serialized as JSON in a 0700 directory / 0600 file. Any mechanism with the
same get/set/delete contract and equivalent confidentiality (an OS keychain,
for instance) can replace it.
"""
import json
import logging
import os
import stat
from pathlib import Path
from typing import Dict, Optional

from eventfeed.remote.errors import FileIOError

logger = logging.getLogger(__name__)

# ── Constants ─────────────────────────────────────────────────────────────────

STORE_DIR_DEFAULT = Path.home() / ".eventfeed" / "secure"
STORE_FILE_NAME = "credentials.json"

TOKEN_KEY = "auth_token"
USER_ID_KEY = "user_id"


# ── Main class ────────────────────────────────────────────────────────────────

class SecureStore:
    """
    Get/set/delete string values by key.

    Usage:
        store = SecureStore()
        store.set(TOKEN_KEY, token)
        token = store.get(TOKEN_KEY)   # → None if absent
    """

    def __init__(self, store_dir: Path = STORE_DIR_DEFAULT):
        self._store_dir = Path(store_dir)
        self._store_file = self._store_dir / STORE_FILE_NAME

    @property
    def path(self) -> Path:
        return self._store_file

    def get(self, key: str) -> Optional[str]:
        """Return the value stored under key, or None."""
        return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    def delete(self, key: str) -> None:
        """Remove key (does not raise if already absent)."""
        data = self._load()
        if key in data:
            del data[key]
            self._save(data)

    def clear(self) -> None:
        """Delete the store file (does not raise if already absent)."""
        try:
            self._store_file.unlink(missing_ok=True)
        except OSError as exc:
            raise FileIOError(f"Failed to delete {self._store_file}: {exc}") from exc

    # ── Persistence ───────────────────────────────────────────────────────────

    def _load(self) -> Dict[str, str]:
        """
        Read the store from disk.

        A missing file is an empty store. An unreadable or malformed file is
        also treated as empty (logged): the session then starts logged out.
        """
        if not self._store_file.exists():
            return {}
        try:
            data = json.loads(self._store_file.read_text())
        except (OSError, ValueError) as exc:
            logger.error("Secure store at %s is unreadable: %s", self._store_file, exc)
            return {}
        if not isinstance(data, dict):
            logger.error("Secure store at %s has unexpected shape", self._store_file)
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def _save(self, data: Dict[str, str]) -> None:
        """
        Persist data with owner-only permissions.

        Directory: 0700 (rwx------)
        File:      0600 (rw-------)
        """
        try:
            self._store_dir.mkdir(parents=True, exist_ok=True)
            os.chmod(self._store_dir, stat.S_IRWXU)  # 0700

            self._store_file.write_text(json.dumps(data, indent=2))
            os.chmod(self._store_file, stat.S_IRUSR | stat.S_IWUSR)  # 0600
        except OSError as exc:
            raise FileIOError(f"Failed to write {self._store_file}: {exc}") from exc
