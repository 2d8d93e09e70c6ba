"""Persistence for the pb_auth session and the cached user profile.

The store commits to one persistent backend when it is constructed (an SQLite
key-value table, a pair of files, or nothing at all) and always keeps a
volatile in-memory copy on top of it. Persistence is best effort: storage
failures are reported on the debug channel and never reach the caller.
"""

import json
import os
import sqlite3
from collections.abc import Callable, Sequence
from contextlib import closing
from pathlib import Path
from typing import Any, Protocol, TypeAlias

from pydantic import BaseModel, ValidationError
from rich.console import Console

from .constants import CREDENTIAL_FILE, DATABASE_FILE, ENV_NO_FILESYSTEM, PB_AUTH_KEY, USER_DATA_KEY
from .errors import MalformedCredentialError
from .models.auth import Session

STORAGE_ERRORS = (OSError, sqlite3.Error)


class StorageBackend(Protocol):
    name: str

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


BackendFactory: TypeAlias = Callable[[], StorageBackend | None]


def filesystem_restricted() -> bool:
    """True when the environment forbids keeping credentials on disk."""
    return bool(os.getenv(ENV_NO_FILESYSTEM))


class MemoryBackend:
    """Volatile storage, lost when the process exits."""

    name = "memory"

    def __init__(self):
        self._data: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class SqliteBackend:
    """Key-value table in an embedded SQLite database."""

    name = "sqlite"

    def __init__(self, path: Path):
        self.path = path
        with closing(self._connect()) as conn, conn:
            conn.execute("CREATE TABLE IF NOT EXISTS kv (key TEXT PRIMARY KEY, value TEXT NOT NULL)")

    @classmethod
    def open(cls, path: Path = DATABASE_FILE) -> "SqliteBackend | None":
        if filesystem_restricted():
            return None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            return cls(path)
        except STORAGE_ERRORS:
            return None

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.path)

    def get(self, key: str) -> str | None:
        with closing(self._connect()) as conn:
            row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        return row[0] if row else None

    def set(self, key: str, value: str) -> None:
        with closing(self._connect()) as conn, conn:
            conn.execute(
                "INSERT INTO kv (key, value) VALUES (?, ?) ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (key, value),
            )

    def delete(self, key: str) -> None:
        with closing(self._connect()) as conn, conn:
            conn.execute("DELETE FROM kv WHERE key = ?", (key,))


class FileBackend:
    """Credential in ``path``, profile in the sibling ``<path>.user`` file."""

    name = "file"

    def __init__(self, path: Path):
        self.path = path
        self._paths = {
            PB_AUTH_KEY: path,
            USER_DATA_KEY: path.with_name(f"{path.name}.user"),
        }

    @classmethod
    def open(cls, path: Path = CREDENTIAL_FILE) -> "FileBackend | None":
        if filesystem_restricted():
            return None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError:
            return None
        if not os.access(path.parent, os.W_OK):
            return None
        return cls(path)

    def get(self, key: str) -> str | None:
        path = self._paths[key]
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set(self, key: str, value: str) -> None:
        path = self._paths[key]
        fd = os.open(path, os.O_CREAT | os.O_WRONLY | os.O_TRUNC, 0o600)
        # O_CREAT only applies the mode to new files
        os.fchmod(fd, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(value)

    def delete(self, key: str) -> None:
        self._paths[key].unlink(missing_ok=True)


def default_backends() -> list[BackendFactory]:
    return [
        lambda: SqliteBackend.open(DATABASE_FILE),
        lambda: FileBackend.open(CREDENTIAL_FILE),
    ]


class CredentialStore:
    """Stores one session and one optional user profile."""

    console: Console | None
    verbose: bool
    memory: MemoryBackend
    backend: StorageBackend

    def __init__(
        self,
        backends: Sequence[BackendFactory] | None = None,
        console: Console | None = None,
        verbose: bool = False,
    ):
        self.console = console
        self.verbose = verbose
        self.memory = MemoryBackend()
        self.backend = self._select(default_backends() if backends is None else backends)

    @property
    def backend_name(self) -> str:
        return self.backend.name

    @property
    def persistent(self) -> bool:
        return self.backend is not self.memory

    def debug(self, message: str):
        """Print a debug message if verbose is enabled."""
        if self.verbose and self.console is not None:
            self.console.print(f"[info]Debug: {message}[/info]")

    def _select(self, factories: Sequence[BackendFactory]) -> StorageBackend:
        for factory in factories:
            try:
                backend = factory()
            except Exception as e:
                self.debug(f"Storage backend unavailable: {e}")
                continue
            if backend is not None:
                self.debug(f"Using {backend.name} credential storage")
                return backend
        self.debug("No persistent storage available, credentials are kept in memory")
        return self.memory

    def _read(self, key: str) -> str | None:
        value = self.memory.get(key)
        if value is not None or not self.persistent:
            return value
        try:
            value = self.backend.get(key)
        except STORAGE_ERRORS as e:
            self.debug(f"Reading {key} from {self.backend.name} storage failed: {e}")
            return None
        if value is not None:
            self.memory.set(key, value)
        return value

    def _write(self, key: str, value: str):
        self.memory.set(key, value)
        if not self.persistent:
            return
        try:
            self.backend.set(key, value)
        except STORAGE_ERRORS as e:
            self.debug(f"Writing {key} to {self.backend.name} storage failed, keeping it in memory: {e}")

    def _delete(self, key: str):
        self.memory.delete(key)
        if not self.persistent:
            return
        try:
            self.backend.delete(key)
        except STORAGE_ERRORS as e:
            self.debug(f"Removing {key} from {self.backend.name} storage failed: {e}")

    def save(self, credential: Session, profile: BaseModel | dict[str, Any] | None = None):
        self._write(PB_AUTH_KEY, credential.model_dump_json(by_alias=True))
        if profile is not None:
            if isinstance(profile, BaseModel):
                profile = profile.model_dump(mode="json", by_alias=True)
            self._write(USER_DATA_KEY, json.dumps(profile, ensure_ascii=False, default=str))

    def load(self) -> Session | None:
        raw = self._read(PB_AUTH_KEY)
        if raw is None:
            return None
        try:
            return decode_session(raw)
        except MalformedCredentialError as e:
            self.debug(str(e))
            return None

    def load_profile(self) -> dict[str, Any] | None:
        raw = self._read(USER_DATA_KEY)
        if raw is None:
            return None
        try:
            profile = json.loads(raw)
        except json.JSONDecodeError:
            self.debug("Ignoring stored user profile that is not valid JSON")
            return None
        return profile if isinstance(profile, dict) else None

    def clear(self):
        """Forget the session and the cached profile on every tier."""
        self._delete(PB_AUTH_KEY)
        self._delete(USER_DATA_KEY)


def decode_session(raw: str) -> Session:
    try:
        return Session.model_validate_json(raw)
    except ValidationError as e:
        raise MalformedCredentialError(f"Stored credential could not be decoded ({e.error_count()} errors)") from e
