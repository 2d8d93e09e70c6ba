import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

from myplant_client.constants import PB_AUTH_KEY, USER_DATA_KEY
from myplant_client.models.auth import Session
from myplant_client.storage import CredentialStore, FileBackend, MemoryBackend, SqliteBackend

SESSION = Session(token="ABC123", expiration_date=datetime(2030, 1, 1, tzinfo=timezone.utc))
PROFILE = {"id": "u1", "name": "Uma", "email": "u@x.nl", "username": "uma"}


class BrokenBackend(MemoryBackend):
    name = "broken"

    def get(self, key: str) -> str | None:
        raise OSError("disk on fire")

    def set(self, key: str, value: str) -> None:
        raise OSError("disk on fire")

    def delete(self, key: str) -> None:
        raise OSError("disk on fire")


def test_memory_store_round_trip() -> None:
    store = CredentialStore(backends=[])
    assert store.backend_name == "memory"
    assert store.load() is None
    assert store.load_profile() is None

    store.save(SESSION, PROFILE)
    assert store.load() == SESSION
    assert store.load_profile() == PROFILE


def test_stores_do_not_share_memory() -> None:
    first = CredentialStore(backends=[])
    second = CredentialStore(backends=[])
    first.save(SESSION)
    assert second.load() is None


def test_sqlite_store_survives_restart(tmp_path: Path) -> None:
    db_path = tmp_path / "nested" / "store.db"
    store = CredentialStore(backends=[lambda: SqliteBackend.open(db_path)])
    assert store.backend_name == "sqlite"
    store.save(SESSION, PROFILE)

    restarted = CredentialStore(backends=[lambda: SqliteBackend.open(db_path)])
    loaded = restarted.load()
    assert loaded is not None
    assert loaded.token == "ABC123"
    assert loaded.expiration_date == SESSION.expiration_date
    assert restarted.load_profile() == PROFILE

    conn = sqlite3.connect(db_path)
    try:
        keys = {row[0] for row in conn.execute("SELECT key FROM kv")}
    finally:
        conn.close()
    assert keys == {PB_AUTH_KEY, USER_DATA_KEY}


def test_file_store_writes_sibling_user_file(tmp_path: Path) -> None:
    path = tmp_path / "session"
    store = CredentialStore(backends=[lambda: FileBackend.open(path)])
    assert store.backend_name == "file"
    store.save(SESSION, PROFILE)

    assert json.loads(path.read_text(encoding="utf-8"))["token"] == "ABC123"
    assert json.loads((tmp_path / "session.user").read_text(encoding="utf-8")) == PROFILE
    assert path.stat().st_mode & 0o777 == 0o600

    restarted = CredentialStore(backends=[lambda: FileBackend.open(path)])
    assert restarted.load() == SESSION


def test_clear_erases_every_tier(tmp_path: Path) -> None:
    path = tmp_path / "session"
    store = CredentialStore(backends=[lambda: FileBackend.open(path)])
    store.save(SESSION, PROFILE)
    store.clear()

    assert store.load() is None
    assert store.load_profile() is None
    assert not path.exists()
    assert not (tmp_path / "session.user").exists()


def test_clear_also_clears_sqlite(tmp_path: Path) -> None:
    db_path = tmp_path / "store.db"
    store = CredentialStore(backends=[lambda: SqliteBackend.open(db_path)])
    store.save(SESSION, PROFILE)
    store.clear()

    restarted = CredentialStore(backends=[lambda: SqliteBackend.open(db_path)])
    assert restarted.load() is None
    assert restarted.load_profile() is None


def test_save_without_profile_keeps_cached_profile() -> None:
    store = CredentialStore(backends=[])
    store.save(SESSION, PROFILE)
    store.save(Session(token="NEW"))
    assert store.load().token == "NEW"
    assert store.load_profile() == PROFILE


def test_backend_selection_falls_through(tmp_path: Path) -> None:
    def explode():
        raise RuntimeError("no embedded store here")

    path = tmp_path / "session"
    store = CredentialStore(backends=[explode, lambda: None, lambda: FileBackend.open(path)])
    assert store.backend_name == "file"


def test_backend_selection_is_evaluated_once(tmp_path: Path) -> None:
    calls = []

    def factory():
        calls.append(1)
        return SqliteBackend.open(tmp_path / "store.db")

    store = CredentialStore(backends=[factory])
    store.save(SESSION)
    store.load()
    store.clear()
    assert len(calls) == 1


def test_sqlite_open_fails_quietly(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    assert SqliteBackend.open(blocker / "store.db") is None


def test_file_backend_refuses_restricted_environment(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("MYPLANT_NO_FILESYSTEM", "1")
    assert FileBackend.open(tmp_path / "session") is None


def test_write_failure_falls_back_to_memory() -> None:
    store = CredentialStore(backends=[BrokenBackend])
    assert store.backend_name == "broken"

    store.save(SESSION, PROFILE)
    assert store.load() == SESSION
    assert store.load_profile() == PROFILE

    store.clear()
    assert store.load() is None


def test_read_failure_is_treated_as_absent() -> None:
    store = CredentialStore(backends=[BrokenBackend])
    assert store.load() is None
    assert store.load_profile() is None


def test_malformed_credential_is_treated_as_absent(tmp_path: Path, console) -> None:
    path = tmp_path / "session"
    path.write_text("pb_auth=raw-cookie-from-an-old-version", encoding="utf-8")
    (tmp_path / "session.user").write_text("{not json", encoding="utf-8")

    store = CredentialStore(backends=[lambda: FileBackend.open(path)], console=console, verbose=True)
    assert store.load() is None
    assert store.load_profile() is None
    assert "could not be decoded" in console.export_text()


def test_restricted_environment_keeps_defaults_in_memory(tmp_path: Path, monkeypatch) -> None:
    from myplant_client import storage

    monkeypatch.setattr(storage, "DATABASE_FILE", tmp_path / "store.db")
    monkeypatch.setattr(storage, "CREDENTIAL_FILE", tmp_path / "session")
    monkeypatch.setenv("MYPLANT_NO_FILESYSTEM", "1")

    store = CredentialStore()
    assert store.backend_name == "memory"
    assert not store.persistent

    store.save(SESSION, PROFILE)
    assert store.load() == SESSION
    assert list(tmp_path.iterdir()) == []


def test_sqlite_refuses_restricted_environment(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("MYPLANT_NO_FILESYSTEM", "1")
    assert SqliteBackend.open(tmp_path / "store.db") is None
    assert not (tmp_path / "store.db").exists()


def test_file_backend_tightens_existing_file(tmp_path: Path) -> None:
    path = tmp_path / "session"
    path.write_text("old", encoding="utf-8")
    path.chmod(0o644)

    backend = FileBackend.open(path)
    backend.set(PB_AUTH_KEY, SESSION.model_dump_json(by_alias=True))
    assert path.stat().st_mode & 0o777 == 0o600
    assert json.loads(path.read_text(encoding="utf-8"))["token"] == "ABC123"
