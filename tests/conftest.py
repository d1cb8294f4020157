from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from deaddrop_backend.config import Settings
from deaddrop_backend.datastore import CatalogStore, RecordStore, TableStore
from deaddrop_backend.locks import PathLocks
from deaddrop_backend.mailbox import MailboxStore


class RecordingMailer:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []

    def send(self, to: str, subject: str, text: str) -> None:
        self.sent.append((to, subject, text))


@pytest.fixture
def settings(tmp_path):
    return Settings(
        storage_root=tmp_path / "databases",
        mailbox_root=tmp_path / "mailboxes",
        users_file=tmp_path / "login" / "login.json",
        public_dir=None,
        auth_secret="test-secret",
        token_ttl_minutes=60,
    )


@pytest.fixture
def locks():
    return PathLocks()


@pytest.fixture
def mailbox(settings, locks):
    return MailboxStore(settings.mailbox_root, locks)


@pytest.fixture
def catalog(settings, locks):
    store = CatalogStore(settings.storage_root, locks)
    store.ensure()
    return store


@pytest.fixture
def tables(locks, catalog):
    return TableStore(catalog, locks)


@pytest.fixture
def records(tables, locks):
    return RecordStore(tables, locks)


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def client(settings, mailer):
    from server import create_app

    app = create_app(settings, mailer=mailer)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def token(client):
    client.post("/register", json={"username": "alice", "email": "alice@example.com"})
    resp = client.post("/login", json={"username": "alice", "email": "alice@example.com"})
    return resp.json()["token"]
