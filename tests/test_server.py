from __future__ import annotations

import json

from deaddrop_backend.security import mailbox_key


def test_health(client):
    assert client.get("/health").json() == {"ok": True}


def test_register_login_flow(client):
    resp = client.post("/register", json={"username": "bob", "email": "bob@example.com"})
    assert resp.status_code == 201
    assert resp.json() == {"message": "User registered successfully"}

    resp = client.post("/register", json={"username": "bob", "email": "bob@example.com"})
    assert resp.status_code == 400
    assert resp.json()["message"] == "User already exists"

    resp = client.post("/login", json={"username": "bob", "email": "wrong@example.com"})
    assert resp.status_code == 400

    resp = client.post("/login", json={"username": "bob", "email": "bob@example.com"})
    assert resp.status_code == 200
    assert resp.json()["message"] == "Login successful"
    assert resp.json()["token"]


def test_forgot_password_sends_mail(client, mailer):
    client.post("/register", json={"username": "bob", "email": "bob@example.com"})

    resp = client.post("/forgot-password", json={"email": "bob@example.com"})
    assert resp.status_code == 200
    assert resp.json() == {"message": "Password reset email sent"}
    assert len(mailer.sent) == 1
    to, subject, text = mailer.sent[0]
    assert to == "bob@example.com"
    assert subject == "Password Reset"
    assert "reset token" in text

    resp = client.post("/forgot-password", json={"email": "nobody@example.com"})
    assert resp.status_code == 400
    assert resp.json() == {"message": "Email not found"}
    assert len(mailer.sent) == 1


def test_encrypt_decrypt_endpoints(client):
    enc = client.post("/encrypt", json={"data": "hello", "key": "k"})
    assert enc.status_code == 200
    blob = enc.json()["encryptedData"]

    dec = client.post("/decrypt", json={"encryptedData": blob, "key": "k"})
    assert dec.json() == {"decryptedData": "hello"}

    bad = client.post("/decrypt", json={"encryptedData": blob, "key": "nope"})
    assert bad.status_code == 400
    assert "message" in bad.json()


def test_send_and_retrieve(client, token, settings):
    resp = client.post("/send-data", json={"token": token, "data": {"secret": 42}})
    assert resp.status_code == 200
    body = resp.json()
    assert body["message"] == "Data sent successfully"
    assert body["filePath"].startswith(mailbox_key(token) + "/")
    assert str(settings.mailbox_root) not in body["filePath"]

    resp = client.post("/retrieve-data", json={"token": token})
    assert resp.status_code == 200
    assert resp.json()["data"] == {"secret": 42}
    assert resp.json()["filename"] == body["filePath"].split("/")[-1]
    assert not (settings.mailbox_root / mailbox_key(token)).exists()

    resp = client.post("/retrieve-data", json={"token": token})
    assert resp.status_code == 404
    assert "message" in resp.json()


def test_send_with_invalid_token(client, settings):
    resp = client.post("/send-data", json={"token": "forged.token", "data": 1})
    assert resp.status_code == 400
    assert resp.json() == {"message": "Invalid token"}
    assert list(settings.mailbox_root.iterdir()) == []


def test_send_with_superseded_token(client, token):
    client.post("/login", json={"username": "alice", "email": "alice@example.com"})
    resp = client.post("/send-data", json={"token": token, "data": 1})
    assert resp.status_code == 400


def test_retrieve_many(client, token):
    sent = [{"i": i} for i in range(5)]
    for item in sent:
        assert client.post("/send-data", json={"token": token, "data": item}).status_code == 200

    got = [client.post("/retrieve-data", json={"token": token}).json()["data"] for _ in sent]
    assert sorted(g["i"] for g in got) == list(range(5))
    assert client.post("/retrieve-data", json={"token": token}).status_code == 404


def test_database_lifecycle(client):
    assert client.get("/list-databases").json() == []

    resp = client.post("/create-database", json={"dbName": "shop"})
    assert resp.status_code == 200
    assert resp.json() == {"message": "Database shop created successfully"}

    resp = client.post("/create-database", json={"dbName": "shop"})
    assert resp.status_code == 400
    assert resp.json() == {"message": "Database shop already exists"}
    assert client.get("/list-databases").json() == ["shop"]

    resp = client.post("/create-table", json={"dbName": "shop", "tableName": "orders"})
    assert resp.status_code == 200
    assert resp.json() == {"message": "Table orders created successfully"}
    assert client.get("/list-tables", params={"dbName": "shop"}).json() == ["orders"]

    resp = client.post("/create-table", json={"dbName": "shop", "tableName": "orders"})
    assert resp.status_code == 400

    for i in (1, 2, 3):
        resp = client.post(
            "/insert-data", json={"dbName": "shop", "tableName": "orders", "data": {"a": i}}
        )
        assert resp.status_code == 200
        assert resp.json() == {"message": "Data inserted successfully"}

    resp = client.get("/view-table-data", params={"dbName": "shop", "tableName": "orders"})
    assert resp.json() == [{"a": 1}, {"a": 2}, {"a": 3}]


def test_unknown_targets(client):
    resp = client.post("/create-table", json={"dbName": "nope", "tableName": "t"})
    assert resp.status_code == 400

    resp = client.post("/insert-data", json={"dbName": "nope", "tableName": "t", "data": 1})
    assert resp.status_code == 400

    resp = client.get("/view-table-data", params={"dbName": "nope", "tableName": "t"})
    assert resp.status_code == 404

    resp = client.get("/list-tables", params={"dbName": "nope"})
    assert resp.status_code == 404


def test_invalid_names_rejected(client, settings):
    resp = client.post("/create-database", json={"dbName": "../escape"})
    assert resp.status_code == 400
    assert resp.json() == {"message": "Invalid database name"}
    assert not (settings.storage_root.parent / "escape").exists()


def test_broken_catalog_hides_details(client, settings):
    (settings.storage_root / "catalog.json").write_text("{", encoding="utf-8")

    resp = client.get("/list-databases")
    assert resp.status_code == 500
    assert resp.json() == {"message": "Catalog unreadable"}
    assert str(settings.storage_root) not in json.dumps(resp.json())


def test_missing_fields_are_validation_errors(client):
    assert client.post("/create-database", json={}).status_code == 422
    assert client.get("/list-tables").status_code == 422


def test_unknown_tokens_do_not_accumulate_locks(client):
    for i in range(50):
        resp = client.post("/retrieve-data", json={"token": f"junk{i}"})
        assert resp.status_code == 404

    assert len(client.app.state.services.mailbox._locks) == 0


def test_unlisted_database_directory_rejected(client, settings):
    (settings.storage_root / "ghost").mkdir()
    (settings.storage_root / "ghost" / "tables.json").write_text('{"tables": []}', encoding="utf-8")

    resp = client.post("/create-table", json={"dbName": "ghost", "tableName": "t"})
    assert resp.status_code == 400
    assert resp.json() == {"message": "Database ghost not found"}
    assert not (settings.storage_root / "ghost" / "t").exists()

    resp = client.post("/create-database", json={"dbName": "ghost"})
    assert resp.status_code == 200
    assert client.get("/list-databases").json() == ["ghost"]
