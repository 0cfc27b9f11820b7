import importlib
import pytest
from fastapi.testclient import TestClient


def reload_app(tmp_path, monkeypatch):
    # isolate data dir per test
    monkeypatch.setenv("APP_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("JWT_SECRET", "dev-secret-for-tests")
    monkeypatch.setenv("JWT_EXP_MINUTES", "15")
    monkeypatch.setenv("BCRYPT_ROUNDS", "4")

    # reload modules so the stores pick up the new data dir
    import notesync.utils.auth_hash
    import notesync.api.notes
    import notesync.api.auth
    import notesync.api.realtime
    import notesync.main
    importlib.reload(notesync.utils.auth_hash)
    importlib.reload(notesync.api.notes)
    importlib.reload(notesync.api.auth)
    importlib.reload(notesync.api.realtime)
    importlib.reload(notesync.main)
    return notesync.main.app


@pytest.fixture()
def app(tmp_path, monkeypatch):
    return reload_app(tmp_path, monkeypatch)


@pytest.fixture()
def client(app):
    # one portal, so concurrent sockets share the event loop
    with TestClient(app) as c:
        yield c


def signup(client, email, password="StrongPassw0rd!", display_name=None):
    """Register + login; returns (user_id, auth headers)."""
    r = client.post(
        "/auth/register",
        json={"email": email, "password": password, "display_name": display_name or email.split("@")[0]},
    )
    assert r.status_code == 201

    r = client.post("/auth/login", json={"email": email, "password": password})
    assert r.status_code == 200
    data = r.json()
    return data["user_id"], {"Authorization": f"Bearer {data['access_token']}"}


@pytest.fixture()
def alice(client):
    return signup(client, "alice@example.com")


@pytest.fixture()
def bob(client):
    return signup(client, "bob@example.com")


@pytest.fixture()
def carol(client):
    return signup(client, "carol@example.com")
