import uuid

from app.core.config import settings


def test_register_login_me(client, monkeypatch):
    monkeypatch.setattr(settings, "allow_public_register", True)
    email = f"user_{uuid.uuid4().hex[:8]}@example.com"

    r = client.post("/api/users", json={"email": email, "password": "testpass123"})
    assert r.status_code == 200
    assert r.json()["access_token"]

    r = client.post(
        "/api/login",
        data={"username": email.upper(), "password": "testpass123"},
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )
    assert r.status_code == 200
    token = r.json()["access_token"]

    r = client.get("/api/users/me", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 200
    assert r.json()["email"] == email


def test_register_duplicate(client, monkeypatch):
    monkeypatch.setattr(settings, "allow_public_register", True)
    email = f"dup_{uuid.uuid4().hex[:8]}@example.com"
    assert client.post("/api/users", json={"email": email, "password": "testpass123"}).status_code == 200
    r = client.post("/api/users", json={"email": email, "password": "testpass123"})
    assert r.status_code == 409


def test_register_short_password(client, monkeypatch):
    monkeypatch.setattr(settings, "allow_public_register", True)
    r = client.post("/api/users", json={"email": "short@example.com", "password": "x"})
    assert r.status_code == 400


def test_login_wrong_password(client, monkeypatch):
    monkeypatch.setattr(settings, "allow_public_register", True)
    email = f"wrong_{uuid.uuid4().hex[:8]}@example.com"
    client.post("/api/users", json={"email": email, "password": "testpass123"})

    r = client.post(
        "/api/login",
        data={"username": email, "password": "nope-nope"},
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )
    assert r.status_code == 401


def test_token_cookie_is_accepted(client, owner):
    from app.core.security import TOKEN_COOKIE, create_access_token

    client.cookies.set(TOKEN_COOKIE, create_access_token(user_id=str(owner.id)))
    try:
        r = client.get("/api/users/me")
    finally:
        client.cookies.clear()
    assert r.status_code == 200
    assert r.json()["id"] == str(owner.id)


def test_garbage_token_is_rejected(client):
    r = client.get("/api/users/me", headers={"Authorization": "Bearer not.a.jwt"})
    assert r.status_code == 401
