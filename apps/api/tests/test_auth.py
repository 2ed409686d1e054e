"""
Tests for authentication endpoints
"""
from conftest import TEST_PASSWORD


def _register(client, email="new.user@example.com", password="long-enough-pw"):
    return client.post("/v1/auth/register", json={"email": email, "password": password})


def _bearer(token):
    return {"Authorization": f"Bearer {token}"}


def test_register_signs_in_and_opens_trial(client):
    resp = _register(client, email="New.User@Example.com")
    assert resp.status_code == 201
    body = resp.json()
    assert body["token_type"] == "bearer"
    assert body["user"]["email"] == "new.user@example.com"
    assert body["user"]["display_name"] == "new.user"

    status = client.get("/v1/billing/status", headers=_bearer(body["access_token"])).json()
    assert status["state"] == "trial"
    assert status["can_write"] is True
    assert status["trial_days_left"] == 14


def test_register_duplicate_email(client):
    assert _register(client).status_code == 201
    resp = _register(client, email="NEW.USER@example.com")
    assert resp.status_code == 409
    assert resp.json()["error_code"] == "CONFLICT"


def test_register_short_password(client):
    resp = _register(client, password="short")
    assert resp.status_code == 422
    assert resp.json()["error_code"] == "VALIDATION_ERROR_PASSWORD"


def test_register_invalid_email(client):
    resp = _register(client, email="not-an-email")
    assert resp.status_code == 422


def test_login(client, make_user):
    user = make_user(email="doctor@example.com")

    resp = client.post("/v1/auth/login", json={"email": "doctor@example.com", "password": TEST_PASSWORD})
    assert resp.status_code == 200
    token = resp.json()["access_token"]

    me = client.get("/v1/auth/me", headers=_bearer(token))
    assert me.status_code == 200
    assert me.json()["id"] == str(user.id)


def test_login_wrong_password(client, make_user):
    make_user(email="doctor@example.com")
    resp = client.post("/v1/auth/login", json={"email": "doctor@example.com", "password": "wrong-password"})
    assert resp.status_code == 401

    resp = client.post("/v1/auth/login", json={"email": "nobody@example.com", "password": TEST_PASSWORD})
    assert resp.status_code == 401


def test_invalid_token(client):
    resp = client.get("/v1/auth/me", headers=_bearer("not-a-jwt"))
    assert resp.status_code == 401


def test_refresh_rotates_the_session(client):
    old = _register(client).json()["access_token"]

    resp = client.post("/v1/auth/refresh", headers=_bearer(old))
    assert resp.status_code == 200
    new = resp.json()["access_token"]
    assert new != old

    assert client.get("/v1/auth/me", headers=_bearer(old)).status_code == 401
    assert client.get("/v1/auth/me", headers=_bearer(new)).status_code == 200


def test_logout_invalidates_token(client):
    token = _register(client).json()["access_token"]

    resp = client.post("/v1/auth/logout", headers=_bearer(token))
    assert resp.status_code == 200
    assert resp.json() == {"success": True}

    assert client.get("/v1/auth/me", headers=_bearer(token)).status_code == 401
    assert client.get("/v1/records", headers=_bearer(token)).status_code == 401


def test_logout_only_ends_that_session(client, make_user):
    make_user(email="doctor@example.com")
    creds = {"email": "doctor@example.com", "password": TEST_PASSWORD}
    first = client.post("/v1/auth/login", json=creds).json()["access_token"]
    second = client.post("/v1/auth/login", json=creds).json()["access_token"]

    client.post("/v1/auth/logout", headers=_bearer(first))
    assert client.get("/v1/auth/me", headers=_bearer(second)).status_code == 200


def test_update_display_name(client, make_user, auth_headers):
    user = make_user()
    headers = auth_headers(user)

    resp = client.patch("/v1/auth/me", json={"display_name": "  Dr. Rivera "}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["display_name"] == "Dr. Rivera"
    assert client.get("/v1/auth/me", headers=headers).json()["display_name"] == "Dr. Rivera"

    # Omitted fields are left alone.
    assert client.patch("/v1/auth/me", json={}, headers=headers).json()["display_name"] == "Dr. Rivera"


def test_update_profile_requires_auth(client):
    assert client.patch("/v1/auth/me", json={"display_name": "X"}).status_code == 401
