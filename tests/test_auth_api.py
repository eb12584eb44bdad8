from fastapi.testclient import TestClient

from receptionist import config
from receptionist.main import app
from receptionist.models import TenantUserSession


def bearer(response):
    return {"Authorization": f"Bearer {response.json()['tokens']['accessToken']}"}


def test_signup_response_shape(client, signup):
    response = signup()
    payload = response.json()

    assert payload["success"] is True
    assert payload["tenant"]["slug"] == "acme-corp"
    assert payload["tenant"]["status"] == "pending"
    assert payload["user"]["role"] == "owner"
    assert "passwordHash" not in payload["user"]
    assert "password_hash" not in payload["user"]

    tokens = payload["tokens"]
    assert tokens["accessToken"]
    assert tokens["refreshToken"] is None
    assert tokens["tokenType"] == "Bearer"
    assert tokens["expiresIn"] == 900

    cookie = response.headers["set-cookie"]
    assert f"{config.REFRESH_COOKIE_NAME}=" in cookie
    assert "HttpOnly" in cookie
    assert "Path=/api/auth" in cookie


def test_signup_duplicate_email(client, signup):
    signup()
    response = client.post(
        "/api/auth/signup",
        json={"businessName": "Other", "email": "OWNER@example.com", "password": "another-pw"},
    )
    assert response.status_code == 400
    assert response.json()["error"] == "email_taken"


def test_signup_invalid_payload(client):
    response = client.post("/api/auth/signup", json={"businessName": "Acme", "email": "nope", "password": "x" * 10})
    assert response.status_code == 400
    payload = response.json()
    assert payload["error"] == "validation_error"
    assert "x" * 10 not in payload["message"]


def test_signup_weak_password(client):
    response = client.post(
        "/api/auth/signup", json={"businessName": "Acme", "email": "a@example.com", "password": "short"}
    )
    assert response.status_code == 400
    assert response.json()["error"] == "weak_password"


def test_login_is_case_insensitive(client, signup):
    signup()
    response = client.post("/api/auth/login", json={"email": "Owner@Example.com", "password": "correct-pw"})
    assert response.status_code == 200
    assert response.json()["tenant"]["slug"] == "acme-corp"
    assert response.json()["user"]["lastLoginAt"] is not None


def test_login_wrong_password(client, signup):
    signup()
    response = client.post("/api/auth/login", json={"email": "owner@example.com", "password": "wrong-pw"})
    assert response.status_code == 401
    assert response.json()["message"] == "Invalid email or password"


def test_login_unknown_email_looks_the_same(client):
    response = client.post("/api/auth/login", json={"email": "ghost@example.com", "password": "correct-pw"})
    assert response.status_code == 401
    assert response.json()["message"] == "Invalid email or password"


def test_login_missing_fields(client):
    response = client.post("/api/auth/login", json={"email": "", "password": ""})
    assert response.status_code == 400
    assert response.json()["error"] == "missing_credentials"
    assert client.post("/api/auth/login", json={}).status_code == 400


def test_refresh_with_cookie(client, signup):
    signup()
    response = client.post("/api/auth/refresh")
    assert response.status_code == 200
    assert response.json()["tokens"]["accessToken"]
    assert response.json()["tokens"]["refreshToken"] is None


def test_refresh_with_body_and_reuse_detection(signup):
    old_token = signup().cookies[config.REFRESH_COOKIE_NAME]
    fresh = TestClient(app)

    first = fresh.post("/api/auth/refresh", json={"refreshToken": old_token})
    assert first.status_code == 200

    reuse = TestClient(app).post("/api/auth/refresh", json={"refreshToken": old_token})
    assert reuse.status_code == 401
    assert reuse.json()["error"] == "refresh_failed"
    assert reuse.json()["message"] == "Refresh failed"


def test_refresh_without_token():
    response = TestClient(app).post("/api/auth/refresh")
    assert response.status_code == 400
    assert response.json()["error"] == "missing_refresh_token"


def test_refresh_with_garbage_token():
    response = TestClient(app).post("/api/auth/refresh", json={"refreshToken": "garbage"})
    assert response.status_code == 401
    assert response.json()["message"] == "Refresh failed"


def test_logout_revokes_session(client, db, signup):
    response = signup()
    refresh_token = response.cookies[config.REFRESH_COOKIE_NAME]

    logout = client.post("/api/auth/logout", headers=bearer(response))
    assert logout.status_code == 200
    assert logout.json() == {"success": True}

    session = db.query(TenantUserSession).one()
    assert session.revoked_at is not None

    retry = TestClient(app).post("/api/auth/refresh", json={"refreshToken": refresh_token})
    assert retry.status_code == 401


def test_logout_ignores_other_users_tokens(client, db, signup):
    victim_token = signup("Victim", "victim@example.com").cookies[config.REFRESH_COOKIE_NAME]
    attacker = signup("Attacker", "attacker@example.com")

    response = TestClient(app).post(
        "/api/auth/logout", headers=bearer(attacker), json={"refreshToken": victim_token}
    )
    assert response.status_code == 200

    refreshed = TestClient(app).post("/api/auth/refresh", json={"refreshToken": victim_token})
    assert refreshed.status_code == 200


def test_logout_requires_authentication(client):
    response = client.post("/api/auth/logout")
    assert response.status_code == 401
    assert response.json()["success"] is False


def test_me(client, signup):
    response = client.get("/api/auth/me", headers=bearer(signup()))
    assert response.status_code == 200
    user = response.json()["user"]
    assert user["email"] == "owner@example.com"
    assert user["tenant"]["businessName"] == "Acme Corp"


def test_me_rejects_refresh_token_and_garbage(client, signup):
    refresh_token = signup().cookies[config.REFRESH_COOKIE_NAME]
    assert client.get("/api/auth/me", headers={"Authorization": f"Bearer {refresh_token}"}).status_code == 401
    assert client.get("/api/auth/me", headers={"Authorization": "Bearer garbage"}).status_code == 401


def test_register_and_list_agents(client, signup):
    auth = bearer(signup())
    response = client.post("/api/agents", headers=auth, json={"retellAgentId": "agent_abc", "displayName": "Desk"})
    assert response.status_code == 201
    payload = response.json()
    assert payload["agent"]["retellAgentId"] == "agent_abc"
    assert len(payload["bearerToken"]) >= 32

    listed = client.get("/api/agents", headers=auth).json()["agents"]
    assert [a["retellAgentId"] for a in listed] == ["agent_abc"]
    assert "bearerToken" not in listed[0]


def test_agents_require_authentication(client):
    assert client.post("/api/agents", json={"retellAgentId": "agent_abc"}).status_code == 401


def test_security_headers(client, signup):
    response = signup()
    assert response.headers["X-Frame-Options"] == "DENY"
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["Cache-Control"] == "no-store"
    assert "default-src 'none'" in response.headers["Content-Security-Policy"]


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}
