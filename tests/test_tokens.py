import threading
from datetime import timedelta

import pytest

from receptionist import config
from receptionist.database import SessionLocal
from receptionist.domain.tokens import AuthResult, ClientMeta, TokenIssuer
from receptionist.errors import (
    AuthenticationError,
    ConfigurationError,
    InvalidToken,
    SessionExpired,
    SessionRevoked,
    TokenMismatch,
    UserDisabled,
)
from receptionist.models import TenantUser, TenantUserSession, utcnow


@pytest.fixture
def issued(db, create_tenant):
    """An owner with one issued session"""
    return create_tenant()


def test_access_token_claims(db, issued):
    claims = TokenIssuer(db).verify_access_token(issued.tokens.access_token)
    assert claims["sub"] == issued.user.id
    assert claims["tenantId"] == issued.tenant.id
    assert claims["role"] == "owner"
    assert claims["email"] == "owner@example.com"
    assert claims["slug"] == "acme-corp"
    assert claims["iss"] == config.JWT_ISSUER
    assert claims["type"] == "access"


def test_refresh_token_is_not_an_access_token(db, issued):
    with pytest.raises(InvalidToken):
        TokenIssuer(db).verify_access_token(issued.tokens.refresh_token)


def test_tampered_and_foreign_tokens_rejected(db, issued):
    token = issued.tokens.access_token
    with pytest.raises(InvalidToken):
        TokenIssuer(db).verify_access_token(token[:-4] + ("AAAA" if not token.endswith("AAAA") else "BBBB"))
    with pytest.raises(InvalidToken):
        TokenIssuer(db, issuer="someone-else").verify_access_token(token)
    with pytest.raises(InvalidToken):
        TokenIssuer(db, access_secret="other-secret").verify_access_token(token)


def test_expired_access_token(db, issued):
    issuer = TokenIssuer(db, access_ttl="1s")
    token = issuer._sign_access_token(issued.user, issued.tenant, utcnow() - timedelta(minutes=5))
    with pytest.raises(InvalidToken) as exc_info:
        issuer.verify_access_token(token)
    assert not isinstance(exc_info.value, SessionExpired)


def test_expired_refresh_token(db, issued):
    issuer = TokenIssuer(db)
    past = utcnow() - timedelta(days=2)
    token = issuer._sign_refresh_token(
        issued.user, issued.tenant, issued.tokens.session_id, past, past + timedelta(days=1)
    )
    with pytest.raises(SessionExpired):
        issuer.refresh_session(token)


def test_session_stores_only_a_salted_digest(db, issued):
    session = db.query(TenantUserSession).one()
    assert session.refresh_token_hash != issued.tokens.refresh_token
    assert issued.tokens.refresh_token not in session.refresh_token_hash
    assert "$" in session.refresh_token_hash
    assert session.user_agent == "pytest"
    assert session.ip_address == "127.0.0.1"


def test_refresh_rotates_and_consumes_old_session(db, issued):
    issuer = TokenIssuer(db)
    result = issuer.refresh_session(issued.tokens.refresh_token, ClientMeta(user_agent="pytest"))

    assert isinstance(result, AuthResult)
    assert result.user.id == issued.user.id
    assert result.tenant.slug == "acme-corp"
    assert result.tokens.refresh_token != issued.tokens.refresh_token
    assert result.tokens.session_id != issued.tokens.session_id

    with pytest.raises(SessionRevoked):
        issuer.refresh_session(issued.tokens.refresh_token)

    # The rotated token keeps working exactly once
    second = issuer.refresh_session(result.tokens.refresh_token)
    assert second.user.id == issued.user.id


def test_revoked_session_rejected_despite_valid_signature(db, issued):
    issuer = TokenIssuer(db)
    assert issuer.revoke_all_sessions(issued.user.id) == 1
    with pytest.raises(SessionRevoked):
        issuer.refresh_session(issued.tokens.refresh_token)


def test_expired_session_row_rejected(db, issued):
    session = db.query(TenantUserSession).one()
    session.expires_at = utcnow() - timedelta(seconds=1)
    db.commit()
    with pytest.raises(SessionExpired):
        TokenIssuer(db).refresh_session(issued.tokens.refresh_token)


def test_forged_token_for_existing_session_mismatches(db, issued):
    issuer = TokenIssuer(db)
    now = utcnow()
    forged = issuer._sign_refresh_token(
        issued.user, issued.tenant, issued.tokens.session_id, now, now + timedelta(days=1)
    )
    with pytest.raises(TokenMismatch):
        issuer.refresh_session(forged)


def test_inactive_user_cannot_refresh(db, issued):
    user = db.query(TenantUser).one()
    user.is_active = False
    db.commit()
    with pytest.raises(UserDisabled):
        TokenIssuer(db).refresh_session(issued.tokens.refresh_token)


def test_garbage_refresh_token(db):
    with pytest.raises(InvalidToken):
        TokenIssuer(db).refresh_session("not.a.jwt")


def test_revoke_is_idempotent_and_quiet(db, issued):
    issuer = TokenIssuer(db)
    assert issuer.revoke_refresh_token("garbage") is False
    assert issuer.revoke_refresh_token(issued.tokens.refresh_token, user_id="someone-else") is False
    assert issuer.revoke_refresh_token(issued.tokens.refresh_token) is True
    assert issuer.revoke_refresh_token(issued.tokens.refresh_token) is False
    assert issuer.revoke_all_sessions(issued.user.id) == 0


def test_missing_secret_is_configuration_error(db, issued, monkeypatch):
    monkeypatch.setattr(config, "JWT_ACCESS_SECRET", None)
    with pytest.raises(ConfigurationError):
        TokenIssuer(db).issue_session_tokens(issued.user, issued.tenant)


def test_concurrent_refresh_has_exactly_one_winner(issued):
    token = issued.tokens.refresh_token
    barrier = threading.Barrier(2)
    outcomes = []
    lock = threading.Lock()

    def attempt():
        session = SessionLocal()
        try:
            barrier.wait()
            result = TokenIssuer(session).refresh_session(token)
            outcome = ("ok", result.tokens.session_id)
        except AuthenticationError as e:
            outcome = ("error", e)
        finally:
            session.close()
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=attempt) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)

    successes = [o for o in outcomes if o[0] == "ok"]
    failures = [o for o in outcomes if o[0] == "error"]
    assert len(successes) == 1
    assert len(failures) == 1
    assert isinstance(failures[0][1], (SessionRevoked, TokenMismatch))

    check = SessionLocal()
    try:
        live = check.query(TenantUserSession).filter(TenantUserSession.revoked_at.is_(None)).all()
        assert [s.id for s in live] == [successes[0][1]]
    finally:
        check.close()


@pytest.mark.parametrize(
    "value, expected",
    [("15m", 900), ("30d", 2592000), ("2h", 7200), ("45s", 45), ("3600", 3600), ("soon", 2592000), (None, 2592000)],
)
def test_parse_duration(value, expected):
    assert config.parse_duration(value) == expected
