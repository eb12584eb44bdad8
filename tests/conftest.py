import os
import tempfile

# Configuration is read at import time, so the environment is prepared before
# anything from the application is imported.
_TEST_DIR = tempfile.mkdtemp(prefix="receptionist-tests-")
os.environ.update(
    {
        "DATABASE_URL": f"sqlite:///{os.path.join(_TEST_DIR, 'test.db')}",
        "ENVIRONMENT": "test",
        "SECRET_KEY": "test-secret-key",
        "JWT_ACCESS_SECRET": "test-access-secret",
        "JWT_REFRESH_SECRET": "test-refresh-secret",
        "DB_ENCRYPTION_KEY": "test-encryption-key",
        "BCRYPT_ROUNDS": "4",
        "SQUARE_APPLICATION_ID": "sq0idp-test-application",
        "SQUARE_APPLICATION_SECRET": "sq0csp-test-application-secret",
        "SQUARE_ENVIRONMENT": "sandbox",
        "SQUARE_ACCESS_TOKEN": "",
        "SQUARE_LOCATION_ID": "",
        "REDIS_URL": "",
        "AUTH_RATE_LIMIT": "1000",
        "DB_LOG_SLOW_QUERIES": "false",
    }
)

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from receptionist.database import Base, SessionLocal, engine  # noqa: E402
from receptionist.deps import get_square_transport  # noqa: E402
from receptionist.domain.tenants import TenantDirectory  # noqa: E402
from receptionist.domain.tokens import ClientMeta  # noqa: E402
from receptionist.domain.vault import CredentialVault, StaticKeyProvider  # noqa: E402
from receptionist.main import app  # noqa: E402
from receptionist.models import seed_subscription_plans  # noqa: E402
from receptionist.rate_limiter import reset_rate_limits  # noqa: E402

DEFAULT_PASSWORD = "correct-pw"


@pytest.fixture(autouse=True)
def fresh_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        seed_subscription_plans(session)
    finally:
        session.close()
    reset_rate_limits()
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def vault():
    return CredentialVault(StaticKeyProvider("test-encryption-key"))


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def create_tenant(db, vault):
    """Register a tenant and its owner through the directory; returns the AuthResult"""

    def _create(business_name="Acme Corp", email="owner@example.com", password=DEFAULT_PASSWORD, **kwargs):
        directory = TenantDirectory(db, vault)
        return directory.register_tenant(
            business_name=business_name,
            email=email,
            password=password,
            meta=ClientMeta(user_agent="pytest", ip_address="127.0.0.1"),
            **kwargs,
        )

    return _create


@pytest.fixture
def signup(client):
    def _signup(business_name="Acme Corp", email="owner@example.com", password=DEFAULT_PASSWORD):
        response = client.post(
            "/api/auth/signup",
            json={"businessName": business_name, "email": email, "password": password},
        )
        assert response.status_code == 201, response.text
        return response

    return _signup


@pytest.fixture
def square_transport():
    """Install an httpx.MockTransport for Square calls; pass it a handler(request) -> Response"""

    def _install(handler):
        import httpx

        transport = httpx.MockTransport(handler)
        app.dependency_overrides[get_square_transport] = lambda: transport
        return transport

    return _install
