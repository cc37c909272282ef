# licenselink/conftest.py
import pytest
from fastapi.testclient import TestClient

from licenselink.api.deps import Services
from licenselink.core.auth import issue_session_token
from licenselink.core.config import Settings
from licenselink.tests.mocks import FakeKeygen, FakeStripe, FakeSupabase

TEST_SESSION_SECRET = "test-session-secret-0123456789abcdef"


@pytest.fixture(autouse=True)
def _skip_env_validation(monkeypatch):
    monkeypatch.setenv("SKIP_ENV_VALIDATION", "1")


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        ENV="test",
        SESSION_SECRET=TEST_SESSION_SECRET,
        STRIPE_PRICE_ID="price_default",
        STRIPE_WEBHOOK_SECRET="whsec_test",
        KEYGEN_POLICY_ID="pol_123",
        FRONTEND_URL="http://localhost:5173",
    )


@pytest.fixture
def stripe_fake():
    return FakeStripe()


@pytest.fixture
def keygen_fake():
    return FakeKeygen()


@pytest.fixture
def supabase_fake():
    return FakeSupabase()


@pytest.fixture
def services(settings, stripe_fake, keygen_fake, supabase_fake):
    return Services(settings=settings, payments=stripe_fake, licensing=keygen_fake, users=supabase_fake)


@pytest.fixture
def app(services):
    from licenselink.main import create_app

    return create_app(services.settings, services)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def make_auth_headers(settings):
    """Build an Authorization header for a session, bypassing sign-in."""

    def _make(subject="sb-user-1", email="alice@example.com", license_account_id=None, license_token=None, now=None):
        token, _ = issue_session_token(
            settings,
            subject=subject,
            email=email,
            license_account_id=license_account_id,
            license_token=license_token,
            now=now,
        )
        return {"Authorization": f"Bearer {token}"}

    return _make
