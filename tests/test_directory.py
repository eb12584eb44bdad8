from datetime import timedelta

import pytest

from receptionist.domain.context import ContextSource
from receptionist.domain.tenants import TenantDirectory, slugify
from receptionist.domain.vault import CredentialStore, CredentialVault, StaticKeyProvider
from receptionist.errors import AuthenticationError, ConfigurationError, NotFoundError, ValidationError
from receptionist.models import Subscription, SubscriptionPlan, Tenant, TenantUser, utcnow


@pytest.mark.parametrize(
    "name, expected",
    [
        ("Acme Corp", "acme-corp"),
        ("  Hello!!   World  ", "hello-world"),
        ("Bob's Barber & Beauty", "bob-s-barber-beauty"),
        ("--Already--Sluggy--", "already-sluggy"),
    ],
)
def test_slugify(name, expected):
    assert slugify(name) == expected


@pytest.mark.parametrize("name", ["", "!!!", None, "東京"])
def test_slugify_falls_back_to_random_slug(name):
    slug = slugify(name)
    assert slug.startswith("tenant-")
    assert len(slug) == len("tenant-") + 8


def test_slugify_truncates():
    slug = slugify("word " * 40)
    assert len(slug) <= 60
    assert not slug.endswith("-")


def test_duplicate_business_names_get_suffixes(create_tenant):
    first = create_tenant("Acme Corp", "a@example.com")
    second = create_tenant("Acme Corp", "b@example.com")
    third = create_tenant("ACME corp!", "c@example.com")
    assert first.tenant.slug == "acme-corp"
    assert second.tenant.slug == "acme-corp-1"
    assert third.tenant.slug == "acme-corp-2"


def test_signup_creates_tenant_owner_and_trial(db, create_tenant):
    result = create_tenant(timezone=None, industry="salon")

    assert db.query(Tenant).count() == 1
    assert db.query(TenantUser).count() == 1

    tenant = result.tenant
    assert tenant.status == "pending"
    assert tenant.timezone == "America/New_York"
    assert tenant.qa_status == "not_started"
    assert tenant.industry == "salon"
    assert tenant.trial_ends_at > utcnow() + timedelta(days=13)

    owner = result.user
    assert owner.role == "owner"
    assert owner.email == "owner@example.com"
    assert owner.display_name == "Acme Corp"
    assert owner.password_hash != "correct-pw"

    subscription = db.query(Subscription).one()
    assert subscription.status == "trialing"
    assert subscription.plan.code == "basic"
    assert subscription.tenant_id == tenant.id


def test_duplicate_email_rejected_before_any_write(db, create_tenant):
    create_tenant(email="owner@example.com")
    with pytest.raises(ValidationError) as exc_info:
        create_tenant("Other Business", "  OWNER@Example.com ")
    assert exc_info.value.code == "email_taken"
    assert db.query(Tenant).count() == 1
    assert db.query(TenantUser).count() == 1


def test_email_is_stored_lower_cased(create_tenant):
    result = create_tenant(email="Mixed.Case@Example.com")
    assert result.user.email == "mixed.case@example.com"


def test_weak_password_rejected(db, create_tenant):
    with pytest.raises(ValidationError):
        create_tenant(password="short")
    assert db.query(Tenant).count() == 0


def test_missing_base_plan_rolls_back(db, create_tenant):
    db.query(SubscriptionPlan).delete()
    db.commit()

    with pytest.raises(ConfigurationError) as exc_info:
        create_tenant()
    assert "Base subscription plan not found" in exc_info.value.message
    assert db.query(Tenant).count() == 0
    assert db.query(TenantUser).count() == 0


def test_authenticate_is_case_insensitive(db, vault, create_tenant):
    create_tenant()
    result = TenantDirectory(db, vault).authenticate("Owner@Example.com", "correct-pw")
    assert result.tenant.slug == "acme-corp"
    assert result.user.last_login_at is not None
    assert result.tokens.access_token


@pytest.mark.parametrize(
    "email, password",
    [("owner@example.com", "wrong-pw"), ("nobody@example.com", "correct-pw"), ("", "correct-pw")],
)
def test_authenticate_failures_share_one_message(db, vault, create_tenant, email, password):
    create_tenant()
    with pytest.raises(AuthenticationError) as exc_info:
        TenantDirectory(db, vault).authenticate(email, password)
    assert exc_info.value.message == "Invalid email or password"


def test_inactive_user_cannot_log_in(db, vault, create_tenant):
    create_tenant()
    user = db.query(TenantUser).one()
    user.is_active = False
    db.commit()
    with pytest.raises(AuthenticationError) as exc_info:
        TenantDirectory(db, vault).authenticate("owner@example.com", "correct-pw")
    assert exc_info.value.message == "Invalid email or password"


def test_tenant_context_without_square(db, vault, create_tenant):
    tenant_id = create_tenant().tenant.id
    context = TenantDirectory(db, vault).get_tenant_context(tenant_id)
    assert context.source == ContextSource.DASHBOARD_AUTH
    assert context.id == tenant_id
    assert context.business_name == "Acme Corp"
    assert context.square_access_token is None
    assert context.square_merchant_id is None
    assert context.square_connected is False


def test_tenant_context_with_square(db, vault, create_tenant):
    tenant_id = create_tenant().tenant.id
    CredentialStore(db, vault).store_square_credentials(
        tenant_id, "MERCHANT_1", "EAAA-access", "EQAA-refresh", default_location_id="LOC_1", scopes=["ITEMS_READ"]
    )
    db.commit()

    context = TenantDirectory(db, vault).get_tenant_context(tenant_id)
    assert context.square_access_token == "EAAA-access"
    assert context.square_refresh_token == "EQAA-refresh"
    assert context.square_merchant_id == "MERCHANT_1"
    assert context.square_location_id == "LOC_1"
    assert context.square_scopes == ["ITEMS_READ"]
    assert "EAAA-access" not in repr(context)
    assert "EAAA-access" not in str(context.public_view())


def test_tenant_context_with_undecryptable_square_secrets(db, vault, create_tenant):
    tenant_id = create_tenant().tenant.id
    foreign = CredentialVault(StaticKeyProvider("rotated-away-key"))
    CredentialStore(db, foreign).store_square_credentials(tenant_id, "MERCHANT_1", "EAAA-access")
    db.commit()

    context = TenantDirectory(db, vault).get_tenant_context(tenant_id)
    assert context.id == tenant_id
    assert context.square_access_token is None
    assert context.square_merchant_id is None


def test_unknown_tenant_context(db, vault):
    with pytest.raises(NotFoundError):
        TenantDirectory(db, vault).get_tenant_context("no-such-tenant")


def test_agent_context(db, vault, create_tenant):
    tenant_id = create_tenant().tenant.id
    directory = TenantDirectory(db, vault)
    agent, token = directory.register_agent(tenant_id, "agent_abc", display_name="Front Desk")
    CredentialStore(db, vault).store_square_credentials(tenant_id, "MERCHANT_1", "EAAA-access", agent_id=agent.id)
    db.commit()

    context = directory.get_agent_context_by_retell_id("agent_abc")
    assert context.source == ContextSource.AGENT_AUTH
    assert context.id == tenant_id
    assert context.retell_agent_id == "agent_abc"
    assert context.agent_bearer_token == token
    assert context.square_access_token == "EAAA-access"

    assert directory.get_agent_context_by_retell_id("agent_unknown") is None


def test_agent_cannot_be_claimed_by_another_tenant(db, vault, create_tenant):
    first = create_tenant("First", "first@example.com").tenant.id
    second = create_tenant("Second", "second@example.com").tenant.id
    directory = TenantDirectory(db, vault)
    directory.register_agent(first, "agent_shared")
    with pytest.raises(ValidationError):
        directory.register_agent(second, "agent_shared")


def test_user_profile(db, vault, create_tenant):
    result = create_tenant()
    profile = TenantDirectory(db, vault).get_user_profile(result.user.id)
    assert profile["email"] == "owner@example.com"
    assert profile["role"] == "owner"
    assert profile["tenant"]["slug"] == "acme-corp"
    assert "password_hash" not in profile
    assert "passwordHash" not in profile
