"""Tenant directory - signup, login and tenant/agent context lookups"""

import logging
import re
import secrets
from datetime import timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ... import config
from ...database import transaction
from ...errors import AuthenticationError, ConfigurationError, NotFoundError, ValidationError
from ...models import Tenant, TenantUser, VoiceAgent, utcnow
from ...security_utils import (
    MIN_PASSWORD_LENGTH,
    dummy_verify,
    generate_secure_token,
    hash_password,
    log_security_event,
    mask_email,
    verify_password,
)
from ..context.models import ContextSource, TenantContext
from ..tokens import AuthResult, ClientMeta, TokenIssuer
from ..vault import CredentialStore, CredentialVault
from ..vault.repository import CredentialRepository
from .repository import TenantRepository

logger = logging.getLogger(__name__)

MAX_SLUG_LENGTH = 60
INVALID_CREDENTIALS_MESSAGE = "Invalid email or password"

_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_REPEATED_DASH = re.compile(r"-{2,}")


def slugify(value: Optional[str]) -> str:
    """'Acme Corp!' -> 'acme-corp'. Empty results get a random 'tenant-xxxxxxxx' slug."""
    slug = _NON_ALNUM.sub("-", (value or "").lower()).strip("-")
    slug = _REPEATED_DASH.sub("-", slug)[:MAX_SLUG_LENGTH].strip("-")
    return slug or f"tenant-{secrets.token_hex(4)}"


def sanitize_tenant(tenant: Optional[Tenant]) -> Optional[dict]:
    if tenant is None:
        return None
    return {
        "id": tenant.id,
        "slug": tenant.slug,
        "businessName": tenant.business_name,
        "status": tenant.status,
        "timezone": tenant.timezone,
        "qaStatus": tenant.qa_status,
        "trialEndsAt": tenant.trial_ends_at.isoformat() if tenant.trial_ends_at else None,
    }


def sanitize_user(user: Optional[TenantUser]) -> Optional[dict]:
    if user is None:
        return None
    return {
        "id": user.id,
        "email": user.email,
        "role": user.role,
        "displayName": user.display_name,
        "phoneNumber": user.phone_number,
        "isActive": bool(user.is_active),
        "lastLoginAt": user.last_login_at.isoformat() if user.last_login_at else None,
    }


class TenantDirectory:
    """Service layer for tenants, their users and their voice agents"""

    def __init__(
        self,
        db: Session,
        vault: Optional[CredentialVault] = None,
        issuer: Optional[TokenIssuer] = None,
    ):
        self.db = db
        self.vault = vault
        self.issuer = issuer or TokenIssuer(db)
        self.repo = TenantRepository()
        self.credentials = CredentialRepository()

    # ============================================================================
    # SIGNUP
    # ============================================================================

    def generate_unique_slug(self, business_name: str) -> str:
        base = slugify(business_name)
        candidate = base
        suffix = 1
        while self.repo.slug_exists(self.db, candidate):
            tail = f"-{suffix}"
            candidate = f"{base[: MAX_SLUG_LENGTH - len(tail)]}{tail}"
            suffix += 1
        return candidate

    def create_tenant_with_owner(
        self,
        business_name: str,
        email: str,
        password_hash: str,
        timezone: Optional[str] = None,
        industry: Optional[str] = None,
        display_name: Optional[str] = None,
    ) -> tuple[Tenant, TenantUser]:
        """Create tenant, owner and trial subscription in one transaction"""
        normalized_email = email.strip().lower()
        trial_ends_at = utcnow() + timedelta(days=config.TRIAL_DAYS)

        try:
            with transaction(self.db):
                plan = self.repo.get_plan_by_code(self.db, config.BASE_PLAN_CODE)
                if plan is None:
                    raise ConfigurationError("Base subscription plan not found")

                tenant = self.repo.add_tenant(
                    self.db,
                    slug=self.generate_unique_slug(business_name),
                    business_name=business_name.strip(),
                    industry=industry,
                    status="pending",
                    timezone=timezone or config.DEFAULT_TIMEZONE,
                    qa_status="not_started",
                    trial_ends_at=trial_ends_at,
                )
                owner = self.repo.add_user(
                    self.db,
                    tenant_id=tenant.id,
                    email=normalized_email,
                    password_hash=password_hash,
                    role="owner",
                    display_name=display_name or business_name.strip(),
                    is_active=True,
                )
                self.repo.add_subscription(
                    self.db,
                    tenant_id=tenant.id,
                    plan_id=plan.id,
                    status="trialing",
                    trial_ends_at=trial_ends_at,
                )
        except IntegrityError as e:
            # Lost a race with a concurrent signup
            if self.repo.get_user_by_email(self.db, normalized_email):
                raise ValidationError("An account with this email already exists", code="email_taken") from e
            raise ValidationError("Could not create tenant, please retry", code="signup_conflict") from e

        logger.info(f"✅ Created tenant {tenant.slug} ({tenant.id}) with owner {mask_email(normalized_email)}")
        return tenant, owner

    def register_tenant(
        self,
        business_name: str,
        email: str,
        password: str,
        timezone: Optional[str] = None,
        industry: Optional[str] = None,
        name: Optional[str] = None,
        meta: Optional[ClientMeta] = None,
    ) -> AuthResult:
        if not business_name or not business_name.strip() or not email or not password:
            raise ValidationError("businessName, email, and password are required", code="missing_required_fields")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters long", code="weak_password"
            )

        if self.repo.get_user_by_email(self.db, email):
            logger.warning(f"⚠️ Signup rejected, email already registered: {mask_email(email)}")
            raise ValidationError("An account with this email already exists", code="email_taken")

        tenant, owner = self.create_tenant_with_owner(
            business_name=business_name,
            email=email,
            password_hash=hash_password(password),
            timezone=timezone,
            industry=industry,
            display_name=name,
        )
        tokens = self.issuer.issue_session_tokens(owner, tenant, meta)
        log_security_event("signup", user_id=owner.id, ip_address=meta.ip_address if meta else None)
        return AuthResult(tenant=tenant, user=owner, tokens=tokens)

    # ============================================================================
    # LOGIN
    # ============================================================================

    def authenticate(self, email: str, password: str, meta: Optional[ClientMeta] = None) -> AuthResult:
        """Same error for unknown email, wrong password and inactive account"""
        ip_address = meta.ip_address if meta else None
        user = self.repo.get_user_by_email(self.db, email) if email else None

        if user is None:
            dummy_verify(password)
            reason = "unknown_email"
        elif not verify_password(password or "", user.password_hash):
            reason = "wrong_password"
        elif not user.is_active:
            reason = "inactive_user"
        else:
            reason = None

        if reason:
            log_security_event(
                "login_failed",
                user_id=user.id if user else None,
                ip_address=ip_address,
                details={"reason": reason, "email": mask_email(email or "")},
            )
            raise AuthenticationError(INVALID_CREDENTIALS_MESSAGE)

        tenant = self.repo.get_tenant(self.db, user.tenant_id)
        if tenant is None:
            logger.error(f"❌ User {user.id} references missing tenant {user.tenant_id}")
            raise AuthenticationError(INVALID_CREDENTIALS_MESSAGE)

        user.last_login_at = utcnow()
        tokens = self.issuer.issue_session_tokens(user, tenant, meta)
        log_security_event("login", user_id=user.id, ip_address=ip_address)
        return AuthResult(tenant=tenant, user=user, tokens=tokens)

    # ============================================================================
    # CONTEXT LOOKUPS
    # ============================================================================

    def _decrypt(self, ciphertext: Optional[str]) -> Optional[str]:
        if not ciphertext or self.vault is None:
            return None
        return self.vault.decrypt_or_none(ciphertext)

    def _apply_square_credentials(self, context: TenantContext, tenant: Tenant, agent_id: Optional[str] = None):
        credential = self.credentials.get_latest_square_credential(self.db, tenant.id, agent_id)
        if credential is None:
            return context

        access_token = self._decrypt(credential.access_token)
        if access_token is None:
            logger.warning(f"⚠️ Square credentials for tenant {tenant.id} could not be decrypted")
            return context

        context.square_access_token = access_token
        context.square_refresh_token = self._decrypt(credential.refresh_token)
        context.square_merchant_id = credential.merchant_id
        context.square_location_id = credential.default_location_id or tenant.default_location_id
        context.square_environment = credential.environment
        context.square_token_expires_at = credential.token_expires_at
        context.square_scopes = list(credential.scopes or [])
        context.supports_seller_level_writes = bool(credential.supports_seller_level_writes)
        return context

    @staticmethod
    def _base_context(tenant: Tenant, source: ContextSource) -> TenantContext:
        return TenantContext(
            source=source,
            id=tenant.id,
            slug=tenant.slug,
            business_name=tenant.business_name,
            timezone=tenant.timezone,
            status=tenant.status,
            qa_status=tenant.qa_status,
            trial_ends_at=tenant.trial_ends_at,
            default_location_id=tenant.default_location_id,
        )

    def get_tenant_context(self, tenant_id: str) -> TenantContext:
        tenant = self.repo.get_tenant(self.db, tenant_id) if tenant_id else None
        if tenant is None:
            raise NotFoundError("Tenant not found")
        context = self._base_context(tenant, ContextSource.DASHBOARD_AUTH)
        return self._apply_square_credentials(context, tenant)

    def get_agent_context_by_retell_id(self, retell_agent_id: str) -> Optional[TenantContext]:
        agent = self.repo.get_agent_by_retell_id(self.db, retell_agent_id) if retell_agent_id else None
        if agent is None:
            return None
        tenant = self.repo.get_tenant(self.db, agent.tenant_id)
        if tenant is None:
            logger.error(f"❌ Agent {retell_agent_id} references missing tenant {agent.tenant_id}")
            return None

        context = self._base_context(tenant, ContextSource.AGENT_AUTH)
        context.agent_id = agent.id
        context.retell_agent_id = agent.retell_agent_id
        context.agent_bearer_token = self._decrypt(agent.api_bearer_token)
        return self._apply_square_credentials(context, tenant, agent.id)

    def get_user_profile(self, user_id: str) -> dict:
        user = self.repo.get_user(self.db, user_id)
        if user is None:
            raise NotFoundError("User not found")
        tenant = self.repo.get_tenant(self.db, user.tenant_id)
        profile = sanitize_user(user)
        profile["tenant"] = sanitize_tenant(tenant)
        return profile

    # ============================================================================
    # VOICE AGENTS
    # ============================================================================

    def register_agent(
        self,
        tenant_id: str,
        retell_agent_id: str,
        display_name: Optional[str] = None,
        bearer_token: Optional[str] = None,
    ) -> tuple[VoiceAgent, str]:
        """Create or update an agent for the tenant and store its bearer token encrypted"""
        if not retell_agent_id or not retell_agent_id.strip():
            raise ValidationError("retellAgentId is required")
        if self.vault is None:
            raise ConfigurationError("Credential vault is not available")

        token = bearer_token or generate_secure_token(32)
        retell_agent_id = retell_agent_id.strip()

        with transaction(self.db):
            agent = self.repo.get_agent_by_retell_id(self.db, retell_agent_id)
            if agent is not None and agent.tenant_id != tenant_id:
                raise ValidationError("Agent is registered to another tenant", code="agent_taken")
            if agent is None:
                agent = VoiceAgent(tenant_id=tenant_id, retell_agent_id=retell_agent_id)
                self.db.add(agent)
                self.db.flush()
            if display_name:
                agent.display_name = display_name
            agent.status = "active"
            CredentialStore(self.db, self.vault).store_agent_bearer_token(agent.id, token)

        logger.info(f"✅ Registered agent {retell_agent_id} for tenant {tenant_id}")
        return agent, token
