from .service import TenantDirectory, sanitize_tenant, sanitize_user, slugify

__all__ = ["TenantDirectory", "sanitize_tenant", "sanitize_user", "slugify"]
