from .models import ContextSource, TenantContext, minimal_context

__all__ = ["ContextSource", "TenantContext", "minimal_context"]
