"""Context router - exposes the resolved tenant context to callers"""

from fastapi import APIRouter, Depends

from ...deps import get_tenant_context
from .models import TenantContext

router = APIRouter(prefix="/api/context", tags=["Tenant Context"])


@router.get("")
async def current_context(context: TenantContext = Depends(get_tenant_context)):
    """Public view of whatever context the resolver attached. Never includes secrets."""
    return {"success": True, "context": context.public_view()}
