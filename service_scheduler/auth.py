"""
Tenant and actor identity.

Authentication happens upstream; the gateway forwards the verified tenant
and actor as headers and every scheduling operation is scoped by them.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Header, HTTPException

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestContext:
    tenant_id: str
    actor_id: Optional[str] = None


async def get_request_context(
    x_tenant_id: Optional[str] = Header(None),
    x_actor_id: Optional[str] = Header(None),
) -> RequestContext:
    """Resolve the caller's tenant and actor from gateway headers"""
    if not x_tenant_id or not x_tenant_id.strip():
        logger.warning("⚠️ Request rejected: missing X-Tenant-ID header")
        raise HTTPException(status_code=401, detail="Missing tenant identity")
    return RequestContext(tenant_id=x_tenant_id.strip(), actor_id=(x_actor_id or None))
