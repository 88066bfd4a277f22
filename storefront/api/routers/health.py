# storefront/api/routers/health.py
from fastapi import APIRouter, Depends

from storefront.api.deps import get_context
from storefront.context import StorefrontContext

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(ctx: StorefrontContext = Depends(get_context)):
    return {
        "status": "ok",
        "context": ctx.instance_id,
        "sync": {
            "sent": ctx.sync.sent,
            "applied": ctx.sync.applied,
            "discarded": ctx.sync.discarded,
        },
        "cache": ctx.cache.stats(),
    }
