# storefront/api/routers/checkout.py
from fastapi import APIRouter, Depends, HTTPException, Query

from storefront.api.deps import get_context
from storefront.context import StorefrontContext
from storefront.domain.errors import FetchError, SchemaError
from storefront.domain.schemas import CartOut, CheckoutOut

router = APIRouter(prefix="/checkout", tags=["checkout"])


@router.post("/validate", response_model=CheckoutOut)
async def validate_cart(
    reconcile: bool = Query(False),
    ctx: StorefrontContext = Depends(get_context),
):
    """
    Checks the cart against live catalog data before the hand-off.
    With reconcile=true the fixes are applied to the cart.
    """
    try:
        result, view = await ctx.validator.check_cart(ctx.store, ctx.catalog)
    except (FetchError, SchemaError) as e:
        raise HTTPException(status_code=503, detail=f"Catalog unavailable: {e}")

    if reconcile and result.has_issues:
        ctx.validator.reconcile(ctx.store, result)

    return CheckoutOut(
        validation=result,
        cart=CartOut.from_snapshot(ctx.store.snapshot()),
        degraded=view.degraded,
    )
