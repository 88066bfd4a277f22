# storefront/api/routers/cart.py
from fastapi import APIRouter, Depends, HTTPException

from storefront.api.deps import get_store
from storefront.domain.errors import StockError, ValidationError
from storefront.domain.schemas import CartOut, ItemIn, QuantityIn
from storefront.services.cart_store import CartStore

router = APIRouter(prefix="/cart", tags=["cart"])


@router.get("", response_model=CartOut)
async def get_cart(store: CartStore = Depends(get_store)):
    return CartOut.from_snapshot(store.snapshot())


@router.post("/items", response_model=CartOut)
async def add_item(payload: ItemIn, store: CartStore = Depends(get_store)):
    try:
        snapshot = store.add_item(payload.product, payload.quantity)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StockError as e:
        # cart already holds the clamped quantity
        raise HTTPException(
            status_code=409,
            detail={
                "message": str(e),
                "product_id": e.product_id,
                "requested": e.requested,
                "available": e.available,
            },
        )
    return CartOut.from_snapshot(snapshot)


@router.patch("/items/{product_id}", response_model=CartOut)
async def update_item(
    product_id: str,
    payload: QuantityIn,
    store: CartStore = Depends(get_store),
):
    return CartOut.from_snapshot(store.update_quantity(product_id, payload.quantity))


@router.delete("/items/{product_id}", response_model=CartOut)
async def remove_item(product_id: str, store: CartStore = Depends(get_store)):
    return CartOut.from_snapshot(store.remove_item(product_id))


@router.delete("", response_model=CartOut)
async def clear_cart(store: CartStore = Depends(get_store)):
    return CartOut.from_snapshot(store.clear_cart())
