# storefront/api/routers/catalog.py
from fastapi import APIRouter, Depends, HTTPException

from storefront.api.deps import get_catalog
from storefront.domain.errors import FetchError, SchemaError
from storefront.domain.schemas import BrandsOut, CatalogOut, CatalogProduct, CategoriesOut
from storefront.services.catalog_service import CatalogService

router = APIRouter(prefix="/catalog", tags=["catalog"])


@router.get("/products", response_model=CatalogOut)
async def list_products(catalog: CatalogService = Depends(get_catalog)):
    try:
        view = await catalog.list_products()
    except (FetchError, SchemaError) as e:
        raise HTTPException(status_code=503, detail=f"Catalog unavailable: {e}")
    return CatalogOut(
        items=view.products,
        stale=view.is_stale,
        degraded=view.degraded,
        error=str(view.error) if view.error else None,
    )


@router.get("/products/{product_id}", response_model=CatalogProduct)
async def get_product(product_id: str, catalog: CatalogService = Depends(get_catalog)):
    try:
        product = await catalog.get_product(product_id)
    except (FetchError, SchemaError) as e:
        raise HTTPException(status_code=503, detail=f"Catalog unavailable: {e}")
    if product is None:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


@router.post("/refresh", response_model=CatalogOut)
async def refresh_products(catalog: CatalogService = Depends(get_catalog)):
    try:
        view = await catalog.refresh_products()
    except (FetchError, SchemaError) as e:
        raise HTTPException(status_code=503, detail=f"Catalog unavailable: {e}")
    return CatalogOut(
        items=view.products,
        stale=view.is_stale,
        degraded=view.degraded,
        error=str(view.error) if view.error else None,
    )


@router.get("/brands", response_model=BrandsOut)
async def list_brands(catalog: CatalogService = Depends(get_catalog)):
    try:
        view = await catalog.list_brands()
    except (FetchError, SchemaError) as e:
        raise HTTPException(status_code=503, detail=f"Catalog unavailable: {e}")
    return BrandsOut(
        items=view.brands,
        stale=view.is_stale,
        degraded=view.degraded,
        error=str(view.error) if view.error else None,
    )


@router.get("/categories", response_model=CategoriesOut)
async def list_categories(catalog: CatalogService = Depends(get_catalog)):
    try:
        view = await catalog.list_categories()
    except (FetchError, SchemaError) as e:
        raise HTTPException(status_code=503, detail=f"Catalog unavailable: {e}")
    return CategoriesOut(
        stats=view.stats,
        stale=view.is_stale,
        degraded=view.degraded,
        error=str(view.error) if view.error else None,
    )
