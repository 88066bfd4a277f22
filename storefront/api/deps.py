# storefront/api/deps.py
from fastapi import Request

from storefront.context import StorefrontContext
from storefront.services.cart_store import CartStore
from storefront.services.catalog_service import CatalogService


def get_context(request: Request) -> StorefrontContext:
    return request.app.state.context


def get_store(request: Request) -> CartStore:
    return get_context(request).store


def get_catalog(request: Request) -> CatalogService:
    return get_context(request).catalog
