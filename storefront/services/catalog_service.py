# storefront/services/catalog_service.py
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List

from pydantic import ValidationError as PydanticValidationError

from storefront.domain.errors import FetchError, SchemaError
from storefront.domain.schemas import BrandCount, CatalogProduct, CategoryCount, CategoryStats
from storefront.services.catalog_cache import CacheResult, CatalogCache
from storefront.services.catalog_client import CatalogClient
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

PRODUCTS_NAMESPACE = "products"
BRANDS_NAMESPACE = "brands"
CATEGORIES_NAMESPACE = "categories"
ALL = "all"


@dataclass
class CatalogView:
    """Catalog as the UI sees it, with the freshness of the data it came from."""

    products: List[CatalogProduct] = field(default_factory=list)
    is_stale: bool = False
    degraded: bool = False
    error: Exception | None = None

    def by_id(self) -> Dict[str, CatalogProduct]:
        return {p.id: p for p in self.products}

    def get(self, product_id: str) -> CatalogProduct | None:
        return self.by_id().get(product_id)


@dataclass
class BrandsView:
    brands: List[BrandCount] = field(default_factory=list)
    is_stale: bool = False
    degraded: bool = False
    error: Exception | None = None


@dataclass
class CategoriesView:
    stats: CategoryStats = field(default_factory=CategoryStats)
    is_stale: bool = False
    degraded: bool = False
    error: Exception | None = None


def count_brands(products: List[CatalogProduct]) -> List[BrandCount]:
    counts = Counter(p.brand.strip() for p in products if p.brand and p.brand.strip())
    return [BrandCount(name=name, product_count=n) for name, n in sorted(counts.items())]


def category_stats(products: List[CatalogProduct]) -> CategoryStats:
    counts = Counter(p.category.strip() for p in products if p.category and p.category.strip())
    total = sum(counts.values())
    categories = [
        CategoryCount(
            name=name,
            product_count=n,
            # half-up, like the storefront UI shows it
            percentage=int(n * 100 / total + 0.5) if total else 0,
        )
        for name, n in sorted(counts.items())
    ]
    return CategoryStats(
        total_categories=len(categories),
        total_products=total,
        avg_products_per_category=round(total / len(categories), 2) if categories else 0.0,
        categories=categories,
    )


class CatalogService:
    """
    Single read path for catalog data: cache first, remote on miss or stale.
    Brands and categories are derived from the product list and cached
    under their own namespaces.
    """

    def __init__(self, client: CatalogClient, cache: CatalogCache, ttl: int | None = None):
        self.client = client
        self.cache = cache
        self.ttl = ttl

    async def list_products(self, revalidate: bool = True) -> CatalogView:
        result = await self.cache.fetch_through(
            PRODUCTS_NAMESPACE,
            ALL,
            self._load,
            ttl=self.ttl,
            revalidate=revalidate,
        )
        return self._view(result)

    async def get_product(self, product_id: str) -> CatalogProduct | None:
        view = await self.list_products()
        return view.get(product_id)

    async def fresh_view(self) -> CatalogView:
        """Catalog for checkout: waits for the network when the cache is stale."""
        return await self.list_products(revalidate=False)

    async def refresh_products(self) -> CatalogView:
        """Drop the cached catalog and everything derived from it, then reload."""
        for namespace in (PRODUCTS_NAMESPACE, BRANDS_NAMESPACE, CATEGORIES_NAMESPACE):
            self.cache.remove(namespace, ALL)
        logger.info("Catalog cache dropped, reloading")
        return await self.list_products(revalidate=False)

    async def list_brands(self) -> BrandsView:
        result = await self._derived(BRANDS_NAMESPACE, count_brands)
        brands = [BrandCount.model_validate(b) for b in result.data or []]
        return BrandsView(
            brands=brands,
            is_stale=result.is_stale,
            degraded=result.degraded,
            error=result.error,
        )

    async def list_categories(self) -> CategoriesView:
        result = await self._derived(CATEGORIES_NAMESPACE, category_stats)
        stats = CategoryStats.model_validate(result.data) if result.data else CategoryStats()
        return CategoriesView(
            stats=stats,
            is_stale=result.is_stale,
            degraded=result.degraded,
            error=result.error,
        )

    async def _derived(self, namespace: str, build: Callable[[List[CatalogProduct]], Any]) -> CacheResult:
        async def load() -> Any:
            view = await self.list_products(revalidate=False)
            if view.degraded:
                # never cache values derived from stale products as fresh
                raise view.error
            return self._dump(build(view.products))

        try:
            return await self.cache.fetch_through(namespace, ALL, load, ttl=self.ttl)
        except (FetchError, SchemaError) as e:
            # nothing cached for this namespace: fall back to stale products
            cached = self.cache.get(PRODUCTS_NAMESPACE, ALL)
            if cached is None:
                raise
            logger.warning(f"Deriving {namespace} from cached products: {e}")
            products = self._view(cached).products
            return CacheResult(
                data=self._dump(build(products)),
                is_stale=True,
                degraded=True,
                error=e,
                source=cached.source,
                timestamp=cached.timestamp,
            )

    @staticmethod
    def _dump(value: Any) -> Any:
        if isinstance(value, list):
            return [v.model_dump(mode="json", by_alias=True) for v in value]
        return value.model_dump(mode="json", by_alias=True)

    async def _load(self) -> List[Dict[str, Any]]:
        products = await self.client.fetch_catalog()
        return [p.model_dump(mode="json", by_alias=True) for p in products]

    def _view(self, result: CacheResult) -> CatalogView:
        products = []
        for raw in result.data or []:
            try:
                products.append(CatalogProduct.model_validate(raw))
            except PydanticValidationError as e:
                logger.warning(f"Skipping unreadable cached product: {e}")
        return CatalogView(
            products=products,
            is_stale=result.is_stale,
            degraded=result.degraded,
            error=result.error,
        )
