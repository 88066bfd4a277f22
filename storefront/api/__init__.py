# storefront/api/__init__.py
from contextlib import asynccontextmanager

from fastapi import FastAPI

from storefront.api.routers import cart, catalog, checkout, health
from storefront.context import StorefrontContext, create_context


def create_app(context: StorefrontContext | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        ctx = context or create_context()
        app.state.context = ctx
        await ctx.start()
        try:
            yield
        finally:
            await ctx.close()

    app = FastAPI(title="Storefront", version="1.0.0", lifespan=lifespan)
    app.include_router(health.router)
    app.include_router(cart.router)
    app.include_router(catalog.router)
    app.include_router(checkout.router)
    return app
