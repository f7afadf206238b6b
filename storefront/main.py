# storefront/main.py
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import uvicorn

from storefront.api.routers import carts, health, orders, payments
from storefront.data.database import init_db
from storefront.exceptions import StorefrontError
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Initializing database")
    init_db()
    logger.info("Database tables ready")
    yield


async def handle_storefront_error(request: Request, exc: StorefrontError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_app(init_database: bool = True) -> FastAPI:
    app = FastAPI(
        title="Storefront Cart & Checkout",
        version="1.0.0",
        lifespan=lifespan if init_database else None,
    )

    app.add_exception_handler(StorefrontError, handle_storefront_error)

    app.include_router(health.router)
    app.include_router(carts.router)
    app.include_router(orders.router)
    app.include_router(payments.router)

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
