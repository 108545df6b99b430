import logging
import os

from fastapi import Depends, FastAPI
from fastapi.openapi.utils import get_openapi
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.cache import cache
from core.config import settings
from core.logging_config import configure_logging
from core.handlers import register_exception_handlers
from core.db import Base, engine, get_db
from core.celery import celery_app
import models  # noqa: F401  registers every table on Base.metadata
from routes.auth import router as auth_router
from routes.addresses import router as addresses_router
from routes.products import router as catalog_router
from routes.admin_products import router as admin_products_router
from routes.cart import router as cart_router
from routes.checkout import router as checkout_router
from routes.orders import router as orders_router
from routes.admin_orders import router as admin_orders_router
from routes.payments import router as payments_router, webhook_router

configure_logging(settings)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)


def custom_openapi():
    if app.openapi_schema:
        return app.openapi_schema
    openapi_schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        routes=app.routes,
    )
    openapi_schema.setdefault("components", {})["securitySchemes"] = {
        "BearerAuth": {
            "type": "http",
            "scheme": "bearer",
            "bearerFormat": "JWT",
        }
    }
    openapi_schema["security"] = [{"BearerAuth": []}]
    app.openapi_schema = openapi_schema
    return app.openapi_schema

app.openapi = custom_openapi

register_exception_handlers(app)

# Ensure tables exist (for dev/test; in prod use Alembic)
Base.metadata.create_all(bind=engine)

app.include_router(auth_router)
app.include_router(addresses_router)
app.include_router(catalog_router)
app.include_router(admin_products_router)
app.include_router(cart_router)
app.include_router(checkout_router)
app.include_router(orders_router)
app.include_router(admin_orders_router)
app.include_router(payments_router)
app.include_router(webhook_router)


@app.get("/health")
def health_check(db: Session = Depends(get_db)):
    """Liveness plus a round trip to the database."""
    try:
        db.execute(text("SELECT 1"))
        database = "ok"
    except SQLAlchemyError as e:
        logger.error("Health check could not reach the database: %s", e)
        database = "unavailable"
    return {
        "status": "healthy" if database == "ok" else "degraded",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "database": database,
        "cache": "enabled" if cache.enabled else "disabled",
    }


@app.get("/celery-health")
async def celery_health_check():
    """Check Celery worker status"""
    try:
        inspect = celery_app.control.inspect(timeout=1.0)
        stats = inspect.stats()
        if stats:
            return {"status": "healthy", "workers": len(stats)}
        else:
            return {"status": "no_workers", "message": "No Celery workers running"}
    except Exception as e:
        return {"status": "unhealthy", "error": str(e)}


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8000))

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=port,
        reload=settings.DEBUG,
    )
