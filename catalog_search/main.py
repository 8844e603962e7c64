from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
import traceback
import logging

from catalog_search.config.settings import settings
from catalog_search.routes import router as api_routes
from catalog_search.config.database import engine, Base

# Import all models to ensure they're registered with Base
from catalog_search.models.product_model import Product, PRODUCT_INDEX_STATEMENTS

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

# Set SQLAlchemy engine logging to WARNING to reduce query logs
logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    description="Catalog search API: lexical, full-text, semantic, image and hybrid retrieval with facets"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_hosts_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup_event():
    """Initialize database on startup"""
    try:
        async with engine.begin() as conn:
            logger.info("[Startup] Creating pgvector extension...")
            await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector;"))

            await conn.run_sync(Base.metadata.create_all)
            logger.info(f"[Startup] Tables ready: {list(Base.metadata.tables.keys())}")

            try:
                for statement in PRODUCT_INDEX_STATEMENTS:
                    await conn.execute(text(statement))
                logger.info("[Startup] Full-text and vector indexes ready")
            except Exception as e:
                logger.warning(f"[Startup] Could not create indexes: {e}")
                logger.warning(traceback.format_exc())
    except Exception as e:
        logger.error(f"[Startup] Error preparing database: {e}")
        logger.error(traceback.format_exc())
        # Don't raise here to allow app to start even if DB fails


@app.on_event("shutdown")
async def shutdown_event():
    """Clean up on shutdown"""
    await engine.dispose()
    logger.info("[Shutdown] Database engine disposed")


# Root healthcheck endpoint
@app.get("/")
async def root():
    return {
        "status": "OK",
        "message": f"{settings.APP_NAME} is running",
        "version": settings.VERSION,
        "environment": settings.ENVIRONMENT,
        "database_url": settings.DATABASE_URL.split("@")[1] if "@" in settings.DATABASE_URL else "***",
        "tables": list(Base.metadata.tables.keys()),
        "embedding_provider": settings.EMBEDDING_PROVIDER
    }


# Routes setup
app.include_router(api_routes, prefix="/api/v1")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("catalog_search.main:app", host="0.0.0.0", port=settings.BACKEND_PORT)
