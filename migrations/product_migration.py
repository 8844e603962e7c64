"""
Database migration script for the products table.

Creates the extensions the search strategies call into, the products table
with its embedding columns and generated full-text document, and the GIN and
HNSW indexes. Run with:
    python -m migrations.product_migration [--drop] [--backfill-embeddings [--refresh]]
"""

import argparse
import asyncio
import logging

from sqlalchemy import text

from catalog_search.config.database import engine, Base
from catalog_search.config.settings import settings
from catalog_search.models.product_model import Product, PRODUCT_INDEX_STATEMENTS
from catalog_search.services.embedding_service import (
    LocalEmbeddingService,
    get_embedding_service,
    product_embedding_text,
)

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# vector is required; the others exist only on AlloyDB and back the
# in-database embedding, ai.if and NL-to-SQL functions
REQUIRED_EXTENSIONS = ["vector"]
OPTIONAL_EXTENSIONS = ["google_ml_integration", "alloydb_ai_nl"]


async def create_extensions():
    async with engine.begin() as conn:
        for extension in REQUIRED_EXTENSIONS:
            await conn.execute(text(f"CREATE EXTENSION IF NOT EXISTS {extension} CASCADE;"))
            logger.info(f"[Migration] ✓ {extension} extension installed/verified")

    for extension in OPTIONAL_EXTENSIONS:
        try:
            async with engine.begin() as conn:
                await conn.execute(text(f"CREATE EXTENSION IF NOT EXISTS {extension} CASCADE;"))
            logger.info(f"[Migration] ✓ {extension} extension installed/verified")
        except Exception as e:
            logger.warning(f"[Migration] {extension} not available, related search types will fail: {e}")


async def create_tables(drop: bool = False):
    """Create the products table and its search indexes"""
    async with engine.begin() as conn:
        if drop:
            logger.info("[Migration] Dropping existing products table...")
            await conn.execute(text("DROP TABLE IF EXISTS products CASCADE;"))

        await conn.run_sync(Base.metadata.create_all)
        logger.info(f"[Migration] Table {Product.__tablename__} created")

        for statement in PRODUCT_INDEX_STATEMENTS:
            await conn.execute(text(statement))
        logger.info("[Migration] Full-text and vector indexes created")


async def verify_tables():
    """Verify that the table and extensions exist"""
    async with engine.begin() as conn:
        result = await conn.execute(text(
            "SELECT table_name FROM information_schema.tables "
            "WHERE table_schema = 'public' AND table_name = 'products';"
        ))
        if result.fetchone():
            logger.info("[Migration] ✓ products table exists")
        else:
            logger.error("[Migration] ✗ products table not found")

        result = await conn.execute(text("SELECT extname FROM pg_extension;"))
        installed = {row[0] for row in result.fetchall()}
        for extension in REQUIRED_EXTENSIONS + OPTIONAL_EXTENSIONS:
            mark = "✓" if extension in installed else "✗"
            logger.info(f"[Migration] {mark} {extension} extension")

async def backfill_embeddings(provider: str = None, only_missing: bool = True):
    """
    Write the stored product vectors with the models the query side uses.

    The local provider embeds in-process and must be run before serving with
    EMBEDDING_PROVIDER=local. The database provider calls the engine's
    embedding functions per row.
    """
    provider = provider or settings.EMBEDDING_PROVIDER
    where = "WHERE embedding IS NULL OR product_image_embedding IS NULL" if only_missing else ""
    async with engine.connect() as conn:
        result = await conn.execute(text(
            "SELECT id, name, brand, category, department, product_description, product_image_uri "
            f"FROM products {where} ORDER BY id"
        ))
        products = [dict(row) for row in result.mappings().all()]

    logger.info(f"[Migration] Backfilling {provider} embeddings for {len(products)} products...")
    service = get_embedding_service(provider)
    for position, product in enumerate(products, start=1):
        if isinstance(service, LocalEmbeddingService):
            values = await service.embed_product(product)
            statement = text(
                "UPDATE products SET embedding = CAST(:embedding AS vector), "
                "product_image_embedding = CAST(:product_image_embedding AS vector) WHERE id = :id"
            )
        else:
            values = {
                "text_model": service.text_model,
                "content": product_embedding_text(product),
                "image_model": service.image_model,
                "mimetype": service.image_mime_type,
            }
            statement = text(
                "UPDATE products SET "
                "embedding = CAST(embedding(:text_model, :content) AS vector), "
                "product_image_embedding = CASE WHEN product_image_uri IS NULL THEN NULL ELSE CAST("
                "ai.image_embedding(model_id => :image_model, image => product_image_uri, mimetype => :mimetype)"
                " AS vector) END "
                "WHERE id = :id"
            )

        async with engine.begin() as conn:
            await conn.execute(statement, {**values, "id": product["id"]})
        if position % 100 == 0:
            logger.info(f"[Migration] Embedded {position}/{len(products)} products")

    logger.info("[Migration] ✓ Embedding backfill complete")


async def main(drop: bool = False, backfill: bool = False, refresh: bool = False):
    logger.info("[Migration] Starting products migration...")
    try:
        await create_extensions()
        await create_tables(drop=drop)
        await verify_tables()
        if backfill:
            await backfill_embeddings(only_missing=not refresh)
        logger.info("[Migration] Migration completed successfully!")
    except Exception as e:
        logger.error(f"[Migration] Error during migration: {str(e)}")
        raise
    finally:
        await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create the products table and search indexes")
    parser.add_argument("--drop", action="store_true", help="Drop and recreate the products table")
    parser.add_argument(
        "--backfill-embeddings",
        action="store_true",
        help="Embed products with the configured EMBEDDING_PROVIDER (required before serving with local)"
    )
    parser.add_argument("--refresh", action="store_true", help="Re-embed every product, not only missing vectors")
    args = parser.parse_args()
    asyncio.run(main(drop=args.drop, backfill=args.backfill_embeddings, refresh=args.refresh))
