from sqlalchemy import Column, Integer, String, Text, DECIMAL, Computed
from sqlalchemy.dialects.postgresql import TSVECTOR
from pgvector.sqlalchemy import Vector

from catalog_search.config.database import Base
from catalog_search.config.settings import settings


class Product(Base):
    """Catalog item with text/image embeddings and a generated full-text document"""

    __tablename__ = "products"

    # Primary key
    id = Column(Integer, primary_key=True, index=True)

    # Display fields
    name = Column(String(500), nullable=False)
    brand = Column(String(200), index=True)
    category = Column(String(200), index=True)
    department = Column(String(100))
    product_description = Column(Text)
    product_image_uri = Column(String(1000))
    sku = Column(String(100), index=True)

    # Pricing
    cost = Column(DECIMAL(10, 2))
    retail_price = Column(DECIMAL(10, 2), index=True)

    # Vector embeddings
    embedding = Column(Vector(settings.TEXT_EMBEDDING_DIM), nullable=True)
    product_image_embedding = Column(Vector(settings.IMAGE_EMBEDDING_DIM), nullable=True)

    # Full-text document maintained by the database
    fts_document = Column(
        TSVECTOR,
        Computed(
            f"to_tsvector('{settings.FTS_LANGUAGE}', "
            "coalesce(name, '') || ' ' || coalesce(brand, '') || ' ' || "
            "coalesce(category, '') || ' ' || coalesce(department, '') || ' ' || "
            "coalesce(product_description, ''))",
            persisted=True
        )
    )

    def __repr__(self):
        return f"<Product(id={self.id}, sku='{self.sku}', name='{self.name}')>"


# Indexes the retrieval strategies rely on
PRODUCT_INDEX_STATEMENTS = [
    "CREATE INDEX IF NOT EXISTS idx_products_fts_document ON products USING gin (fts_document);",
    """
    CREATE INDEX IF NOT EXISTS idx_products_embedding
        ON products USING hnsw (embedding vector_cosine_ops);
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_products_image_embedding
        ON products USING hnsw (product_image_embedding vector_cosine_ops);
    """,
]
