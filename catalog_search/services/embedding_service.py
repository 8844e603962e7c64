"""
Embedding capability for the vector strategies.

Both providers return a SQL expression evaluating to the query vector, so the
candidate builder can place it in a CTE without caring where it was computed.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from catalog_search.config.settings import settings
from catalog_search.services.query_builder import QueryParams
from catalog_search.utils import image_processing

logger = logging.getLogger(__name__)


class EmbeddingService:
    """Produces SQL vector expressions for query text and images"""

    async def text_vector_sql(self, text: str, params: QueryParams) -> str:
        raise NotImplementedError

    async def image_vector_sql(self, image_uri: str, params: QueryParams) -> str:
        raise NotImplementedError


class DatabaseEmbeddingService(EmbeddingService):
    """Calls the engine's embedding functions inside the query itself"""

    def __init__(
        self,
        text_model: str = settings.TEXT_EMBEDDING_MODEL,
        image_model: str = settings.IMAGE_EMBEDDING_MODEL,
        image_mime_type: str = settings.IMAGE_MIME_TYPE
    ):
        self.text_model = text_model
        self.image_model = image_model
        self.image_mime_type = image_mime_type

    async def text_vector_sql(self, text: str, params: QueryParams) -> str:
        model = params.add(self.text_model)
        content = params.add(text)
        return f"embedding({model}, {content})::vector"

    async def image_vector_sql(self, image_uri: str, params: QueryParams) -> str:
        model = params.add(self.image_model)
        image = params.add(image_uri)
        mimetype = params.add(self.image_mime_type)
        return f"ai.image_embedding(model_id => {model}, image => {image}, mimetype => {mimetype})::vector"


class LocalEmbeddingService(EmbeddingService):
    """
    Computes vectors in-process and binds them as text parameters.

    Query vectors only compare meaningfully against product vectors written by
    the same models, so this provider requires the products to be backfilled
    with embed_product (see migrations/product_migration.py --backfill-embeddings).
    """

    def __init__(
        self,
        text_dimension: int = settings.TEXT_EMBEDDING_DIM,
        image_dimension: int = settings.IMAGE_EMBEDDING_DIM
    ):
        self.text_dimension = text_dimension
        self.image_dimension = image_dimension

    async def text_vector_sql(self, text: str, params: QueryParams) -> str:
        return f"{params.add(vector_to_text(await self.embed_text(text)))}::text::vector"

    async def image_vector_sql(self, image_uri: str, params: QueryParams) -> str:
        return f"{params.add(vector_to_text(await self.embed_image(image_uri)))}::text::vector"

    async def embed_text(self, text: str) -> List[float]:
        # Model inference is CPU/GPU bound; keep it off the event loop
        embedding = await asyncio.to_thread(image_processing.generate_text_embedding, text)
        return image_processing.fit_dimension(embedding, self.text_dimension)

    async def embed_image(self, image_uri: str) -> List[float]:
        embedding = await asyncio.to_thread(image_processing.embed_image_uri, image_uri)
        return image_processing.fit_dimension(embedding, self.image_dimension)

    async def embed_product(self, product: Dict[str, Any]) -> Dict[str, Optional[str]]:
        """
        Column values for one product row, as pgvector text.

        A product whose image cannot be loaded keeps a NULL image embedding and
        simply drops out of image search.
        """
        image_embedding = None
        image_uri = product.get("product_image_uri")
        if image_uri:
            try:
                image_embedding = vector_to_text(await self.embed_image(image_uri))
            except Exception as e:
                logger.warning(f"[Embedding] No image embedding for product {product.get('id')}: {str(e)}")

        return {
            "embedding": vector_to_text(await self.embed_text(product_embedding_text(product))),
            "product_image_embedding": image_embedding,
        }


def product_embedding_text(product: Dict[str, Any]) -> str:
    """Text embedded for a stored product; the name is repeated for weight"""
    text_parts = [
        product.get("name"),
        product.get("name"),
        product.get("product_description"),
        f"Category: {product.get('category') or ''} {product.get('department') or ''}".strip(),
        f"Brand: {product.get('brand') or ''}".strip(),
    ]
    return " ".join(part for part in text_parts if part and not part.endswith(":"))


def vector_to_text(embedding: List[float]) -> str:
    """pgvector text format: [0.1,0.2,...]"""
    return "[" + ",".join(map(str, embedding)) + "]"


def get_embedding_service(provider: str = None) -> EmbeddingService:
    provider = provider or settings.EMBEDDING_PROVIDER
    if provider == "database":
        return DatabaseEmbeddingService()
    if provider == "local":
        return LocalEmbeddingService()
    raise ValueError(f"Unknown embedding provider '{provider}'. Expected 'database' or 'local'")
