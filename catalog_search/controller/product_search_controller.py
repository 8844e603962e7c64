"""
Product search controller.
Orchestrates the search, facet and explain services for the HTTP routes.
"""

import asyncio
import logging
import traceback

from fastapi import HTTPException, status

from catalog_search.repository.product_repository import ProductRepository
from catalog_search.services.embedding_service import EmbeddingService
from catalog_search.services.facet_service import FacetService
from catalog_search.services.product_search_service import ProductSearchService
from catalog_search.schemas.search_schema import (
    SearchRequest,
    ImageSearchRequest,
    NaturalSearchRequest,
    FacetRequest,
    SearchWithFacetsRequest,
    ExplainRequest,
    RetrievalResult,
    FacetResponse,
    SearchWithFacetsResponse,
    ExplainResponse,
)
from catalog_search.utils.result_normalizer import normalize_rows

logger = logging.getLogger(__name__)


class ProductSearchController:
    """Controller for catalog search operations"""

    def __init__(self, repository: ProductRepository = None, embedding_service: EmbeddingService = None):
        self.repository = repository or ProductRepository()
        self.search_service = ProductSearchService(self.repository, embedding_service)
        self.facet_service = FacetService(self.repository, embedding_service)

    async def search(self, search_type: str, request: SearchRequest) -> RetrievalResult:
        return await self.search_service.search(search_type, request.term, request.facets, request.ai_filter_text)

    async def image_search(self, request: ImageSearchRequest) -> RetrievalResult:
        return await self.search_service.image_search(request.search_uri, request.facets, request.ai_filter_text)

    async def natural_search(self, request: NaturalSearchRequest) -> RetrievalResult:
        return await self.search_service.natural_search(request.prompt)

    async def get_facets(self, request: FacetRequest) -> FacetResponse:
        return await self.facet_service.get_facets(request.term, request.search_type, request.facets)

    async def search_with_facets(self, request: SearchWithFacetsRequest) -> SearchWithFacetsResponse:
        """Run the product and facet queries concurrently on separate connections"""
        products, facets = await asyncio.gather(
            self.search_service.search(request.search_type, request.term, request.facets, request.ai_filter_text),
            self.facet_service.get_facets(request.term, request.search_type, request.facets),
        )
        return SearchWithFacetsResponse(products=products, facets=facets)

    async def explain(self, request: ExplainRequest) -> ExplainResponse:
        """EXPLAIN a query in a read-only transaction"""
        try:
            rows = await self.repository.explain(request.query)
        except ValueError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
        except Exception as e:
            logger.error(f"[Explain] Failed to explain query: {str(e)}\nQuery: {request.query}")
            logger.error(traceback.format_exc())
            return ExplainResponse(query=request.query, error_detail=str(e))

        data, _ = normalize_rows(rows)
        return ExplainResponse(data=data, query=request.query)
