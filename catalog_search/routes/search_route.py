"""
Product search routes.
Every endpoint returns the service's response object; error details from
failed strategies travel inside it rather than as HTTP errors.
"""

from fastapi import APIRouter, Depends, HTTPException
import logging

from catalog_search.constants.search_enums import SearchType
from catalog_search.controller.product_search_controller import ProductSearchController
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

logger = logging.getLogger(__name__)
router = APIRouter()


def get_search_controller() -> ProductSearchController:
    """Dependency to get the product search controller"""
    return ProductSearchController()


async def _run(operation, description: str):
    try:
        return await operation
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"{description} failed: {str(e)}")
        raise HTTPException(status_code=500, detail=f"{description} failed: {str(e)}")


@router.post("/search", response_model=RetrievalResult)
async def lexical_search(
    request: SearchRequest,
    controller: ProductSearchController = Depends(get_search_controller)
):
    """Case-insensitive pattern match over name, SKU, category, brand, department and description"""
    return await _run(controller.search(SearchType.LEXICAL, request), "Lexical search")


@router.post("/fulltext-search", response_model=RetrievalResult)
async def fulltext_search(
    request: SearchRequest,
    controller: ProductSearchController = Depends(get_search_controller)
):
    """Full-text search ranked by ts_rank"""
    return await _run(controller.search(SearchType.FULLTEXT, request), "Full-text search")


@router.post("/semantic-search", response_model=RetrievalResult)
async def semantic_search(
    request: SearchRequest,
    controller: ProductSearchController = Depends(get_search_controller)
):
    """Nearest neighbours of the term's text embedding"""
    return await _run(controller.search(SearchType.SEMANTIC, request), "Semantic search")


@router.post("/hybrid-search", response_model=RetrievalResult)
async def hybrid_search(
    request: SearchRequest,
    controller: ProductSearchController = Depends(get_search_controller)
):
    """
    Reciprocal Rank Fusion of the lexical, full-text and semantic strategies.
    Each row carries rrfScore and a retrievalMethod such as VECTOR+FTS.
    """
    return await _run(controller.search(SearchType.HYBRID, request), "Hybrid search")


@router.post("/image-search", response_model=RetrievalResult)
async def image_search(
    request: ImageSearchRequest,
    controller: ProductSearchController = Depends(get_search_controller)
):
    """Nearest neighbours of an image's embedding"""
    return await _run(controller.image_search(request), "Image search")


@router.post("/natural-search", response_model=RetrievalResult)
async def natural_search(
    request: NaturalSearchRequest,
    controller: ProductSearchController = Depends(get_search_controller)
):
    """Generate SQL from a question and run it read-only"""
    return await _run(controller.natural_search(request), "Natural language search")


@router.post("/search-with-facets", response_model=SearchWithFacetsResponse)
async def search_with_facets(
    request: SearchWithFacetsRequest,
    controller: ProductSearchController = Depends(get_search_controller)
):
    """Products and facet counts for the same strategy, fetched concurrently"""
    return await _run(controller.search_with_facets(request), "Search with facets")


@router.post("/facets", response_model=FacetResponse)
async def get_facets(
    request: FacetRequest,
    controller: ProductSearchController = Depends(get_search_controller)
):
    """Brand, category and price bucket counts for the active search"""
    return await _run(controller.get_facets(request), "Facet retrieval")


@router.post("/explain-query", response_model=ExplainResponse)
async def explain_query(
    request: ExplainRequest,
    controller: ProductSearchController = Depends(get_search_controller)
):
    return await _run(controller.explain(request), "Explain query")
