import logging
import re

import pytest

from catalog_search.constants.search_enums import SearchType
from catalog_search.services.facet_service import FacetService, price_bucket_case
from catalog_search.services.post_filter_service import PostFilter
from catalog_search.services.product_search_service import ProductSearchService
from catalog_search.services.query_builder import placeholder_indices

from conftest import RecordingRepository


@pytest.fixture
def facet_service(repository, embedding_service):
    return FacetService(repository, embedding_service)


def _candidates_cte(query):
    match = re.search(r"candidates AS \(\n.*?\n\)", query, re.DOTALL)
    assert match is not None
    return match.group(0)


async def test_facet_query_shape(facet_service, repository):
    response = await facet_service.get_facets("coach", "lexical", {"brand": ["Coach"]})

    _, query, params = repository.calls[0]
    assert params == [["Coach"], "%coach%"]
    assert "GROUP BY GROUPING SETS ((brand), (category), (price_range))" in query
    assert "SELECT COUNT(DISTINCT id) AS total_count FROM filtered" in query
    assert "WHERE brand = ANY($1)" in query
    assert "LEFT JOIN facet_counts ON facet_counts.facet_value IS NOT NULL" in query
    assert response.error_detail is None
    assert response.search_type == "lexical"


async def test_response_query_is_interpolated(facet_service):
    response = await facet_service.get_facets("coach", "lexical", {"brand": ["Coach"]})

    assert placeholder_indices(response.query) == []
    assert "ANY(ARRAY['Coach'])" in response.query
    assert "'%coach%'" in response.query


async def test_rows_become_facet_rows(embedding_service):
    repository = RecordingRepository(rows=[
        {"facet_type": "brand", "facet_value": "Coach", "count": 3, "total_count": 5},
        {"facet_type": "category", "facet_value": "Handbags", "count": 2, "total_count": 5},
        {"facet_type": "price_range", "facet_value": "$0 - $49.99", "count": 4, "total_count": 5},
    ])
    service = FacetService(repository, embedding_service)

    response = await service.get_facets("coach", SearchType.HYBRID, {})

    assert response.total_count == 5
    assert [(row.facet_type, row.facet_value, row.count) for row in response.data] == [
        ("brand", "Coach", 3),
        ("category", "Handbags", 2),
        ("price_range", "$0 - $49.99", 4),
    ]
    assert response.model_dump(by_alias=True)["data"][0] == {
        "facetType": "brand",
        "facetValue": "Coach",
        "count": 3,
    }


async def test_empty_population_keeps_total(embedding_service):
    repository = RecordingRepository(rows=[
        {"facet_type": None, "facet_value": None, "count": None, "total_count": 0},
    ])
    service = FacetService(repository, embedding_service)

    response = await service.get_facets("nothing matches", "fulltext", {})

    assert response.data == []
    assert response.total_count == 0


async def test_facet_ordering_clauses(facet_service, repository):
    await facet_service.get_facets("coach", "lexical", {})

    _, query, _ = repository.calls[0]
    order_by = query[query.index("ORDER BY\n"):]
    assert "WHEN 'brand' THEN 1 WHEN 'category' THEN 2 WHEN 'price_range' THEN 3" in order_by
    assert "WHEN '$0 - $49.99' THEN 0" in order_by
    assert "WHEN '$500+' THEN 500" in order_by
    assert order_by.index("facet_counts.count DESC") < order_by.index("facet_counts.facet_value ASC")


def test_price_bucket_case_covers_every_bucket_in_order():
    case = price_bucket_case("products.retail_price")

    labels = ["$0 - $49.99", "$50 - $99.99", "$100 - $249.99", "$250 - $499.99", "$500+"]
    positions = [case.index(f"'{label}'") for label in labels]
    assert positions == sorted(positions)
    assert "WHEN (products.retail_price >= 500) THEN '$500+'" in case


@pytest.mark.parametrize("search_type", ["lexical", "fulltext", "semantic", "hybrid", "image"])
async def test_facets_and_products_share_candidates(embedding_service, search_type):
    facets = {"brand": ["Coach"], "price_range": ["$50 - $99.99"]}
    product_repository = RecordingRepository()
    facet_repository = RecordingRepository()

    await ProductSearchService(product_repository, embedding_service, PostFilter(model_id="")).search(
        search_type, "coach purse", facets
    )
    await FacetService(facet_repository, embedding_service).get_facets("coach purse", search_type, facets)

    _, product_query, product_params = product_repository.calls[0]
    _, facet_query, facet_params = facet_repository.calls[0]
    assert _candidates_cte(product_query) == _candidates_cte(facet_query)
    assert product_params == facet_params


async def test_natural_search_has_no_facets(facet_service, repository):
    response = await facet_service.get_facets("cheap belts", "natural", {})

    assert response.error_detail == "Facets are not available for natural language search"
    assert repository.calls == []


async def test_unknown_search_type(facet_service):
    response = await facet_service.get_facets("belt", "vector", {})

    assert "Unknown search type" in response.error_detail


async def test_failure_returns_error_detail(embedding_service, caplog):
    caplog.set_level(logging.ERROR)
    service = FacetService(RecordingRepository(error=RuntimeError("timeout")), embedding_service)

    response = await service.get_facets("coach", "semantic", {})

    assert response.data == []
    assert response.error_detail == "timeout"
    assert "GROUPING SETS" in response.query
    assert "timeout" in caplog.text
