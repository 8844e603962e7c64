"""
Facet aggregation over the active candidate population.

The facet query reuses the candidate CTEs of the selected strategy, applies
the full facet predicate and counts brand, category and price bucket in one
GROUPING SETS pass, so counts match what the product search returns.
"""

import logging
import traceback
from typing import Any, List, Optional, Tuple

from catalog_search.constants.search_enums import FacetType, SearchType, PRICE_BUCKETS, parse_search_type
from catalog_search.repository.product_repository import ProductRepository
from catalog_search.schemas.search_schema import FacetResponse, FacetRow
from catalog_search.services.candidate_service import (
    CANDIDATES,
    PRODUCTS_TABLE,
    CandidateSetBuilder,
    missing_required_term,
)
from catalog_search.services.embedding_service import EmbeddingService
from catalog_search.services.facet_filter_service import (
    PRICE_COLUMN,
    SelectedFacets,
    compile_facet_filters,
    price_bucket_predicate,
)
from catalog_search.services.query_builder import (
    CommonTableExpression,
    QueryCompositionError,
    QueryParams,
    check_placeholders,
    indent,
)
from catalog_search.utils.sql_format import interpolate_query, to_sql_literal

logger = logging.getLogger(__name__)


def price_bucket_case(column: str = PRICE_COLUMN) -> str:
    """CASE expression mapping a price to its bucket label (NULL if none)"""
    branches = [
        f"    WHEN {price_bucket_predicate(bucket, column)} THEN {to_sql_literal(bucket.label)}"
        for bucket in PRICE_BUCKETS
    ]
    return "CASE\n" + "\n".join(branches) + "\nEND"


def price_bucket_order(column: str = "facet_value") -> str:
    """Sort key placing bucket labels by lower bound"""
    branches = [
        f"WHEN {to_sql_literal(bucket.label)} THEN {to_sql_literal(bucket.lower)}"
        for bucket in PRICE_BUCKETS
    ]
    return f"CASE {column} " + " ".join(branches) + " END"


def facet_type_order(column: str = "facet_type") -> str:
    branches = [
        f"WHEN {to_sql_literal(facet.value)} THEN {position}"
        for position, facet in enumerate(FacetType, start=1)
    ]
    return f"CASE {column} " + " ".join(branches) + " END"


class FacetService:
    """Computes facet counts consistent with a retrieval strategy"""

    def __init__(self, repository: ProductRepository = None, embedding_service: EmbeddingService = None):
        self.repository = repository or ProductRepository()
        self.candidate_builder = CandidateSetBuilder(embedding_service)

    async def build_query(
        self,
        search_type: SearchType,
        term: str,
        selected_facets: Optional[SelectedFacets] = None
    ) -> Tuple[str, List[Any]]:
        params = QueryParams()
        facet_filter = compile_facet_filters(selected_facets, params)
        candidate_set = await self.candidate_builder.build(search_type, term, params, facet_filter)

        where = f"\nWHERE {facet_filter.predicate}" if facet_filter.predicate else ""
        filtered = f"""
SELECT
    {PRODUCTS_TABLE}.id,
    {PRODUCTS_TABLE}.brand,
    {PRODUCTS_TABLE}.category,
{indent(price_bucket_case(f"{PRODUCTS_TABLE}.{PRICE_COLUMN}"))} AS price_range
FROM {PRODUCTS_TABLE}
JOIN {CANDIDATES} ON {CANDIDATES}.id = {PRODUCTS_TABLE}.id{where}
"""
        facet_counts = f"""
SELECT
    CASE
        WHEN GROUPING(brand) = 0 THEN {to_sql_literal(FacetType.BRAND.value)}
        WHEN GROUPING(category) = 0 THEN {to_sql_literal(FacetType.CATEGORY.value)}
        ELSE {to_sql_literal(FacetType.PRICE_RANGE.value)}
    END AS facet_type,
    COALESCE(brand, category, price_range) AS facet_value,
    COUNT(DISTINCT id) AS count
FROM filtered
GROUP BY GROUPING SETS ((brand), (category), (price_range))
"""
        ctes = candidate_set.ctes + [
            CommonTableExpression("filtered", filtered),
            CommonTableExpression("facet_counts", facet_counts),
            CommonTableExpression("totals", "SELECT COUNT(DISTINCT id) AS total_count FROM filtered"),
        ]
        # totals drives the join so the total survives when no facet row does
        query = "\n".join([
            "WITH " + ",\n".join(cte.render() for cte in ctes),
            "SELECT facet_counts.facet_type, facet_counts.facet_value, facet_counts.count, totals.total_count",
            "FROM totals",
            "LEFT JOIN facet_counts ON facet_counts.facet_value IS NOT NULL",
            "ORDER BY",
            f"    {facet_type_order('facet_counts.facet_type')},",
            f"    CASE WHEN facet_counts.facet_type = {to_sql_literal(FacetType.PRICE_RANGE.value)} "
            f"THEN {price_bucket_order('facet_counts.facet_value')} END,",
            "    facet_counts.count DESC,",
            "    facet_counts.facet_value ASC",
        ])

        values = params.values
        check_placeholders(query, values)
        return query, values

    async def get_facets(
        self,
        term: str,
        search_type,
        selected_facets: Optional[SelectedFacets] = None
    ) -> FacetResponse:
        try:
            resolved = parse_search_type(search_type)
        except ValueError as e:
            logger.warning(f"[Facets] {e}")
            return FacetResponse(search_type=str(search_type), error_detail=str(e))

        if resolved == SearchType.NATURAL:
            return FacetResponse(
                search_type=resolved.value,
                error_detail="Facets are not available for natural language search"
            )
        if missing_required_term(resolved, term):
            return FacetResponse(
                search_type=resolved.value,
                error_detail=f"A search term is required for {resolved.value} search"
            )

        query, params = None, []
        try:
            query, params = await self.build_query(resolved, term, selected_facets)
            rows = await self.repository.fetch_all(query, params)
        except QueryCompositionError:
            raise
        except Exception as e:
            logger.error(f"[Facets] {resolved.value} facet query failed: {str(e)}\nQuery: {query}\nParams: {params}")
            logger.error(traceback.format_exc())
            return FacetResponse(
                search_type=resolved.value,
                query=interpolate_query(query, params) if query else None,
                error_detail=str(e)
            )

        total_count = 0
        data = []
        for row in rows:
            total_count = int(row.get("total_count") or 0)
            if row.get("facet_type") is None or row.get("facet_value") is None:
                continue
            data.append(FacetRow(
                facet_type=row["facet_type"],
                facet_value=str(row["facet_value"]),
                count=int(row["count"])
            ))

        logger.info(f"[Facets] {resolved.value}: {len(data)} facet values over {total_count} products")
        return FacetResponse(
            data=data,
            total_count=total_count,
            search_type=resolved.value,
            query=interpolate_query(query, params)
        )
