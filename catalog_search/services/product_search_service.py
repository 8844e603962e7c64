"""
Retrieval strategy executors for the product catalog.

Each strategy composes one statement (candidate CTEs, facet predicate,
strategy ordering, page limit and a windowed total count) and runs it in a
single round trip. Failures while embedding or executing are logged and
returned as an error detail with no rows.
"""

import logging
import traceback
from typing import Any, List, Optional, Tuple

from catalog_search.config.settings import settings
from catalog_search.constants.search_enums import SearchType, parse_search_type
from catalog_search.repository.product_repository import ProductRepository
from catalog_search.schemas.search_schema import RetrievalResult
from catalog_search.services.candidate_service import (
    CANDIDATES,
    PRODUCTS_TABLE,
    CandidateSetBuilder,
    missing_required_term,
)
from catalog_search.services.embedding_service import EmbeddingService
from catalog_search.services.facet_filter_service import SelectedFacets, compile_facet_filters
from catalog_search.services.post_filter_service import PostFilter
from catalog_search.services.query_builder import (
    QueryCompositionError,
    QueryParams,
    SelectQuery,
    check_placeholders,
)
from catalog_search.utils.result_normalizer import normalize_rows
from catalog_search.utils.sql_format import interpolate_query

logger = logging.getLogger(__name__)

# Columns returned for every product row
DISPLAY_COLUMNS = [
    "id",
    "name",
    "product_image_uri",
    "brand",
    "product_description",
    "category",
    "department",
    "cost",
    "retail_price",
    "sku",
]


def page_size_for(search_type: SearchType) -> int:
    if search_type == SearchType.HYBRID:
        return settings.HYBRID_PAGE_SIZE
    return settings.PAGE_SIZE


class ProductSearchService:
    """Runs the catalog retrieval strategies"""

    def __init__(
        self,
        repository: ProductRepository = None,
        embedding_service: EmbeddingService = None,
        post_filter: PostFilter = None
    ):
        self.repository = repository or ProductRepository()
        self.candidate_builder = CandidateSetBuilder(embedding_service)
        self.post_filter = post_filter or PostFilter()

    async def search(
        self,
        search_type,
        term: str = "",
        selected_facets: Optional[SelectedFacets] = None,
        ai_filter_text: Optional[str] = None
    ) -> RetrievalResult:
        """Dispatch on a strategy id (or legacy alias)"""
        try:
            resolved = parse_search_type(search_type)
        except ValueError as e:
            logger.warning(f"[Product Search] {e}")
            return RetrievalResult(search_type=str(search_type), error_detail=str(e))

        if resolved == SearchType.NATURAL:
            return await self.natural_search(term)
        return await self._run_strategy(resolved, term, selected_facets, ai_filter_text)

    async def lexical_search(self, term, selected_facets=None, ai_filter_text=None) -> RetrievalResult:
        return await self._run_strategy(SearchType.LEXICAL, term, selected_facets, ai_filter_text)

    async def fulltext_search(self, term, selected_facets=None, ai_filter_text=None) -> RetrievalResult:
        return await self._run_strategy(SearchType.FULLTEXT, term, selected_facets, ai_filter_text)

    async def semantic_search(self, term, selected_facets=None, ai_filter_text=None) -> RetrievalResult:
        return await self._run_strategy(SearchType.SEMANTIC, term, selected_facets, ai_filter_text)

    async def hybrid_search(self, term, selected_facets=None, ai_filter_text=None) -> RetrievalResult:
        return await self._run_strategy(SearchType.HYBRID, term, selected_facets, ai_filter_text)

    async def image_search(self, image_uri, selected_facets=None, ai_filter_text=None) -> RetrievalResult:
        return await self._run_strategy(SearchType.IMAGE, image_uri, selected_facets, ai_filter_text)

    async def build_query(
        self,
        search_type: SearchType,
        term: str,
        selected_facets: Optional[SelectedFacets] = None,
        ai_filter_text: Optional[str] = None
    ) -> Tuple[str, List[Any]]:
        """
        Compose the statement for one strategy.

        Facets bind first, then the candidate stage, then the post-filter, all
        through one QueryParams cursor. The result is checked so that the
        placeholders are exactly $1..$len(params).
        """
        params = QueryParams()
        facet_filter = compile_facet_filters(selected_facets, params)
        candidate_set = await self.candidate_builder.build(search_type, term, params, facet_filter)

        select = SelectQuery(
            columns=[f"{PRODUCTS_TABLE}.{column}" for column in DISPLAY_COLUMNS] + candidate_set.columns,
            from_clause=f"{PRODUCTS_TABLE}\nJOIN {CANDIDATES} ON {CANDIDATES}.id = {PRODUCTS_TABLE}.id",
            ctes=candidate_set.ctes,
            where=[facet_filter.predicate],
            order_by=candidate_set.order_by,
            limit=page_size_for(search_type)
        )

        if self.post_filter.is_active(ai_filter_text):
            query = self.post_filter.apply(select.render(), ai_filter_text, params, candidate_set.order_by)
        else:
            select.columns.append("COUNT(*) OVER () AS total_count")
            query = select.render()

        values = params.values
        check_placeholders(query, values)
        return query, values

    async def natural_search(self, prompt: str) -> RetrievalResult:
        """
        Ask the engine to turn a question into SQL, then run that SQL read-only.
        Facets and the AI filter do not apply.
        """
        search_type = SearchType.NATURAL.value
        if not (prompt or "").strip():
            return RetrievalResult(search_type=search_type, error_detail="A prompt is required for natural search")

        params = QueryParams()
        get_sql_query = (
            "SELECT alloydb_ai_nl.get_sql("
            f"nl_config_id => {params.add(settings.NL_CONFIG_ID)}, "
            f"nl_question => {params.add(prompt.strip())}"
            ") ->> 'sql' AS sql"
        )
        check_placeholders(get_sql_query, params.values)
        interpolated_get_sql = interpolate_query(get_sql_query, params.values)

        generated = None
        try:
            logger.info(f"[Natural Search] Generating SQL for: {prompt!r}")
            generated_rows = await self.repository.fetch_all(get_sql_query, params.values)
            generated = generated_rows[0].get("sql") if generated_rows else None
            if not generated:
                return RetrievalResult(
                    search_type=search_type,
                    get_sql_query=interpolated_get_sql,
                    error_detail="No SQL was generated for the prompt"
                )
            generated = generated.strip().rstrip(";")
            logger.info(f"[Natural Search] Running generated SQL: {generated}")
            rows = await self.repository.fetch_read_only(generated)
        except Exception as e:
            logger.error(f"[Natural Search] Failed: {str(e)}\nQuery: {generated or get_sql_query}")
            logger.error(traceback.format_exc())
            return RetrievalResult(
                search_type=search_type,
                query=generated,
                interpolated_query=generated,
                get_sql_query=interpolated_get_sql,
                generated_query=generated,
                error_detail=str(e)
            )

        data, total_count = normalize_rows(rows)
        return RetrievalResult(
            data=data,
            total_count=total_count if total_count is not None else len(data),
            search_type=search_type,
            query=generated,
            interpolated_query=generated,
            get_sql_query=interpolated_get_sql,
            generated_query=generated
        )

    async def _run_strategy(
        self,
        search_type: SearchType,
        term: str,
        selected_facets: Optional[SelectedFacets],
        ai_filter_text: Optional[str]
    ) -> RetrievalResult:
        if missing_required_term(search_type, term):
            return RetrievalResult(
                search_type=search_type.value,
                error_detail=f"A search term is required for {search_type.value} search"
            )

        query, params = None, []
        try:
            logger.info(f"[Product Search] {search_type.value} search: term={term!r}, facets={selected_facets}")
            query, params = await self.build_query(search_type, term, selected_facets, ai_filter_text)
            rows = await self.repository.fetch_all(query, params)
        except QueryCompositionError:
            raise
        except Exception as e:
            logger.error(f"[Product Search] {search_type.value} search failed: {str(e)}\nQuery: {query}\nParams: {params}")
            logger.error(traceback.format_exc())
            return RetrievalResult(
                search_type=search_type.value,
                query=query,
                interpolated_query=interpolate_query(query, params) if query else None,
                error_detail=str(e)
            )

        data, total_count = normalize_rows(rows)
        logger.info(f"[Product Search] {search_type.value} search returned {len(data)} of {total_count or 0} rows")
        return RetrievalResult(
            data=data,
            total_count=total_count or 0,
            search_type=search_type.value,
            query=query,
            interpolated_query=interpolate_query(query, params)
        )
