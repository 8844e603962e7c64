"""
Candidate set builder.

For each retrieval strategy, builds the CTEs that end in a `candidates`
relation: the item ids the strategy proposes, plus the per-strategy score
columns used for ordering. The same builder feeds the product search and the
facet aggregation so both see the same candidate population.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Union

from catalog_search.config.settings import settings as default_settings
from catalog_search.constants.search_enums import SearchType, RetrievalMethod
from catalog_search.services.embedding_service import EmbeddingService, get_embedding_service
from catalog_search.services.facet_filter_service import FacetFilter
from catalog_search.services.query_builder import CommonTableExpression, QueryParams, and_all, indent
from catalog_search.utils.sql_format import escape_like, to_sql_literal

PRODUCTS_TABLE = "products"
CANDIDATES = "candidates"

# Columns matched by the lexical strategy
LEXICAL_COLUMNS = ["name", "sku", "category", "brand", "department", "product_description"]


@dataclass(frozen=True)
class FusionLeg:
    """One ranked input to hybrid fusion: its label, CTE and rank column"""
    method: RetrievalMethod
    cte: str
    rank_column: str
    offset_setting: str


# Order in which contributing strategies appear in a fused label
FUSION_LEGS = (
    FusionLeg(RetrievalMethod.VECTOR, "vector_search", "vector_rank", "RRF_K_VECTOR"),
    FusionLeg(RetrievalMethod.FTS, "fts_search", "fts_rank", "RRF_K_FTS"),
    FusionLeg(RetrievalMethod.SQL, "sql_search", "sql_rank", "RRF_K_SQL"),
)
FUSION_ORDER = tuple(leg.method for leg in FUSION_LEGS)


def rrf_offsets(settings=None) -> Dict[str, int]:
    """K offset per fused strategy label"""
    settings = settings or default_settings
    return {leg.method.value: int(getattr(settings, leg.offset_setting)) for leg in FUSION_LEGS}


def rrf_score(
    ranks: Mapping[str, Optional[int]],
    k: Union[int, Mapping[str, int], None] = None
) -> float:
    """
    Reciprocal Rank Fusion score: sum of 1 / (k + rank) over the strategies
    that ranked the item. A missing or None rank contributes nothing. k
    defaults to the configured offsets the hybrid query uses.
    """
    if k is None:
        k = rrf_offsets()
    score = 0.0
    for strategy, rank in ranks.items():
        if rank is None:
            continue
        if rank < 1:
            raise ValueError(f"Ranks are 1-based, got {rank} for {strategy}")
        offset = k[strategy] if isinstance(k, Mapping) else k
        score += 1.0 / (offset + rank)
    return score


def fused_retrieval_method(ranks: Mapping[str, Optional[int]]) -> str:
    """Label listing the contributing strategies, e.g. VECTOR+FTS"""
    return "+".join(
        method.value for method in FUSION_ORDER
        if ranks.get(method.value) is not None
    )


def rrf_score_sql(offsets: Mapping[str, int]) -> str:
    """SQL form of rrf_score over the fused leg CTEs"""
    return "\n    + ".join(
        f"COALESCE(1.0 / ({to_sql_literal(offsets[leg.method.value])} + {leg.cte}.{leg.rank_column}), 0.0)"
        for leg in FUSION_LEGS
    )


def fused_retrieval_method_sql() -> str:
    """SQL form of fused_retrieval_method over the fused leg CTEs"""
    labels = ",\n".join(
        f"    CASE WHEN {leg.cte}.{leg.rank_column} IS NOT NULL THEN {to_sql_literal(leg.method.value)} END"
        for leg in FUSION_LEGS
    )
    return f"CONCAT_WS(\n    '+',\n{labels}\n)"


@dataclass
class CandidateSet:
    """
    CTEs ending in `candidates` (always exposing `id`).

    columns are select expressions over `candidates` to include in result rows,
    order_by uses output column names and always ends with the id tie-break.
    """
    search_type: SearchType
    ctes: List[CommonTableExpression]
    columns: List[str] = field(default_factory=list)
    order_by: List[str] = field(default_factory=list)


def missing_required_term(search_type: SearchType, term: Optional[str]) -> bool:
    """True when the strategy needs an embedding but got a blank term"""
    embedded = (SearchType.SEMANTIC, SearchType.IMAGE, SearchType.HYBRID)
    return search_type in embedded and not (term or "").strip()


def lexical_pattern(term: Optional[str]) -> str:
    """Collapse whitespace and join the escaped words with % wildcards"""
    words = (term or "").split()
    return "%" + "%".join(escape_like(word) for word in words) + "%"


def lexical_match(placeholder: str) -> str:
    return " OR ".join(f"{column} ILIKE {placeholder}" for column in LEXICAL_COLUMNS)


class CandidateSetBuilder:
    """Builds the candidate CTEs for each retrieval strategy"""

    def __init__(self, embedding_service: EmbeddingService = None, settings=None):
        self.settings = settings or default_settings
        self.embedding_service = embedding_service or get_embedding_service(self.settings.EMBEDDING_PROVIDER)

    async def build(
        self,
        search_type: SearchType,
        term: str,
        params: QueryParams,
        facet_filter: FacetFilter
    ) -> CandidateSet:
        if search_type == SearchType.LEXICAL:
            return self.lexical(term, params)
        if search_type == SearchType.FULLTEXT:
            return self.fulltext(term, params)
        if search_type == SearchType.SEMANTIC:
            return await self.semantic(term, params, facet_filter)
        if search_type == SearchType.IMAGE:
            return await self.image(term, params, facet_filter)
        if search_type == SearchType.HYBRID:
            return await self.hybrid(term, params, facet_filter)
        raise ValueError(f"Search type '{search_type.value}' has no candidate set")

    def lexical(self, term: str, params: QueryParams) -> CandidateSet:
        pattern = params.add(lexical_pattern(term))
        body = f"""
SELECT id
FROM {PRODUCTS_TABLE}
WHERE {lexical_match(pattern)}
"""
        return CandidateSet(
            search_type=SearchType.LEXICAL,
            ctes=[CommonTableExpression(CANDIDATES, body)],
            columns=[f"{to_sql_literal(RetrievalMethod.SQL.value)} AS retrieval_method"],
            order_by=["name ASC", "id ASC"]
        )

    def fulltext(self, term: str, params: QueryParams) -> CandidateSet:
        tsquery = self._tsquery(params.add(term or ""))
        body = f"""
SELECT id, ts_rank(fts_document, {tsquery}) AS fts_rank_score
FROM {PRODUCTS_TABLE}
WHERE fts_document @@ {tsquery}
"""
        return CandidateSet(
            search_type=SearchType.FULLTEXT,
            ctes=[CommonTableExpression(CANDIDATES, body)],
            columns=[
                f"{CANDIDATES}.fts_rank_score",
                f"{to_sql_literal(RetrievalMethod.FTS.value)} AS retrieval_method"
            ],
            order_by=["fts_rank_score DESC", "id ASC"]
        )

    async def semantic(self, term: str, params: QueryParams, facet_filter: FacetFilter) -> CandidateSet:
        vector_sql = await self.embedding_service.text_vector_sql(term, params)
        return self._vector_candidates(
            SearchType.SEMANTIC, RetrievalMethod.VECTOR, vector_sql, "embedding",
            self.settings.SEMANTIC_MAX_DISTANCE, facet_filter
        )

    async def image(self, image_uri: str, params: QueryParams, facet_filter: FacetFilter) -> CandidateSet:
        vector_sql = await self.embedding_service.image_vector_sql(image_uri, params)
        return self._vector_candidates(
            SearchType.IMAGE, RetrievalMethod.IMAGE, vector_sql, "product_image_embedding",
            self.settings.IMAGE_MAX_DISTANCE, facet_filter
        )

    async def hybrid(self, term: str, params: QueryParams, facet_filter: FacetFilter) -> CandidateSet:
        """
        Rank candidates independently per strategy, then fuse with RRF.

        Each source CTE is bounded, facet-pruned and carries a 1-based RANK().
        Items missing from a strategy contribute 0 for that strategy.
        """
        limit = self.settings.HYBRID_STRATEGY_LIMIT
        pattern = params.add(lexical_pattern(term))
        tsquery = self._tsquery(params.add(term or ""))
        vector_sql = await self.embedding_service.text_vector_sql(term, params)

        sql_search = f"""
SELECT id, RANK() OVER (ORDER BY name) AS sql_rank
FROM {PRODUCTS_TABLE}
WHERE {and_all([lexical_match(pattern), facet_filter.predicate])}
ORDER BY name, id
LIMIT {int(limit)}
"""
        fts_search = f"""
SELECT id, RANK() OVER (ORDER BY ts_rank(fts_document, {tsquery}) DESC) AS fts_rank
FROM {PRODUCTS_TABLE}
WHERE {and_all([f"fts_document @@ {tsquery}", facet_filter.predicate])}
ORDER BY fts_rank, id
LIMIT {int(limit)}
"""
        vector_search = f"""
SELECT id, RANK() OVER (ORDER BY distance) AS vector_rank
FROM (
{self._nearest_neighbours("embedding", facet_filter, limit)}
) AS nearest
WHERE distance <= {to_sql_literal(self.settings.SEMANTIC_MAX_DISTANCE)}
"""
        fused = self._fuse()
        return CandidateSet(
            search_type=SearchType.HYBRID,
            ctes=[
                CommonTableExpression("query_embedding", f"SELECT {vector_sql} AS query_vector"),
                CommonTableExpression("sql_search", sql_search),
                CommonTableExpression("fts_search", fts_search),
                CommonTableExpression("vector_search", vector_search),
                CommonTableExpression(CANDIDATES, fused),
            ],
            columns=[f"{CANDIDATES}.rrf_score", f"{CANDIDATES}.retrieval_method"],
            order_by=["rrf_score DESC", "id ASC"]
        )

    def _fuse(self) -> str:
        """FULL OUTER JOIN the fusion legs and score them with RRF"""
        first, rest = FUSION_LEGS[0], FUSION_LEGS[1:]
        ids = [f"{leg.cte}.id" for leg in FUSION_LEGS]
        joins = [
            f"FULL OUTER JOIN {leg.cte} ON {leg.cte}.id = "
            + (ids[0] if position == 1 else f"COALESCE({', '.join(ids[:position])})")
            for position, leg in enumerate(rest, start=1)
        ]
        return "\n".join([
            "SELECT",
            f"    COALESCE({', '.join(ids)}) AS id,",
            indent(rrf_score_sql(rrf_offsets(self.settings))) + " AS rrf_score,",
            indent(fused_retrieval_method_sql()) + " AS retrieval_method",
            f"FROM {first.cte}",
        ] + joins)

    def _vector_candidates(
        self,
        search_type: SearchType,
        method: RetrievalMethod,
        vector_sql: str,
        column: str,
        max_distance: float,
        facet_filter: FacetFilter
    ) -> CandidateSet:
        # Facets prune the pool before the distance is computed
        body = f"""
SELECT id, distance
FROM (
{self._nearest_neighbours(column, facet_filter, self.settings.CANDIDATE_POOL_SIZE)}
) AS nearest
WHERE distance <= {to_sql_literal(max_distance)}
"""
        return CandidateSet(
            search_type=search_type,
            ctes=[
                CommonTableExpression("query_embedding", f"SELECT {vector_sql} AS query_vector"),
                CommonTableExpression(CANDIDATES, body),
            ],
            columns=[
                f"{CANDIDATES}.distance",
                f"{to_sql_literal(method.value)} AS retrieval_method"
            ],
            order_by=["distance ASC", "id ASC"]
        )

    def _nearest_neighbours(self, column: str, facet_filter: FacetFilter, limit: int) -> str:
        # Scalar subquery runs once and lets the planner use the HNSW index
        where = and_all([f"{column} IS NOT NULL", facet_filter.predicate])
        return f"""    SELECT id, {column} <=> (SELECT query_vector FROM query_embedding) AS distance
    FROM {PRODUCTS_TABLE}
    WHERE {where}
    ORDER BY distance
    LIMIT {int(limit)}"""

    def _tsquery(self, placeholder: str) -> str:
        return f"websearch_to_tsquery({to_sql_literal(self.settings.FTS_LANGUAGE)}, {placeholder})"
