import re

import pytest

from catalog_search.config.settings import settings
from catalog_search.constants.search_enums import SearchType
from catalog_search.services.candidate_service import (
    FUSION_LEGS,
    FUSION_ORDER,
    CandidateSetBuilder,
    fused_retrieval_method,
    lexical_pattern,
    missing_required_term,
    rrf_offsets,
    rrf_score,
)
from catalog_search.services.embedding_service import DatabaseEmbeddingService, LocalEmbeddingService
from catalog_search.services.facet_filter_service import compile_facet_filters
from catalog_search.services.facet_service import FacetService
from catalog_search.services.post_filter_service import PostFilter
from catalog_search.services.product_search_service import ProductSearchService
from catalog_search.services.query_builder import QueryParams, check_placeholders
from catalog_search.utils import image_processing

from conftest import RecordingRepository

FUSED_TERM = re.compile(r"COALESCE\(1\.0 / \((\d+) \+ (\w+)\.(\w+)\), 0\.0\)")
FUSED_LABEL = re.compile(r"CASE WHEN (\w+)\.(\w+) IS NOT NULL THEN '(\w+)' END")


@pytest.fixture
def builder(embedding_service):
    return CandidateSetBuilder(embedding_service)


def _bodies(candidate_set):
    return {cte.name: cte.body for cte in candidate_set.ctes}


@pytest.mark.parametrize("term, expected", [
    ("coach purse", "%coach%purse%"),
    ("  coach \t  purse  ", "%coach%purse%"),
    ("50%_off", "%50\\%\\_off%"),
    ("", "%%"),
    (None, "%%"),
])
def test_lexical_pattern(term, expected):
    assert lexical_pattern(term) == expected


def test_missing_required_term():
    assert missing_required_term(SearchType.SEMANTIC, "  ")
    assert missing_required_term(SearchType.HYBRID, None)
    assert missing_required_term(SearchType.IMAGE, "")
    assert not missing_required_term(SearchType.LEXICAL, "")
    assert not missing_required_term(SearchType.SEMANTIC, "belt")


async def test_lexical_candidates(builder):
    params = QueryParams()
    candidate_set = await builder.build(SearchType.LEXICAL, "coach purse", params, compile_facet_filters({}))

    assert [cte.name for cte in candidate_set.ctes] == ["candidates"]
    body = candidate_set.ctes[0].body
    for column in ["name", "sku", "category", "brand", "department", "product_description"]:
        assert f"{column} ILIKE $1" in body
    assert params.values == ["%coach%purse%"]
    assert candidate_set.order_by == ["name ASC", "id ASC"]
    assert "'SQL' AS retrieval_method" in candidate_set.columns


async def test_fulltext_candidates(builder):
    params = QueryParams()
    candidate_set = await builder.build(SearchType.FULLTEXT, "leather belt", params, compile_facet_filters({}))

    body = candidate_set.ctes[0].body
    assert "fts_document @@ websearch_to_tsquery('english', $1)" in body
    assert "ts_rank(fts_document, websearch_to_tsquery('english', $1)) AS fts_rank_score" in body
    assert params.values == ["leather belt"]
    assert candidate_set.order_by == ["fts_rank_score DESC", "id ASC"]


async def test_semantic_candidates_prune_with_facets(builder, embedding_service):
    params = QueryParams()
    facet_filter = compile_facet_filters({"brand": ["Coach"]}, params)

    candidate_set = await builder.build(SearchType.SEMANTIC, "coach purse", params, facet_filter)

    bodies = _bodies(candidate_set)
    assert list(bodies) == ["query_embedding", "candidates"]
    assert bodies["query_embedding"] == "SELECT $2::text::vector AS query_vector"
    candidates = bodies["candidates"]
    assert "embedding <=> (SELECT query_vector FROM query_embedding) AS distance" in candidates
    assert "brand = ANY($1)" in candidates
    assert "LIMIT 500" in candidates
    assert "distance <= 0.6" in candidates
    assert embedding_service.texts == ["coach purse"]
    assert candidate_set.order_by == ["distance ASC", "id ASC"]
    assert "'VECTOR' AS retrieval_method" in candidate_set.columns


async def test_image_candidates_use_image_embedding(builder, embedding_service):
    params = QueryParams()
    candidate_set = await builder.build(
        SearchType.IMAGE, "gs://catalog-images/query.png", params, compile_facet_filters({})
    )

    candidates = _bodies(candidate_set)["candidates"]
    assert "product_image_embedding <=> (SELECT query_vector FROM query_embedding)" in candidates
    assert "product_image_embedding IS NOT NULL" in candidates
    assert "distance <= 0.8" in candidates
    assert embedding_service.images == ["gs://catalog-images/query.png"]
    assert "'IMAGE' AS retrieval_method" in candidate_set.columns


async def test_hybrid_candidates(builder):
    params = QueryParams()
    facet_filter = compile_facet_filters({"category": ["Handbags"]}, params)

    candidate_set = await builder.build(SearchType.HYBRID, "coach purse", params, facet_filter)

    bodies = _bodies(candidate_set)
    assert list(bodies) == ["query_embedding", "sql_search", "fts_search", "vector_search", "candidates"]
    for name in ["sql_search", "fts_search", "vector_search"]:
        assert "category = ANY($1)" in bodies[name]
        assert "LIMIT 40" in bodies[name]
    assert "RANK() OVER (ORDER BY name) AS sql_rank" in bodies["sql_search"]
    assert "AS fts_rank" in bodies["fts_search"]
    assert "RANK() OVER (ORDER BY distance) AS vector_rank" in bodies["vector_search"]
    assert params.values == [["Handbags"], "%coach%purse%", "coach purse", "[0.1,0.2,0.3]"]

    fused = bodies["candidates"]
    assert "1.0 / (60 + vector_search.vector_rank)" in fused
    assert "1.0 / (60 + fts_search.fts_rank)" in fused
    assert "1.0 / (60 + sql_search.sql_rank)" in fused
    assert fused.index("'VECTOR'") < fused.index("'FTS'") < fused.index("'SQL'")
    assert "FULL OUTER JOIN" in fused
    assert candidate_set.order_by == ["rrf_score DESC", "id ASC"]


async def test_natural_has_no_candidate_set(builder):
    with pytest.raises(ValueError):
        await builder.build(SearchType.NATURAL, "cheap belts", QueryParams(), compile_facet_filters({}))


@pytest.fixture
def database_embeddings():
    return DatabaseEmbeddingService(
        text_model="text-embedding-005",
        image_model="multimodalembedding@001",
        image_mime_type="image/png"
    )


async def test_semantic_with_database_embeddings(database_embeddings):
    params = QueryParams()
    facet_filter = compile_facet_filters({"brand": ["Coach"]}, params)

    candidate_set = await CandidateSetBuilder(database_embeddings).build(
        SearchType.SEMANTIC, "coach purse", params, facet_filter
    )

    assert _bodies(candidate_set)["query_embedding"] == "SELECT embedding($2, $3)::vector AS query_vector"
    assert params.values == [["Coach"], "text-embedding-005", "coach purse"]


async def test_image_with_database_embeddings(database_embeddings):
    params = QueryParams()
    facet_filter = compile_facet_filters({"brand": ["Coach"], "category": ["Handbags"]}, params)

    candidate_set = await CandidateSetBuilder(database_embeddings).build(
        SearchType.IMAGE, "gs://catalog-images/q.png", params, facet_filter
    )

    assert _bodies(candidate_set)["query_embedding"] == (
        "SELECT ai.image_embedding(model_id => $3, image => $4, mimetype => $5)::vector AS query_vector"
    )
    assert params.values == [
        ["Coach"], ["Handbags"], "multimodalembedding@001", "gs://catalog-images/q.png", "image/png"
    ]


async def test_hybrid_with_database_embeddings(database_embeddings):
    params = QueryParams()
    facet_filter = compile_facet_filters({"category": ["Handbags"]}, params)

    candidate_set = await CandidateSetBuilder(database_embeddings).build(
        SearchType.HYBRID, "coach purse", params, facet_filter
    )

    assert _bodies(candidate_set)["query_embedding"] == "SELECT embedding($4, $5)::vector AS query_vector"
    assert params.values == [["Handbags"], "%coach%purse%", "coach purse", "text-embedding-005", "coach purse"]


@pytest.mark.parametrize("search_type, term", [
    (SearchType.SEMANTIC, "gift card $5"),
    (SearchType.HYBRID, "gift card $5"),
    (SearchType.IMAGE, "gs://catalog-images/q.png"),
])
async def test_database_embeddings_compose_complete_statements(database_embeddings, search_type, term):
    facets = {"brand": ["Coach"], "category": ["Gifts"], "price_range": ["$0 - $49.99"]}
    search = ProductSearchService(RecordingRepository(), database_embeddings, PostFilter(model_id="gemini-2.0-flash-001"))
    facet_service = FacetService(RecordingRepository(), database_embeddings)

    query, values = await search.build_query(search_type, term, facets, "made of leather")
    facet_query, facet_values = await facet_service.build_query(search_type, term, facets)

    check_placeholders(query, values)
    check_placeholders(facet_query, facet_values)
    assert values[:2] == [["Coach"], ["Gifts"]]
    assert values[-2:] == ["made of leather", "gemini-2.0-flash-001"]
    assert values[:-2] == facet_values
    assert term in values


async def test_local_embeddings_bind_padded_vector(monkeypatch):
    monkeypatch.setattr(image_processing, "generate_text_embedding", lambda text: [0.5, 0.25])
    params = QueryParams()
    facet_filter = compile_facet_filters({"brand": ["Coach"]}, params)

    candidate_set = await CandidateSetBuilder(LocalEmbeddingService(text_dimension=4)).build(
        SearchType.HYBRID, "coach purse", params, facet_filter
    )

    assert _bodies(candidate_set)["query_embedding"] == "SELECT $4::text::vector AS query_vector"
    assert params.values == [["Coach"], "%coach%purse%", "coach purse", "[0.5,0.25,0.0,0.0]"]


async def test_local_image_embeddings_bind_truncated_vector(monkeypatch):
    seen = []
    monkeypatch.setattr(image_processing, "embed_image_uri", lambda uri: seen.append(uri) or [0.1, 0.2, 0.3])
    params = QueryParams()

    candidate_set = await CandidateSetBuilder(LocalEmbeddingService(image_dimension=2)).build(
        SearchType.IMAGE, "gs://catalog-images/q.png", params, compile_facet_filters({})
    )

    assert _bodies(candidate_set)["query_embedding"] == "SELECT $1::text::vector AS query_vector"
    assert params.values == ["[0.1,0.2]"]
    assert seen == ["gs://catalog-images/q.png"]


def _evaluate_fused(fused_sql, ranks):
    """Evaluate the fused CTE's score and label for ranks keyed by strategy label"""
    label_for = {(leg.cte, leg.rank_column): leg.method.value for leg in FUSION_LEGS}
    score = 0.0
    for offset, cte, column in FUSED_TERM.findall(fused_sql):
        rank = ranks.get(label_for[(cte, column)])
        if rank is not None:
            score += 1.0 / (int(offset) + rank)
    labels = [
        label for cte, column, label in FUSED_LABEL.findall(fused_sql)
        if ranks.get(label_for[(cte, column)]) is not None
    ]
    return score, "+".join(labels)


async def _fused_sql(embedding_service, config=None):
    candidate_set = await CandidateSetBuilder(embedding_service, config).build(
        SearchType.HYBRID, "coach purse", QueryParams(), compile_facet_filters({})
    )
    return _bodies(candidate_set)["candidates"]


@pytest.mark.parametrize("ranks", [
    {"VECTOR": 1, "FTS": 1, "SQL": 1},
    {"VECTOR": 3, "FTS": None, "SQL": 12},
    {"FTS": 2},
    {"SQL": 40, "VECTOR": 7},
])
async def test_fused_sql_agrees_with_rrf_score(embedding_service, ranks):
    fused = await _fused_sql(embedding_service)

    score, label = _evaluate_fused(fused, ranks)

    assert len(FUSED_TERM.findall(fused)) == len(FUSION_LEGS)
    assert score == pytest.approx(rrf_score(ranks))
    assert label == fused_retrieval_method(ranks)


async def test_fused_sql_uses_configured_offsets(embedding_service):
    config = settings.model_copy(update={"RRF_K_VECTOR": 40, "RRF_K_SQL": 75})
    fused = await _fused_sql(embedding_service, config)

    assert rrf_offsets(config) == {"VECTOR": 40, "FTS": 60, "SQL": 75}
    assert "1.0 / (40 + vector_search.vector_rank)" in fused
    assert "1.0 / (60 + fts_search.fts_rank)" in fused
    assert "1.0 / (75 + sql_search.sql_rank)" in fused
    ranks = {"VECTOR": 1, "SQL": 1}
    assert _evaluate_fused(fused, ranks)[0] == pytest.approx(rrf_score(ranks, rrf_offsets(config)))


async def test_fused_labels_follow_fusion_order(embedding_service):
    fused = await _fused_sql(embedding_service)

    assert [label for _, _, label in FUSED_LABEL.findall(fused)] == [method.value for method in FUSION_ORDER]
    assert "FROM vector_search\nFULL OUTER JOIN fts_search ON fts_search.id = vector_search.id" in fused
    assert "FULL OUTER JOIN sql_search ON sql_search.id = COALESCE(vector_search.id, fts_search.id)" in fused


def test_rrf_score_matches_formula():
    assert rrf_score({"VECTOR": 1, "FTS": 1, "SQL": 1}) == pytest.approx(3 / 61)
    assert rrf_score({"VECTOR": 2, "FTS": None}) == pytest.approx(1 / 62)
    assert rrf_score({}) == 0.0


def test_rrf_score_is_monotonic_in_rank():
    scores = [rrf_score({"FTS": rank, "SQL": 3}) for rank in range(1, 50)]

    assert scores == sorted(scores, reverse=True)


def test_rrf_top_in_all_strategies_beats_any_single_strategy():
    everywhere = rrf_score({"VECTOR": 1, "FTS": 1, "SQL": 1})

    assert all(everywhere > rrf_score({strategy: 1}) for strategy in ["VECTOR", "FTS", "SQL"])


def test_rrf_score_per_strategy_offsets():
    assert rrf_score({"VECTOR": 1, "SQL": 1}, k={"VECTOR": 40, "SQL": 60}) == pytest.approx(1 / 41 + 1 / 61)


def test_rrf_score_rejects_zero_rank():
    with pytest.raises(ValueError):
        rrf_score({"SQL": 0})


def test_fused_retrieval_method_order():
    assert fused_retrieval_method({"SQL": 3, "VECTOR": 1}) == "VECTOR+SQL"
    assert fused_retrieval_method({"FTS": 2, "SQL": None}) == "FTS"
