"""
Schemas for catalog search requests and responses.
All payloads use camelCase keys on the wire.
"""

from pydantic import BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import List, Optional, Dict, Any

from catalog_search.constants.search_enums import SearchType
from catalog_search.services.facet_filter_service import SelectedFacets, parse_selected_facets


class CamelSchema(BaseModel):
    """Base schema: snake_case attributes, camelCase JSON"""

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class FacetSelectionMixin(CamelSchema):
    facets: SelectedFacets = Field(
        default_factory=dict,
        description="Selected facet values keyed by brand, category, price_range (object or JSON string)"
    )

    @field_validator("facets", mode="before")
    @classmethod
    def parse_facets(cls, value):
        return parse_selected_facets(value)


class SearchRequest(FacetSelectionMixin):
    """Request schema for term based searches"""
    term: str = Field("", description="Search term")
    ai_filter_text: Optional[str] = Field(None, description="Natural-language condition rows must satisfy")


class ImageSearchRequest(FacetSelectionMixin):
    """Request schema for image search"""
    search_uri: str = Field(..., min_length=1, description="Image URI (gs://, https:// or data URL)")
    ai_filter_text: Optional[str] = Field(None, description="Natural-language condition rows must satisfy")


class NaturalSearchRequest(CamelSchema):
    prompt: str = Field(..., min_length=1, description="Question to turn into SQL")


class FacetRequest(FacetSelectionMixin):
    """Request schema for facet counts"""
    term: str = Field("", description="Search term, or image URI for image search")
    search_type: str = Field(SearchType.LEXICAL.value, description="Retrieval strategy id")


class SearchWithFacetsRequest(FacetRequest):
    ai_filter_text: Optional[str] = Field(None, description="Natural-language condition rows must satisfy")


class ExplainRequest(CamelSchema):
    query: str = Field(..., min_length=1, description="Query text to explain")


class RetrievalResult(CamelSchema):
    """Outcome of one search request"""
    data: List[Dict[str, Any]] = Field(default_factory=list)
    total_count: int = Field(
        0,
        description=(
            "Rows matching the search and facets. When aiFilterText is set, the classifier only "
            "runs on the ranked page, so this counts the rows on that page that passed"
        )
    )
    search_type: str
    query: Optional[str] = None
    interpolated_query: Optional[str] = Field(None, description="Display-only query with literal values")
    get_sql_query: Optional[str] = Field(None, description="NL-to-SQL call used by natural search")
    generated_query: Optional[str] = Field(None, description="SQL generated by natural search")
    error_detail: Optional[str] = None


class FacetRow(CamelSchema):
    facet_type: str
    facet_value: str
    count: int


class FacetResponse(CamelSchema):
    """Facet counts over the active candidate population"""
    data: List[FacetRow] = Field(default_factory=list)
    total_count: int = 0
    search_type: str
    query: Optional[str] = Field(None, description="Interpolated facet query")
    error_detail: Optional[str] = None


class SearchWithFacetsResponse(CamelSchema):
    products: RetrievalResult
    facets: FacetResponse


class ExplainResponse(CamelSchema):
    data: List[Dict[str, Any]] = Field(default_factory=list)
    query: str
    error_detail: Optional[str] = None
