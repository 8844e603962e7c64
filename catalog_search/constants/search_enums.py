"""
Enums and fixed values for catalog search.
Contains retrieval strategies, facet dimensions and price buckets.
"""

from enum import Enum
from typing import NamedTuple, Optional


class SearchType(str, Enum):
    """Retrieval strategies"""
    LEXICAL = "lexical"
    FULLTEXT = "fulltext"
    SEMANTIC = "semantic"
    HYBRID = "hybrid"
    IMAGE = "image"
    NATURAL = "natural"


# Identifiers used by older clients
SEARCH_TYPE_ALIASES = {
    "traditionalSql": SearchType.LEXICAL,
    "textEmbeddings": SearchType.SEMANTIC,
}


class RetrievalMethod(str, Enum):
    """Labels written into each result row"""
    SQL = "SQL"
    FTS = "FTS"
    VECTOR = "VECTOR"
    IMAGE = "IMAGE"


class FacetType(str, Enum):
    """Facet dimensions, in compile and display order"""
    BRAND = "brand"
    CATEGORY = "category"
    PRICE_RANGE = "price_range"


class PriceBucket(NamedTuple):
    """Half-open price interval [lower, upper); upper None means unbounded"""
    label: str
    lower: int
    upper: Optional[int]


PRICE_BUCKETS = (
    PriceBucket("$0 - $49.99", 0, 50),
    PriceBucket("$50 - $99.99", 50, 100),
    PriceBucket("$100 - $249.99", 100, 250),
    PriceBucket("$250 - $499.99", 250, 500),
    PriceBucket("$500+", 500, None),
)

PRICE_BUCKETS_BY_LABEL = {bucket.label: bucket for bucket in PRICE_BUCKETS}


def parse_search_type(value) -> SearchType:
    """Resolve a strategy id or legacy alias; raises ValueError when unknown"""
    if isinstance(value, SearchType):
        return value
    if value in SEARCH_TYPE_ALIASES:
        return SEARCH_TYPE_ALIASES[value]
    try:
        return SearchType(value)
    except ValueError:
        valid = [item.value for item in SearchType] + list(SEARCH_TYPE_ALIASES)
        raise ValueError(f"Unknown search type '{value}'. Expected one of: {', '.join(valid)}")


def get_all_price_bucket_labels():
    """Get all price bucket labels"""
    return [bucket.label for bucket in PRICE_BUCKETS]
