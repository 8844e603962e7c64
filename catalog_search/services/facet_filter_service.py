"""
Facet filter compiler.
Turns the selected facets into a boolean predicate plus bound parameters.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from catalog_search.constants.search_enums import FacetType, PriceBucket, PRICE_BUCKETS_BY_LABEL
from catalog_search.services.query_builder import QueryParams, and_all, or_any
from catalog_search.utils.sql_format import to_sql_literal

logger = logging.getLogger(__name__)

SelectedFacets = Dict[str, List[str]]

# Multi-valued dimensions bound as one array parameter each, in compile order
ARRAY_FACET_COLUMNS = (
    (FacetType.BRAND, "brand"),
    (FacetType.CATEGORY, "category"),
)

PRICE_COLUMN = "retail_price"


@dataclass
class FacetFilter:
    """Compiled facet predicate. params holds only the values this filter bound."""
    predicate: str = ""
    params: List[Any] = field(default_factory=list)
    next_index: int = 1


def parse_selected_facets(raw) -> SelectedFacets:
    """
    Normalize a facet selection given as a dict or a JSON string.

    Malformed input is logged and treated as "no facets selected".
    """
    if raw is None or raw == "":
        return {}

    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except (json.JSONDecodeError, TypeError) as e:
            logger.warning(f"[Facet Filter] Ignoring malformed facets JSON {raw!r}: {e}")
            return {}

    if not isinstance(raw, dict):
        logger.warning(f"[Facet Filter] Ignoring facets of type {type(raw).__name__}")
        return {}

    known = {facet.value for facet in FacetType}
    selected: SelectedFacets = {}
    for key, values in raw.items():
        if key not in known:
            logger.warning(f"[Facet Filter] Ignoring unknown facet dimension: {key}")
            continue
        if isinstance(values, str):
            values = [values]
        if not isinstance(values, (list, tuple, set)):
            logger.warning(f"[Facet Filter] Ignoring non-list values for facet {key}: {values!r}")
            continue

        cleaned = []
        for value in values:
            if value is None or value == "":
                continue
            value = str(value)
            if value not in cleaned:
                cleaned.append(value)
        if cleaned:
            selected[key] = cleaned

    return selected


def price_bucket_predicate(bucket: PriceBucket, column: str = PRICE_COLUMN) -> str:
    """Half-open interval predicate for one bucket, as literal SQL"""
    lower = f"{column} >= {to_sql_literal(bucket.lower)}"
    if bucket.upper is None:
        return f"({lower})"
    return f"({lower} AND {column} < {to_sql_literal(bucket.upper)})"


def compile_price_ranges(labels: List[str], column: str = PRICE_COLUMN) -> str:
    predicates = []
    for label in labels:
        bucket = PRICE_BUCKETS_BY_LABEL.get(label)
        if bucket is None:
            logger.warning(f"[Facet Filter] Unknown price range '{label}', matching nothing")
            predicates.append("FALSE")
        else:
            predicates.append(price_bucket_predicate(bucket, column))
    return or_any(predicates)


def compile_facet_filters(
    selected_facets: Optional[SelectedFacets],
    params: Optional[QueryParams] = None
) -> FacetFilter:
    """
    Compile the facet selection into one predicate.

    Brand and category each bind a single array parameter; price ranges are
    fixed constants and are rendered as literals. Dimensions are processed
    in a fixed order so parameter numbering is reproducible.
    """
    if params is None:
        params = QueryParams()

    selected = parse_selected_facets(selected_facets)
    bound_before = len(params)
    predicates = []

    for facet_type, column in ARRAY_FACET_COLUMNS:
        values = selected.get(facet_type.value)
        if values:
            placeholder = params.add(list(values))
            predicates.append(f"{column} = ANY({placeholder})")

    price_labels = selected.get(FacetType.PRICE_RANGE.value)
    if price_labels:
        predicates.append(compile_price_ranges(price_labels))

    facet_filter = FacetFilter(
        predicate=and_all(predicates),
        params=params.values[bound_before:],
        next_index=params.next_index
    )
    logger.debug(f"[Facet Filter] Compiled {selected} -> {facet_filter.predicate!r}")
    return facet_filter
