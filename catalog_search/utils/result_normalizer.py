"""
Result normalizer: turns raw database rows into API rows.
"""

import re
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from catalog_search.config.settings import settings

TOTAL_COUNT_COLUMN = "total_count"
FUSION_SCORE_COLUMN = "rrf_score"
IMAGE_URI_COLUMN = "product_image_uri"

_WORD_PATTERN = re.compile(r"[A-Z]+(?![a-z])|[A-Z]?[a-z]+|[0-9]+")


def camel_case(key: str) -> str:
    """product_image_uri -> productImageUri, QUERY PLAN -> queryPlan"""
    words = _WORD_PATTERN.findall(key)
    if not words:
        return key
    return words[0].lower() + "".join(word[:1].upper() + word[1:].lower() for word in words[1:])


def resolve_storage_uri(uri: Any) -> Any:
    if isinstance(uri, str) and uri.startswith(settings.STORAGE_URI_PREFIX):
        return settings.STORAGE_PUBLIC_URL + uri[len(settings.STORAGE_URI_PREFIX):]
    return uri


def camel_case_row(row: Dict[str, Any]) -> Dict[str, Any]:
    converted: Dict[str, Any] = {}
    for key, value in row.items():
        new_key = camel_case(key)
        if new_key in converted:
            raise ValueError(f"Column '{key}' collides with another column as '{new_key}'")
        converted[new_key] = value
    return converted


def normalize_rows(
    rows: List[Dict[str, Any]],
    score_digits: Optional[int] = None
) -> Tuple[List[Dict[str, Any]], Optional[int]]:
    """
    Strip total_count (captured once from the first row), resolve storage
    image URIs, round the fusion score and camelCase the keys.
    """
    if score_digits is None:
        score_digits = settings.RRF_SCORE_DIGITS

    total_count = None
    normalized = []
    for row in rows:
        row = dict(row)
        count = row.pop(TOTAL_COUNT_COLUMN, None)
        if total_count is None and count is not None:
            total_count = int(count)

        if IMAGE_URI_COLUMN in row:
            row[IMAGE_URI_COLUMN] = resolve_storage_uri(row[IMAGE_URI_COLUMN])

        score = row.get(FUSION_SCORE_COLUMN)
        if isinstance(score, (float, Decimal)):
            row[FUSION_SCORE_COLUMN] = round(float(score), score_digits)

        normalized.append(camel_case_row(row))

    return normalized, total_count
