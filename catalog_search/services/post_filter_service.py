"""
Post-filter stage.

Wraps an already ranked and paged query so that each remaining row is checked
by the engine's boolean classifier (ai.if) against a free-text condition.
"""

import logging
from typing import List, Optional, Sequence

from catalog_search.config.settings import settings
from catalog_search.services.query_builder import QueryParams

logger = logging.getLogger(__name__)

# Display fields concatenated into the text the classifier sees
DESCRIBED_COLUMNS = ["name", "brand", "category", "department", "product_description"]


class PostFilter:
    """Natural-language row filter applied after every cheaper filter"""

    def __init__(self, model_id: Optional[str] = None, alias: str = "ranked"):
        self.model_id = model_id if model_id is not None else settings.AI_FILTER_MODEL_ID
        self.alias = alias

    def is_active(self, condition: Optional[str]) -> bool:
        return bool(condition and condition.strip())

    def apply(
        self,
        inner_query: str,
        condition: Optional[str],
        params: QueryParams,
        order_by: Sequence[str]
    ) -> str:
        """
        Return inner_query wrapped with the classifier predicate.

        inner_query must not carry total_count; the wrapper recomputes it over
        the rows that pass. A blank condition returns inner_query unchanged.
        """
        if not self.is_active(condition):
            return inner_query

        condition_placeholder = params.add(condition.strip())
        described = ", ".join(f"{self.alias}.{column}" for column in DESCRIBED_COLUMNS)
        prompt = (
            "'Does the following product satisfy the condition \"' || "
            f"{condition_placeholder} || "
            "'\"? Product: ' || "
            f"CONCAT_WS(' ', {described})"
        )
        arguments: List[str] = [f"prompt => {prompt}"]
        if self.model_id:
            arguments.append(f"model_id => {params.add(self.model_id)}")

        logger.info(f"[Post Filter] Applying AI filter: {condition.strip()!r}")
        return "\n".join([
            f"SELECT {self.alias}.*, COUNT(*) OVER () AS total_count",
            f"FROM (\n{inner_query}\n) AS {self.alias}",
            f"WHERE ai.if({', '.join(arguments)})",
            "ORDER BY " + ", ".join(order_by),
        ])
