"""
Product repository: executes composed catalog queries.
Queries arrive as driver-level SQL with $N placeholders and a positional
parameter list, so they run through exec_driver_sql rather than text().
"""

import logging
from typing import Any, Dict, List, Sequence

from sqlalchemy.ext.asyncio import AsyncEngine

from catalog_search.config.database import engine as default_engine

logger = logging.getLogger(__name__)


class ProductRepository:
    """Repository for read-only product queries"""

    def __init__(self, db_engine: AsyncEngine = None):
        # One pooled connection per call so concurrent queries never share one
        self.engine = db_engine or default_engine

    async def fetch_all(self, query: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        """Run a query and return its rows as dicts, in result order"""
        async with self.engine.connect() as conn:
            result = await conn.exec_driver_sql(query, tuple(params))
            rows = [dict(row) for row in result.mappings().all()]
        logger.debug(f"[Product Repository] Fetched {len(rows)} rows")
        return rows

    async def fetch_read_only(self, query: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        """Run a query inside a read-only transaction"""
        async with self.engine.connect() as conn:
            async with conn.begin():
                await conn.exec_driver_sql("SET TRANSACTION READ ONLY")
                result = await conn.exec_driver_sql(query, tuple(params))
                rows = [dict(row) for row in result.mappings().all()]
        logger.debug(f"[Product Repository] Fetched {len(rows)} rows (read only)")
        return rows

    async def explain(self, query: str) -> List[Dict[str, Any]]:
        """Execution plan for a query, without running it"""
        statement = query.strip().rstrip(";").strip()
        if not statement:
            raise ValueError("Query text is required")
        return await self.fetch_read_only(f"EXPLAIN {statement}")
