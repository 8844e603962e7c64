from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import bindparam, text

from catalog_search.config.settings import settings
from catalog_search.config.database import get_db
from catalog_search.constants.search_enums import SearchType
from catalog_search.schemas.health_schema import HealthResponse, ReadinessResponse
from datetime import datetime, timezone
from typing import Dict, Iterable, List

router = APIRouter()

SEARCH_EXTENSIONS = ["vector", "google_ml_integration", "alloydb_ai_nl"]

_installed_extensions = text(
    "SELECT extname FROM pg_extension WHERE extname IN :names"
).bindparams(bindparam("names", expanding=True))


def available_search_types(installed: Iterable[str], embedding_provider: str) -> List[str]:
    """Search types the database can serve with the installed extensions"""
    installed = set(installed)
    available = [SearchType.LEXICAL, SearchType.FULLTEXT]
    # In-query embeddings need the ML integration; local ones only need pgvector
    embeddings = "vector" in installed and (
        embedding_provider == "local" or "google_ml_integration" in installed
    )
    if embeddings:
        available += [SearchType.SEMANTIC, SearchType.IMAGE, SearchType.HYBRID]
    if "alloydb_ai_nl" in installed:
        available.append(SearchType.NATURAL)
    return [search_type.value for search_type in available]


async def installed_extensions(db: AsyncSession) -> Dict[str, bool]:
    result = await db.execute(_installed_extensions, {"names": SEARCH_EXTENSIONS})
    installed = set(result.scalars().all())
    return {extension: extension in installed for extension in SEARCH_EXTENSIONS}


@router.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_db)):
    """
    Health check reporting the search extensions and the search types they enable
    """
    try:
        extensions = await installed_extensions(db)
        db_status = "connected"
    except Exception:
        extensions = {extension: False for extension in SEARCH_EXTENSIONS}
        db_status = "disconnected"

    installed = [extension for extension, present in extensions.items() if present]
    search_types = available_search_types(installed, settings.EMBEDDING_PROVIDER) if db_status == "connected" else []
    every_type = len(search_types) == len(SearchType)

    return HealthResponse(
        status="healthy" if every_type else "degraded",
        timestamp=datetime.now(timezone.utc),
        version=settings.VERSION,
        database=db_status,
        embedding_provider=settings.EMBEDDING_PROVIDER,
        extensions=extensions,
        available_search_types=search_types
    )


@router.get("/ready", response_model=ReadinessResponse)
async def readiness_check(response: Response, db: AsyncSession = Depends(get_db)):
    """
    Ready once the database answers and pgvector is installed
    """
    try:
        extensions = await installed_extensions(db)
    except Exception as e:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return ReadinessResponse(status="not ready", database="disconnected", error=str(e))

    if not extensions["vector"]:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return ReadinessResponse(status="not ready", database="connected", error="vector extension missing")
    return ReadinessResponse(status="ready", database="connected")


@router.get("/live")
async def liveness_check():
    """
    Liveness probe for container orchestrators
    """
    return {"status": "alive"}
