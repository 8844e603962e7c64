from pydantic import BaseModel, Field
from datetime import datetime
from typing import Dict, List, Optional


class HealthResponse(BaseModel):
    status: str = Field(..., description="healthy, or degraded when a search type is unavailable")
    timestamp: datetime
    version: str
    database: str
    embedding_provider: str
    extensions: Dict[str, bool] = Field(default_factory=dict)
    available_search_types: List[str] = Field(default_factory=list)


class ReadinessResponse(BaseModel):
    status: str
    database: str
    error: Optional[str] = None
