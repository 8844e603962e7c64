from fastapi import APIRouter
from .health_route import router as health_router
from .search_route import router as search_router

# Main router that combines all route modules
router = APIRouter()

router.include_router(health_router, prefix="/health", tags=["Health"])
router.include_router(search_router, prefix="/products", tags=["Products"])
