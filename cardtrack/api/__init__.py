from cardtrack.api.collection import router as collection_router
from cardtrack.api.health import router as health_router

__all__ = [
    "collection_router",
    "health_router",
]
