"""API routers package.

This package contains all FastAPI routers for the application.
Each router handles a specific domain of the API.
"""

from .comments import router as comments_router
from .contents import router as contents_router
from .permissions import router as permissions_router

__all__ = [
    "comments_router",
    "contents_router",
    "permissions_router",
]
