"""
API route modules.
"""

from .jobs import router as jobs_router
from .misc import router as misc_router
from .sources import router as sources_router
from .users import router as users_router

__all__ = [
    "jobs_router",
    "misc_router",
    "sources_router",
    "users_router",
]
