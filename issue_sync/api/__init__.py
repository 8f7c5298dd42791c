"""
API endpoints module.
"""

from issue_sync.api import queries, sync, templates
from issue_sync.api.router import api_router

__all__ = [
    "queries",
    "sync",
    "templates",
    "api_router",
]
