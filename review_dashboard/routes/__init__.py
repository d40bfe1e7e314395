"""
Routes Package

HTTP routers of the dashboard API:
- gitlab: connection settings, project tracking, sync, webhook
- ai: provider keys, review limits, models, templates
- merge_requests: listing, detail, stats, review trigger
"""

from review_dashboard.routes.ai import router as ai_router
from review_dashboard.routes.gitlab import router as gitlab_router
from review_dashboard.routes.merge_requests import router as merge_requests_router

__all__ = ["ai_router", "gitlab_router", "merge_requests_router"]
