"""
API routes module.
"""

from jobrelay.api.routes.auth import router as auth_router
from jobrelay.api.routes.configs import router as configs_router
from jobrelay.api.routes.health import router as health_router
from jobrelay.api.routes.jobs import router as jobs_router

__all__ = ["jobs_router", "configs_router", "auth_router", "health_router"]
