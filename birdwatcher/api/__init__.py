"""HTTP API for birdwatcher.

This package turns the module whitelist into FastAPI routes and provides
the access log middleware wrapped around them.
"""

from birdwatcher.api.access_log import AccessLogMiddleware, QueryLogWriter
from birdwatcher.api.endpoints import EndpointContext
from birdwatcher.api.routes import MODULE_ROUTES, build_router, create_app, is_module_enabled

__all__ = [
    "AccessLogMiddleware",
    "EndpointContext",
    "MODULE_ROUTES",
    "QueryLogWriter",
    "build_router",
    "create_app",
    "is_module_enabled",
]
