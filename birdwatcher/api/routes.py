"""
Module whitelist to router.

Every HTTP route belongs to exactly one module. `MODULE_ROUTES` is the
fixed table; `build_router` registers the routes of each module listed in
`[server] modules_enabled` and nothing else, so a disabled module's paths
answer 404. Names outside the table are ignored.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

from fastapi import APIRouter, FastAPI

from birdwatcher.api import endpoints
from birdwatcher.api.endpoints import EndpointContext, Handler, HandlerFactory
from birdwatcher.bird import queries
from birdwatcher.config import ServerConfig
from birdwatcher.observability import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Route:
    """
    One registered endpoint.

    `path` uses `{name}` placeholders; matched values reach the handler as
    named string parameters.
    """

    method: str
    path: str
    handler: HandlerFactory
    description: str = ""


def _version(context: EndpointContext) -> Handler:
    return endpoints.version(context.version)


MODULE_ROUTES: Dict[str, Tuple[Route, ...]] = {
    "status": (
        Route("GET", "/version", _version, "Birdwatcher version"),
        Route("GET", "/status", endpoints.endpoint(queries.status), "Daemon status"),
    ),
    "protocols": (
        Route("GET", "/protocols", endpoints.endpoint(queries.protocols)),
    ),
    "protocols_bgp": (
        Route("GET", "/protocols/bgp", endpoints.endpoint(queries.protocols_bgp)),
    ),
    "symbols": (
        Route("GET", "/symbols", endpoints.endpoint(queries.symbols)),
    ),
    "symbols_tables": (
        Route("GET", "/symbols/tables", endpoints.endpoint(queries.symbols_tables)),
    ),
    "symbols_protocols": (
        Route("GET", "/symbols/protocols", endpoints.endpoint(queries.symbols_protocols)),
    ),
    "routes_protocol": (
        Route("GET", "/routes/protocol/{protocol}", endpoints.endpoint(queries.routes_protocol)),
    ),
    "routes_table": (
        Route("GET", "/routes/table/{table}", endpoints.endpoint(queries.routes_table)),
    ),
    "routes_count_protocol": (
        Route(
            "GET",
            "/routes/count/protocol/{protocol}",
            endpoints.endpoint(queries.routes_count_protocol),
        ),
    ),
    "routes_count_table": (
        Route("GET", "/routes/count/table/{table}", endpoints.endpoint(queries.routes_count_table)),
    ),
    "routes_filtered": (
        Route("GET", "/routes/filtered/{protocol}", endpoints.endpoint(queries.routes_filtered)),
    ),
    "routes_noexport": (
        Route("GET", "/routes/noexport/{protocol}", endpoints.endpoint(queries.routes_noexport)),
    ),
    "routes_prefixed": (
        Route(
            "GET",
            "/routes/prefix",
            endpoints.endpoint(queries.routes_prefixed),
            "Routes for the network given in the prefix query parameter",
        ),
    ),
    "route_net": (
        Route("GET", "/route/net/{net}", endpoints.endpoint(queries.route_net)),
        Route("GET", "/route/net/{net}/table/{table}", endpoints.endpoint(queries.route_net_table)),
    ),
    "routes_peer": (
        Route(
            "GET",
            "/routes/peer",
            endpoints.endpoint(queries.routes_peer),
            "Routes learned from the address given in the peer query parameter",
        ),
    ),
    "routes_dump": (
        Route("GET", "/routes/dump", endpoints.endpoint(queries.routes_dump)),
    ),
}


def is_module_enabled(module: str, modules_enabled: Sequence[str]) -> bool:
    """Exact, case-sensitive whitelist lookup."""
    for enabled in modules_enabled:
        if enabled == module:
            return True
    return False


def enabled_routes(modules_enabled: Sequence[str]) -> List[Route]:
    """Routes of every enabled module, in table order, each listed once."""
    routes: List[Route] = []
    for module, module_routes in MODULE_ROUTES.items():
        if is_module_enabled(module, modules_enabled):
            routes.extend(module_routes)
    return routes


def build_router(modules_enabled: Sequence[str], context: EndpointContext) -> APIRouter:
    """
    Build the router for the enabled modules.

    Args:
        modules_enabled: Whitelist from `[server] modules_enabled`
        context: Collaborators the handlers are bound to

    Returns:
        APIRouter holding one route per enabled table entry
    """
    router = APIRouter()
    for route in enabled_routes(modules_enabled):
        handler = route.handler(context)
        router.add_api_route(
            route.path,
            handler,
            methods=[route.method],
            name=handler.__name__,
            description=route.description,
        )

    unknown = [m for m in modules_enabled if m not in MODULE_ROUTES]
    if unknown:
        logger.debug("unknown_modules_ignored", modules=unknown)
    logger.info("router_built", routes=len(router.routes))
    return router


def create_app(server: ServerConfig, context: EndpointContext) -> FastAPI:
    """
    Factory for the birdwatcher application.

    Interactive docs and the OpenAPI schema are disabled so the only paths
    served are those of the enabled modules.
    """
    app = FastAPI(
        title="Birdwatcher",
        description="HTTP API for the BIRD routing daemon",
        version=context.version,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.include_router(build_router(server.modules_enabled, context))
    return app


__all__ = [
    "MODULE_ROUTES",
    "Route",
    "build_router",
    "create_app",
    "enabled_routes",
    "is_module_enabled",
]
