"""Handler factories for the birdwatcher HTTP API.

`endpoint(query)` wraps a business function from `birdwatcher.bird.queries`
into an HTTP handler: it checks the client against `allow_from`, passes the
named path placeholders and query string to the business function, and
wraps the payload in the common envelope:

    {
        "api": {
            "version": "1.11.2",
            "result_from_cache": false,
            "cache_status": {"cached_at": "2024-01-01T12:00:00+00:00", "ttl": 300},
            "ip_version": "4"
        },
        "protocols": {...}
    }

Request errors become ``{"error": "..."}`` with the status code carried by
the exception (400, 403, 429, 500).

`version(version_string)` answers the bare version as plain text.
"""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence

from fastapi import Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse

from birdwatcher import VERSION
from birdwatcher.bird.client import BackendClient
from birdwatcher.bird.queries import Answer, QueryFunc
from birdwatcher.config import ParserConfig, ServerConfig, StatusConfig
from birdwatcher.exceptions import AccessDenied, RequestError
from birdwatcher.observability import clear_correlation_id, get_logger, set_correlation_id

logger = get_logger(__name__)

Handler = Callable[[Request], Awaitable[Response]]


@dataclass(frozen=True)
class EndpointContext:
    """Collaborators and settings shared by every handler.

    Attributes:
        client: Backend client for the selected address family
        server: `[server]` section (allow-list)
        parser: `[parser]` section (per-peer table naming)
        status: `[status]` section (reconfiguration timestamp source)
        version: Version string reported in every response
    """

    client: BackendClient
    server: ServerConfig
    parser: ParserConfig
    status: StatusConfig
    version: str = VERSION


HandlerFactory = Callable[[EndpointContext], Handler]


def check_access(client_host: Optional[str], allow_from: Sequence[str]) -> None:
    """Raise AccessDenied unless `client_host` is allowed.

    An empty allow-list admits everyone. Entries match either the exact
    client string or, for network entries, any address inside them.
    """
    if not allow_from:
        return
    if not client_host:
        raise AccessDenied("unknown client")

    try:
        address = ipaddress.ip_address(client_host)
    except ValueError:
        address = None

    for allowed in allow_from:
        if allowed == client_host:
            return
        if address is None:
            continue
        try:
            if address in ipaddress.ip_network(allowed, strict=False):
                return
        except ValueError:
            continue
    raise AccessDenied(client_host)


def _envelope(context: EndpointContext, answer: Answer) -> Dict[str, Any]:
    return {
        "api": {
            "version": context.version,
            "result_from_cache": answer.from_cache,
            "cache_status": {
                "cached_at": answer.cached_at.isoformat(),
                "ttl": int(context.client.cache.ttl.total_seconds()),
            },
            "ip_version": context.client.family.value,
        },
        **answer.payload,
    }


def endpoint(query: QueryFunc) -> HandlerFactory:
    """Turn a business function into a handler factory.

    Args:
        query: Coroutine ``(context, path_params, query_params) -> Answer``

    Returns:
        Callable that binds the handler to an EndpointContext
    """

    def factory(context: EndpointContext) -> Handler:
        async def handler(request: Request) -> Response:
            set_correlation_id(request.headers.get("X-Request-ID"))
            try:
                check_access(
                    request.client.host if request.client else None,
                    context.server.allow_from,
                )
                answer = await query(context, request.path_params, request.query_params)
            except RequestError as exc:
                logger.warning(
                    "request_failed",
                    path=request.url.path,
                    status_code=exc.status_code,
                    error=str(exc),
                )
                return JSONResponse({"error": str(exc)}, status_code=exc.status_code)
            finally:
                clear_correlation_id()
            return JSONResponse(_envelope(context, answer))

        handler.__name__ = query.__name__
        return handler

    return factory


def version(version_string: str) -> Handler:
    """Handler answering `version_string` as text/plain."""

    async def handler(request: Request) -> Response:
        return PlainTextResponse(version_string)

    handler.__name__ = "version"
    return handler
