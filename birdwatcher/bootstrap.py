"""
Service startup for birdwatcher.

Startup is a fixed sequence of gates. Any gate failure is fatal: the error
is logged and the process exits with status 1, without retry and without a
partially started listener.

    created -> flags_parsed -> config_loaded -> tls_validated
            -> backend_selected -> router_built -> serving

Every state may also move to `terminated`.

Usage:
    birdwatcher -config /etc/birdwatcher/birdwatcher.conf
    birdwatcher -6 -worker-pool-size 16
    python -m birdwatcher
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Sequence, Set, Tuple

import uvicorn

from birdwatcher import VERSION
from birdwatcher.api import AccessLogMiddleware, EndpointContext, QueryLogWriter, create_app
from birdwatcher.bird import AddressFamily, BirdClient, QueryCache, RateLimiter
from birdwatcher.bird.client import DEFAULT_WORKER_POOL_SIZE
from birdwatcher.config import (
    DEFAULT_CONFIG_FILE,
    BackendConfig,
    BirdwatcherConfig,
    ServerConfig,
    load_config,
)
from birdwatcher.exceptions import BirdwatcherError, ConfigError, StartupError
from birdwatcher.observability import configure_logging, configure_query_logger, get_logger

logger = get_logger(__name__)


class StartupState(str, Enum):
    """Startup gates, in the order they are passed."""

    CREATED = "created"
    FLAGS_PARSED = "flags_parsed"
    CONFIG_LOADED = "config_loaded"
    TLS_VALIDATED = "tls_validated"
    BACKEND_SELECTED = "backend_selected"
    ROUTER_BUILT = "router_built"
    SERVING = "serving"
    TERMINATED = "terminated"


_ORDER = [
    StartupState.CREATED,
    StartupState.FLAGS_PARSED,
    StartupState.CONFIG_LOADED,
    StartupState.TLS_VALIDATED,
    StartupState.BACKEND_SELECTED,
    StartupState.ROUTER_BUILT,
    StartupState.SERVING,
]

# Each gate leads to the next one or to termination; termination is final
VALID_TRANSITIONS: Dict[StartupState, Set[StartupState]] = {
    state: {following, StartupState.TERMINATED}
    for state, following in zip(_ORDER, _ORDER[1:])
}
VALID_TRANSITIONS[StartupState.SERVING] = {StartupState.TERMINATED}
VALID_TRANSITIONS[StartupState.TERMINATED] = set()


def can_transition(from_state: StartupState, to_state: StartupState) -> bool:
    """
    Check if a startup transition is valid.

    Example:
        >>> can_transition(StartupState.CONFIG_LOADED, StartupState.TLS_VALIDATED)
        True
        >>> can_transition(StartupState.ROUTER_BUILT, StartupState.CONFIG_LOADED)
        False
    """
    return to_state in VALID_TRANSITIONS.get(from_state, set())


@dataclass(frozen=True)
class Flags:
    """Command line flags."""

    ipv6: bool
    worker_pool_size: int
    config: Path


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="birdwatcher",
        description="HTTP API for the BIRD routing daemon",
    )
    parser.add_argument(
        "-6", "--ipv6",
        dest="ipv6",
        action="store_true",
        help="Use bird6 instead of bird",
    )
    parser.add_argument(
        "-worker-pool-size", "--worker-pool-size",
        dest="worker_pool_size",
        type=_positive_int,
        default=DEFAULT_WORKER_POOL_SIZE,
        help="Number of concurrent backend queries",
    )
    parser.add_argument(
        "-config", "--config",
        dest="config",
        type=Path,
        default=DEFAULT_CONFIG_FILE,
        help="Configuration file location",
    )
    return parser


def parse_flags(argv: Optional[Sequence[str]] = None) -> Flags:
    """Parse command line flags; argparse exits with status 2 on bad input."""
    namespace = build_parser().parse_args(argv)
    return Flags(
        ipv6=namespace.ipv6,
        worker_pool_size=namespace.worker_pool_size,
        config=namespace.config,
    )


def validate_tls(server: ServerConfig) -> None:
    """
    Require a certificate and a key when TLS is enabled.

    Raises:
        StartupError: if TLS is enabled and `crt` or `key` is empty
    """
    if server.enable_tls and (not server.crt or not server.key):
        raise StartupError(
            "You have enabled TLS support. Please specify 'crt' and 'key' in birdwatcher config file.",
            gate=StartupState.TLS_VALIDATED.value,
        )


def select_backend(config: BirdwatcherConfig, ipv6: bool) -> Tuple[BackendConfig, AddressFamily]:
    """Pick `[bird6]` for IPv6, `[bird]` otherwise."""
    if ipv6:
        return config.bird6, AddressFamily.IPV6
    return config.bird, AddressFamily.IPV4


def log_service_info(config: BirdwatcherConfig, backend: BackendConfig, family: AddressFamily) -> None:
    """Log listen address, access restrictions and enabled modules."""
    allow_from = ", ".join(config.server.allow_from) if config.server.allow_from else "ALL"
    logger.info(
        "service_starting",
        version=VERSION,
        using=backend.command,
        listen=backend.listen,
        cache_ttl=str(backend.cache_ttl),
        address_family=family.value,
        allow_from=allow_from,
        modules_enabled=list(config.server.modules_enabled),
        per_peer_tables=config.parser.per_peer_tables,
        tls=config.server.enable_tls,
    )


ServeFunc = Callable[[Any, BackendConfig, ServerConfig], None]


def serve_uvicorn(app: Any, backend: BackendConfig, server: ServerConfig) -> None:
    """Bind `backend.listen` and serve until the process is stopped."""
    options: Dict[str, Any] = {}
    if server.enable_tls:
        options["ssl_certfile"] = server.crt
        options["ssl_keyfile"] = server.key

    uvicorn_server = uvicorn.Server(
        uvicorn.Config(
            app,
            host=backend.host,
            port=backend.port,
            log_config=None,
            access_log=False,
            server_header=False,
            **options,
        )
    )
    try:
        uvicorn_server.run()
    except SystemExit as exc:
        # uvicorn exits the process itself when the listener cannot bind
        raise StartupError(
            f"Could not listen on {backend.listen}", gate=StartupState.SERVING.value
        ) from exc
    if not uvicorn_server.started:
        raise StartupError(f"Could not listen on {backend.listen}", gate=StartupState.SERVING.value)


class ServiceBootstrap:
    """
    Runs the startup gates in order and then blocks serving requests.

    The serve function is injectable so the sequence can be exercised
    without binding a socket.

    Example:
        >>> ServiceBootstrap().run(["-config", "etc/birdwatcher/birdwatcher.conf"])
    """

    def __init__(self, serve: ServeFunc = serve_uvicorn):
        self.state = StartupState.CREATED
        self.flags: Optional[Flags] = None
        self.config: Optional[BirdwatcherConfig] = None
        self.backend: Optional[BackendConfig] = None
        self.family: Optional[AddressFamily] = None
        self.context: Optional[EndpointContext] = None
        self.app: Optional[AccessLogMiddleware] = None
        self._serve = serve

    def run(self, argv: Optional[Sequence[str]] = None) -> None:
        """
        Start the service.

        Raises:
            SystemExit: with status 1 when any gate fails
        """
        try:
            self._start(argv)
        except BirdwatcherError as exc:
            failed_in = self.state
            self.state = StartupState.TERMINATED
            logger.critical("startup_failed", state=failed_in.value, error=str(exc))
            raise SystemExit(1) from exc

    def _advance(self, to_state: StartupState) -> None:
        if not can_transition(self.state, to_state):
            raise StartupError(
                f"Invalid startup transition {self.state.value} -> {to_state.value}",
                gate=to_state.value,
            )
        logger.debug("startup_state_changed", from_state=self.state.value, to_state=to_state.value)
        self.state = to_state

    def _start(self, argv: Optional[Sequence[str]]) -> None:
        self.flags = parse_flags(argv)
        self._advance(StartupState.FLAGS_PARSED)

        try:
            self.config = load_config(self.flags.config)
        except ConfigError as exc:
            raise ConfigError(f"Loading birdwatcher configuration failed: {exc}") from exc
        try:
            configure_logging(
                level=self.config.logging.level,
                format=self.config.logging.format,
                log_file=self.config.logging.file,
            )
        except OSError as exc:
            raise ConfigError(f"Could not open log file {self.config.logging.file}: {exc}") from exc
        self._advance(StartupState.CONFIG_LOADED)

        validate_tls(self.config.server)
        self._advance(StartupState.TLS_VALIDATED)

        self.backend, self.family = select_backend(self.config, self.flags.ipv6)
        self._advance(StartupState.BACKEND_SELECTED)
        log_service_info(self.config, self.backend, self.family)

        self.context = self._build_context()
        app = create_app(self.config.server, self.context)
        self.app = AccessLogMiddleware(app, QueryLogWriter(configure_query_logger()))
        self._advance(StartupState.ROUTER_BUILT)

        validate_tls(self.config.server)
        self._advance(StartupState.SERVING)
        try:
            self._serve(self.app, self.backend, self.config.server)
        except OSError as exc:
            raise StartupError(f"Listener failed: {exc}", gate=StartupState.SERVING.value) from exc

    def _build_context(self) -> EndpointContext:
        client = BirdClient(
            self.backend,
            self.family,
            cache=QueryCache(self.backend.cache_ttl),
            rate_limiter=RateLimiter(self.config.ratelimit),
            worker_pool_size=self.flags.worker_pool_size,
        )
        return EndpointContext(
            client=client,
            server=self.config.server,
            parser=self.config.parser,
            status=self.config.status,
            version=VERSION,
        )


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Console entry point."""
    ServiceBootstrap().run(argv)


__all__ = [
    "Flags",
    "ServiceBootstrap",
    "StartupState",
    "VALID_TRANSITIONS",
    "can_transition",
    "main",
    "parse_flags",
    "select_backend",
    "serve_uvicorn",
    "validate_tls",
]
