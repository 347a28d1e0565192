"""
Backend client for the BIRD routing daemon.

Runs ``birdc -r <query>`` for one backend variant and returns the raw
output lines. The client is constructed once at startup with everything it
needs (backend config, address family, cache, rate limiter, worker pool
size) and handed to the endpoint layer.
"""

from __future__ import annotations

import asyncio
import shlex
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Protocol, Tuple

from birdwatcher.bird.cache import QueryCache
from birdwatcher.bird.ratelimit import RateLimiter
from birdwatcher.config import BackendConfig
from birdwatcher.exceptions import BackendError, RateLimitExceeded
from birdwatcher.observability import get_logger

logger = get_logger(__name__)

DEFAULT_WORKER_POOL_SIZE = 8


class AddressFamily(str, Enum):
    """Address family served by the selected backend variant."""

    IPV4 = "4"
    IPV6 = "6"


@dataclass(frozen=True)
class QueryResult:
    """
    Output of one backend query.

    Attributes:
        lines: Output lines, reply banner removed
        from_cache: Whether the answer came from the query cache
        cached_at: When the output was produced by the daemon
    """

    lines: Tuple[str, ...]
    from_cache: bool
    cached_at: datetime


class BackendClient(Protocol):
    """What the endpoint layer needs from a backend client."""

    family: AddressFamily
    config: BackendConfig
    cache: QueryCache

    async def query(self, command: str) -> QueryResult:
        ...


class BirdClient:
    """
    Query client for one `birdc` backend.

    Thread-safe: cache and rate limiter carry their own locks; concurrent
    subprocesses are bounded by `worker_pool_size`.

    Example:
        >>> client = BirdClient(
        ...     config.bird,
        ...     AddressFamily.IPV4,
        ...     cache=QueryCache(config.bird.cache_ttl),
        ...     rate_limiter=RateLimiter(config.ratelimit),
        ... )
        >>> result = await client.query("show protocols all")
    """

    def __init__(
        self,
        config: BackendConfig,
        family: AddressFamily,
        *,
        cache: QueryCache,
        rate_limiter: RateLimiter,
        worker_pool_size: int = DEFAULT_WORKER_POOL_SIZE,
    ):
        if worker_pool_size < 1:
            raise ValueError("worker_pool_size must be at least 1")
        self.config = config
        self.family = family
        self.cache = cache
        self.rate_limiter = rate_limiter
        self.worker_pool_size = worker_pool_size
        self._semaphore = asyncio.Semaphore(worker_pool_size)

    async def query(self, command: str) -> QueryResult:
        """
        Run a query, answering from the cache when possible.

        Raises:
            RateLimitExceeded: if the query would exceed the per-minute budget
            BackendError: if `birdc` cannot be started or exits non-zero
        """
        cached = self.cache.get(command)
        if cached is not None:
            return QueryResult(lines=cached.lines, from_cache=True, cached_at=cached.cached_at)

        if not self.rate_limiter.allow():
            logger.warning("backend_rate_limited", command=command)
            raise RateLimitExceeded("Too many requests, please try again later")

        async with self._semaphore:
            lines = await self._run(command)

        entry = self.cache.put(command, lines)
        return QueryResult(lines=entry.lines, from_cache=False, cached_at=entry.cached_at)

    async def _run(self, command: str) -> Tuple[str, ...]:
        argv = [*shlex.split(self.config.command), "-r", command]
        logger.debug("backend_query", argv=argv, address_family=self.family.value)
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise BackendError(
                f"Could not run {self.config.command}: {exc}", command=command
            ) from exc

        stdout, stderr = await process.communicate()
        if process.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip()
            raise BackendError(
                message or f"{self.config.command} exited with status {process.returncode}",
                command=command,
                returncode=process.returncode,
            )
        return _strip_banner(stdout.decode("utf-8", errors="replace").splitlines())


def _strip_banner(lines: list[str]) -> Tuple[str, ...]:
    """Drop the ``BIRD x.y.z ready.`` greeting birdc prints first."""
    if lines and lines[0].startswith("BIRD ") and lines[0].rstrip().endswith("ready."):
        lines = lines[1:]
    return tuple(lines)
