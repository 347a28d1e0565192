"""
Backend collaborators: the `birdc` client, its cache and rate limiter, and
the business functions the endpoints call.
"""

from birdwatcher.bird.cache import CacheEntry, QueryCache
from birdwatcher.bird.client import AddressFamily, BackendClient, BirdClient, QueryResult
from birdwatcher.bird.ratelimit import RateLimiter

__all__ = [
    "AddressFamily",
    "BackendClient",
    "BirdClient",
    "CacheEntry",
    "QueryCache",
    "QueryResult",
    "RateLimiter",
]
