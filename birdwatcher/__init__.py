"""
Birdwatcher: HTTP gateway for BIRD routing daemon queries.

The package exposes the daemon's `birdc` command line as a small, read-only
JSON API. Which endpoints exist is decided by the `modules_enabled`
whitelist in the configuration file; see `birdwatcher.api.routes`.
"""

__version__ = "1.11.2"

VERSION = __version__

__all__ = ["VERSION", "__version__"]
