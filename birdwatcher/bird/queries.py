"""
Business functions behind the HTTP endpoints.

Each function validates its parameters, builds the `birdc` query, runs it
through the injected client and shapes the JSON payload. Output is passed
through as lines; only protocol headers, route counts and the
reconfiguration timestamp are picked out.
"""

from __future__ import annotations

import ipaddress
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from birdwatcher.bird.client import QueryResult
from birdwatcher.exceptions import InvalidParameter
from birdwatcher.observability import get_logger

if TYPE_CHECKING:
    from birdwatcher.api.endpoints import EndpointContext

logger = get_logger(__name__)

_NAME_RE = re.compile(r"^[A-Za-z0-9_.:-]{1,64}$")
_COUNT_RE = re.compile(r"^(\d+) of (\d+) routes")
_LAST_RECONFIG_RE = re.compile(r"^Last reconfiguration on (.*)$")


@dataclass(frozen=True)
class Answer:
    """Payload of a business function plus the backend results it used."""

    payload: Dict[str, Any]
    results: Tuple[QueryResult, ...]

    @property
    def from_cache(self) -> bool:
        return all(r.from_cache for r in self.results)

    @property
    def cached_at(self) -> datetime:
        return min(r.cached_at for r in self.results)


Params = Mapping[str, str]
QueryFunc = Callable[["EndpointContext", Params, Params], Awaitable[Answer]]


# Parameter validation

def _name(params: Params, key: str) -> str:
    """Protocol and table names: BIRD symbol characters only."""
    value = params.get(key)
    if not value or not _NAME_RE.match(value):
        raise InvalidParameter(key, value)
    return value


def _address(params: Params, key: str) -> str:
    value = params.get(key)
    try:
        return str(ipaddress.ip_address(value or ""))
    except ValueError as exc:
        raise InvalidParameter(key, value) from exc


def _network(params: Params, key: str) -> str:
    value = params.get(key)
    try:
        return str(ipaddress.ip_network(value or "", strict=False))
    except ValueError as exc:
        raise InvalidParameter(key, value) from exc


# Output handling

def _protocol_blocks(lines: Iterable[str]) -> Dict[str, Dict[str, Any]]:
    """Group `show protocols all` output by protocol header line."""
    blocks: Dict[str, Dict[str, Any]] = {}
    current: Optional[Dict[str, Any]] = None
    for line in lines:
        if not line.strip():
            continue
        if line[0].isspace():
            if current is not None:
                current["lines"].append(line.strip())
            continue
        fields = line.split()
        if fields[:2] == ["name", "proto"]:
            continue
        current = {
            "proto": fields[1] if len(fields) > 1 else "",
            "table": fields[2] if len(fields) > 2 else "",
            "state": fields[3] if len(fields) > 3 else "",
            "lines": [],
        }
        blocks[fields[0]] = current
    return blocks


def _route_count(lines: Iterable[str]) -> Optional[int]:
    for line in lines:
        match = _COUNT_RE.match(line.strip())
        if match:
            return int(match.group(1))
    return None


def _last_reconfig(context: "EndpointContext", lines: Iterable[str]) -> Optional[str]:
    """Resolve the reconfiguration timestamp from the configured source."""
    source = context.status.reconfig_timestamp_source
    if source == "bird":
        for line in lines:
            match = _LAST_RECONFIG_RE.match(line.strip())
            if match:
                return match.group(1)
        return None

    config_path = context.client.config.config
    if config_path is None:
        return None
    try:
        if source == "config_modified":
            mtime = config_path.stat().st_mtime
            return datetime.fromtimestamp(mtime, tz=timezone.utc).isoformat()
        match = re.search(
            context.status.reconfig_timestamp_match,
            config_path.read_text(encoding="utf-8", errors="replace"),
            re.MULTILINE,
        )
    except OSError as exc:
        logger.warning("reconfig_timestamp_unavailable", path=str(config_path), error=str(exc))
        return None
    if match is None:
        return None
    return match.group(1) if match.groups() else match.group(0)


async def _run(context: "EndpointContext", command: str, key: str) -> Answer:
    result = await context.client.query(command)
    return Answer(payload={key: list(result.lines)}, results=(result,))


# Endpoints

async def status(context: "EndpointContext", params: Params, query: Params) -> Answer:
    result = await context.client.query("show status")
    payload = {
        "status": {
            "lines": list(result.lines),
            "last_reconfig": _last_reconfig(context, result.lines),
        }
    }
    return Answer(payload=payload, results=(result,))


async def protocols(context: "EndpointContext", params: Params, query: Params) -> Answer:
    result = await context.client.query("show protocols all")
    return Answer(payload={"protocols": _protocol_blocks(result.lines)}, results=(result,))


async def protocols_bgp(context: "EndpointContext", params: Params, query: Params) -> Answer:
    result = await context.client.query("show protocols all")
    bgp = {
        name: block
        for name, block in _protocol_blocks(result.lines).items()
        if block["proto"] == "BGP"
    }
    return Answer(payload={"protocols": bgp}, results=(result,))


async def symbols(context: "EndpointContext", params: Params, query: Params) -> Answer:
    return await _run(context, "show symbols", "symbols")


async def symbols_tables(context: "EndpointContext", params: Params, query: Params) -> Answer:
    return await _run(context, "show symbols table", "symbols")


async def symbols_protocols(context: "EndpointContext", params: Params, query: Params) -> Answer:
    return await _run(context, "show symbols protocol", "symbols")


async def routes_protocol(context: "EndpointContext", params: Params, query: Params) -> Answer:
    protocol = _name(params, "protocol")
    return await _run(context, f"show route all protocol {protocol}", "routes")


async def routes_table(context: "EndpointContext", params: Params, query: Params) -> Answer:
    table = _name(params, "table")
    return await _run(context, f"show route all table {table}", "routes")


async def routes_count_protocol(context: "EndpointContext", params: Params, query: Params) -> Answer:
    protocol = _name(params, "protocol")
    result = await context.client.query(f"show route protocol {protocol} count")
    return Answer(payload={"count": _route_count(result.lines)}, results=(result,))


async def routes_count_table(context: "EndpointContext", params: Params, query: Params) -> Answer:
    table = _name(params, "table")
    result = await context.client.query(f"show route table {table} count")
    return Answer(payload={"count": _route_count(result.lines)}, results=(result,))


async def routes_filtered(context: "EndpointContext", params: Params, query: Params) -> Answer:
    protocol = _name(params, "protocol")
    return await _run(context, f"show route all filtered protocol {protocol}", "routes")


async def routes_noexport(context: "EndpointContext", params: Params, query: Params) -> Answer:
    protocol = _name(params, "protocol")
    parser = context.parser
    # With per-peer tables the export filter sits on the pipe, not the peer
    if parser.per_peer_tables and protocol.startswith(parser.peer_protocol_prefix):
        protocol = parser.pipe_protocol_prefix + protocol[len(parser.peer_protocol_prefix):]
    return await _run(context, f"show route all noexport {protocol}", "routes")


async def routes_prefixed(context: "EndpointContext", params: Params, query: Params) -> Answer:
    prefix = _network(query, "prefix")
    return await _run(context, f"show route all {prefix}", "routes")


async def route_net(context: "EndpointContext", params: Params, query: Params) -> Answer:
    net = _address(params, "net")
    return await _run(context, f"show route for {net} all", "routes")


async def route_net_table(context: "EndpointContext", params: Params, query: Params) -> Answer:
    net = _address(params, "net")
    table = _name(params, "table")
    return await _run(context, f"show route for {net} table {table} all", "routes")


async def routes_peer(context: "EndpointContext", params: Params, query: Params) -> Answer:
    peer = _address(query, "peer")
    return await _run(context, f"show route all where from={peer}", "routes")


async def routes_dump(context: "EndpointContext", params: Params, query: Params) -> Answer:
    imported = await context.client.query("show route all")
    filtered = await context.client.query("show route all filtered")
    payload: Dict[str, List[str]] = {
        "imported": list(imported.lines),
        "filtered": list(filtered.lines),
    }
    return Answer(payload=payload, results=(imported, filtered))
