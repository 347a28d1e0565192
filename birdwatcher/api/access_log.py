"""
Access logging.

`AccessLogMiddleware` renders one Common Log Format line per HTTP request
and hands it to a write sink. `QueryLogWriter` is that sink: it forwards
each line to the timestamp-prefixed query logger.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Protocol, Union

from starlette.types import ASGIApp, Message, Receive, Scope, Send


class LineSink(Protocol):
    def write(self, data: bytes) -> int:
        ...


class QueryLogWriter:
    """
    File-like adapter from a stdlib logger to a byte sink.

    Each `write` call emits its argument through the logger exactly once,
    unmodified, and reports the full length as written. Bytes that are not
    valid UTF-8 travel as surrogate escapes, which a stream opened with
    `errors="surrogateescape"` turns back into the original bytes.
    Failures inside the logger are not reported back. Handlers serialize
    records with their own lock, so concurrent writers never interleave
    partial lines.
    """

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def write(self, data: Union[bytes, bytearray, str]) -> int:
        if isinstance(data, (bytes, bytearray)):
            text = bytes(data).decode("utf-8", errors="surrogateescape")
        else:
            text = data
        try:
            self.logger.info(text)
        except Exception:
            # logging faults must not reach request handling
            pass
        return len(data)

    def flush(self) -> None:
        pass


def format_access_line(
    scope: Scope,
    status: int,
    size: int,
    when: datetime,
) -> str:
    """Common Log Format: ``host - - [ts] "METHOD uri PROTO" status size``."""
    client = scope.get("client")
    host = client[0] if client else "-"

    uri = scope.get("raw_path") or scope.get("path", "").encode("utf-8")
    if isinstance(uri, bytes):
        uri = uri.decode("utf-8", errors="surrogateescape")
    query_string = scope.get("query_string", b"")
    if query_string:
        uri = f"{uri}?{query_string.decode('utf-8', errors='surrogateescape')}"

    protocol = f"HTTP/{scope.get('http_version', '1.1')}"
    timestamp = when.strftime("%d/%b/%Y:%H:%M:%S %z")
    return f'{host} - - [{timestamp}] "{scope.get("method", "-")} {uri} {protocol}" {status} {size}\n'


class AccessLogMiddleware:
    """ASGI middleware writing one access log line per HTTP request."""

    def __init__(self, app: ASGIApp, sink: LineSink):
        self.app = app
        self.sink = sink

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        started = datetime.now().astimezone()
        status = 500
        size = 0

        async def send_wrapper(message: Message) -> None:
            nonlocal status, size
            if message["type"] == "http.response.start":
                status = message["status"]
            elif message["type"] == "http.response.body":
                size += len(message.get("body", b""))
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            line = format_access_line(scope, status, size, started)
            self.sink.write(line.encode("utf-8", errors="surrogateescape"))
