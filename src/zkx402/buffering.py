"""
Response buffering for paid requests.

``BufferedResponseSink`` wraps a real ``ResponseSink`` and records every
response-producing call until ``release()``. Release replays the recorded
calls in order against the real sink, exactly once; afterwards calls go
straight through. Nothing reaches the transport before release, so a
settlement failure can still replace the handler's response.

Once bytes have physically left through the real sink they cannot be
recalled; ``headers_sent`` reports that state.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, MutableMapping, Optional, Protocol

Message = MutableMapping[str, Any]
Send = Callable[[Message], Awaitable[None]]
RawHeaders = list[tuple[bytes, bytes]]


class ResponseSink(Protocol):
    @property
    def headers_sent(self) -> bool: ...

    async def write_head(self, status: int, headers: RawHeaders) -> None: ...

    async def write(self, body: bytes) -> None: ...

    async def end(self, body: bytes = b"") -> None: ...

    async def flush_headers(self) -> None: ...


class AsgiResponseSink:
    """ResponseSink emitting ASGI ``http.response.*`` messages."""

    def __init__(self, send: Send):
        self._send = send
        self._start: Optional[Message] = None
        self._headers_sent = False

    @property
    def headers_sent(self) -> bool:
        return self._headers_sent

    async def write_head(self, status: int, headers: RawHeaders) -> None:
        if self._headers_sent:
            raise RuntimeError("Cannot write head: headers already sent")
        self._start = {"type": "http.response.start", "status": status, "headers": list(headers)}

    async def flush_headers(self) -> None:
        if self._headers_sent:
            return
        if self._start is None:
            raise RuntimeError("Cannot send response body before write_head")
        await self._send(self._start)
        self._headers_sent = True

    async def write(self, body: bytes) -> None:
        await self.flush_headers()
        await self._send({"type": "http.response.body", "body": body, "more_body": True})

    async def end(self, body: bytes = b"") -> None:
        await self.flush_headers()
        await self._send({"type": "http.response.body", "body": body, "more_body": False})


class CallKind(str, Enum):
    WRITE_HEAD = "write_head"
    WRITE = "write"
    END = "end"
    FLUSH_HEADERS = "flush_headers"


@dataclass(frozen=True)
class BufferedCall:
    kind: CallKind
    args: tuple = ()


class BufferedResponseSink:
    """Decorator over a ResponseSink that holds output until released."""

    def __init__(self, sink: ResponseSink):
        self._sink = sink
        self._calls: list[BufferedCall] = []
        self._extra_headers: RawHeaders = []
        self._released = False
        self.status_code: Optional[int] = None

    @property
    def headers_sent(self) -> bool:
        return self._sink.headers_sent

    @property
    def released(self) -> bool:
        return self._released

    @property
    def calls(self) -> list[BufferedCall]:
        return list(self._calls)

    async def write_head(self, status: int, headers: RawHeaders) -> None:
        self.status_code = status
        await self._record(BufferedCall(CallKind.WRITE_HEAD, (status, list(headers))))

    async def write(self, body: bytes) -> None:
        await self._record(BufferedCall(CallKind.WRITE, (body,)))

    async def end(self, body: bytes = b"") -> None:
        await self._record(BufferedCall(CallKind.END, (body,)))

    async def flush_headers(self) -> None:
        await self._record(BufferedCall(CallKind.FLUSH_HEADERS))

    def set_header(self, name: str, value: str) -> None:
        """Add a header to the buffered status line, replacing any same-named one."""
        if self._released:
            raise RuntimeError("Cannot set header after release")
        key = name.lower().encode("latin-1")
        self._extra_headers = [h for h in self._extra_headers if h[0] != key]
        self._extra_headers.append((key, value.encode("latin-1")))

    def discard(self) -> None:
        """Drop everything buffered so far."""
        self._calls.clear()
        self._extra_headers.clear()

    async def release(self) -> None:
        """Stop buffering and replay recorded calls against the real sink."""
        if self._released:
            return
        self._released = True
        calls, self._calls = self._calls, []
        for call in calls:
            await self._replay(call)

    async def asgi_send(self, message: Message) -> None:
        """ASGI ``send`` callable for the downstream application."""
        kind = message["type"]
        if kind == "http.response.start":
            await self.write_head(message["status"], list(message.get("headers", [])))
        elif kind == "http.response.body":
            body = message.get("body", b"")
            if message.get("more_body", False):
                await self.write(body)
            else:
                await self.end(body)
        else:
            raise RuntimeError(f"Unsupported ASGI message type for buffered response: {kind}")

    async def _record(self, call: BufferedCall) -> None:
        if self._released:
            await self._replay(call)
        else:
            self._calls.append(call)

    async def _replay(self, call: BufferedCall) -> None:
        if call.kind is CallKind.WRITE_HEAD:
            status, headers = call.args
            await self._sink.write_head(status, self._merge_headers(headers))
        elif call.kind is CallKind.WRITE:
            await self._sink.write(*call.args)
        elif call.kind is CallKind.END:
            await self._sink.end(*call.args)
        elif call.kind is CallKind.FLUSH_HEADERS:
            await self._sink.flush_headers()

    def _merge_headers(self, headers: RawHeaders) -> RawHeaders:
        if not self._extra_headers:
            return headers
        overridden = {name for name, _ in self._extra_headers}
        kept = [(k, v) for k, v in headers if k.lower() not in overridden]
        return kept + self._extra_headers
