from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Protocol, Set, Tuple

import websockets
from websockets.exceptions import ConnectionClosed
from google.protobuf.message import Message

from majsoul_api.codec import encode_envelope, envelope_payload, unwrap
from majsoul_api.errors import (
    CodecError,
    RemoteCallError,
    TransportClosed,
    TransportTimeout,
    UnknownMethodError,
)
from majsoul_api.schemas.envelope import Envelope
from majsoul_api.schemas.registry import SchemaRegistry, SchemaType
from majsoul_api.utils.logger_util import get_logger

logger = get_logger(__name__)

# first byte of every websocket frame
MSG_NOTIFY = 1
MSG_REQUEST = 2
MSG_RESPONSE = 3

ReadyHook = Callable[[], Awaitable[None]]
Handler = Callable[[Any], Any]


class Transport(Protocol):
    """Carrier of RPC calls to the game service.

    Implementations provide ``open(on_ready)`` (connect, then run the ready
    hook), ``send_async(method, params)`` returning the decoded response,
    ``on(name, handler)`` for server notifications such as
    ``NotifyAccountLogout``, and ``close()``.
    """

    async def open(self, on_ready: ReadyHook) -> None: ...

    async def send_async(self, method: str, params: Optional[Mapping[str, Any]] = None) -> Any: ...

    def on(self, notification: str, handler: Handler) -> None: ...

    async def close(self) -> None: ...


class _Notifier:
    """Notification handler table shared by the transports."""

    def __init__(self):
        self._handlers: Dict[str, List[Handler]] = {}
        self._tasks: Set[asyncio.Future] = set()

    def on(self, notification: str, handler: Handler) -> None:
        self._handlers.setdefault(notification, []).append(handler)

    def _spawn(self, awaitable) -> asyncio.Future:
        task = asyncio.ensure_future(awaitable)
        # keep a reference until done so the task is not collected mid-flight
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _dispatch(self, name: str, payload: Any) -> int:
        handlers = self._handlers.get(name, [])
        if not handlers:
            logger.debug("no handler for notification %s", name)
        for handler in handlers:
            try:
                result = handler(payload)
            except Exception:
                logger.exception("handler for notification %s failed", name)
                continue
            if inspect.isawaitable(result):
                self._spawn(result)
        return len(handlers)


def _raise_for_error(method: str, response: Any) -> None:
    if not isinstance(response, Message):
        return
    if "error" not in response.DESCRIPTOR.fields_by_name or not response.HasField("error"):
        return
    code = getattr(response.error, "code", 0)
    if code:
        raise RemoteCallError(method, int(code))


class WebSocketTransport(_Notifier):
    """Binary websocket transport speaking the service's RPC framing.

    Frames are ``kind (1 byte)``, then for requests and responses a
    little-endian uint16 request index, then an encoded envelope. Requests
    are named ``.<package>.<service>.<method>``; payload types come from the
    service definition in the schema registry.
    """

    def __init__(self, url: str, registry: SchemaRegistry, service: str = "Lobby",
                 timeout: float = 10.0, connect: Optional[Callable[..., Any]] = None):
        super().__init__()
        self.url = url
        self.registry = registry
        self.service = service
        self.timeout = float(timeout)
        self._connect = connect or websockets.connect
        self._ws = None
        self._reader: Optional[asyncio.Future] = None
        self._index = 0
        self._pending: Dict[int, Tuple[str, SchemaType, asyncio.Future]] = {}

    @property
    def is_open(self) -> bool:
        return self._ws is not None

    async def open(self, on_ready: ReadyHook) -> None:
        logger.info("connecting to %s", self.url)
        self._ws = await self._connect(self.url, max_size=None)
        self._reader = asyncio.ensure_future(self._read_loop())
        self._spawn(on_ready())

    async def close(self) -> None:
        if self._reader is not None:
            self._reader.cancel()
            self._reader = None
        if self._ws is not None:
            ws, self._ws = self._ws, None
            await ws.close()

    def _next_index(self) -> int:
        for _ in range(0x10000):
            self._index = (self._index + 1) % 0x10000
            if self._index not in self._pending:
                return self._index
        raise TransportClosed("no free request index")

    async def send_async(self, method: str, params: Optional[Mapping[str, Any]] = None) -> Message:
        if self._ws is None:
            raise TransportClosed("transport is not open")
        request_type, response_type = self.registry.lookup_method(self.service, method)
        envelope = Envelope(
            type_name=f".{self.registry.package}.{self.service}.{method}",
            payload=request_type.encode(params or {}),
        )
        index = self._next_index()
        frame = bytes([MSG_REQUEST]) + index.to_bytes(2, "little") + encode_envelope(envelope)
        future = asyncio.get_running_loop().create_future()
        self._pending[index] = (method, response_type, future)
        try:
            await self._ws.send(frame)
            response = await asyncio.wait_for(future, self.timeout)
        except asyncio.TimeoutError:
            raise TransportTimeout(f"{method} timed out after {self.timeout}s") from None
        except ConnectionClosed as exc:
            raise TransportClosed(f"connection closed during {method}") from exc
        finally:
            self._pending.pop(index, None)
        _raise_for_error(method, response)
        return response

    async def _read_loop(self) -> None:
        try:
            async for frame in self._ws:
                if isinstance(frame, str):
                    logger.warning("ignoring text frame from %s", self.url)
                    continue
                self._handle_frame(bytes(frame))
        except ConnectionClosed:
            logger.warning("connection to %s closed", self.url)
        finally:
            for method, _, future in self._pending.values():
                if not future.done():
                    future.set_exception(TransportClosed(f"connection closed during {method}"))

    def _handle_frame(self, frame: bytes) -> None:
        if not frame:
            return
        kind = frame[0]
        if kind == MSG_NOTIFY:
            try:
                name, message = unwrap(frame[1:], self.registry)
            except CodecError:
                logger.warning("undecodable notification", exc_info=True)
                return
            logger.debug("notification %s", name)
            self._dispatch(name, message)
        elif kind == MSG_RESPONSE:
            if len(frame) < 3:
                logger.warning("short response frame (%d bytes)", len(frame))
                return
            index = int.from_bytes(frame[1:3], "little")
            pending = self._pending.get(index)
            if pending is None:
                logger.warning("response for unknown request index %d", index)
                return
            method, response_type, future = pending
            if future.done():
                return
            try:
                future.set_result(response_type.decode(envelope_payload(frame[3:])))
            except CodecError as exc:
                future.set_exception(exc)
        else:
            logger.warning("unexpected frame kind %d", kind)


class MockTransport(_Notifier):
    """Deterministic in-process transport used in tests and local dev.

    ``responses`` maps a method name to the response to return, an exception
    instance to raise, or a callable taking the params (sync or async).
    Every call is recorded in ``calls`` as ``(method, params)``.
    """

    def __init__(self, responses: Optional[Mapping[str, Any]] = None):
        super().__init__()
        self.responses: Dict[str, Any] = dict(responses or {})
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self.opened = False

    async def open(self, on_ready: ReadyHook) -> None:
        self.opened = True
        self._spawn(on_ready())

    async def close(self) -> None:
        self.opened = False

    async def send_async(self, method: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        params = dict(params or {})
        self.calls.append((method, params))
        await asyncio.sleep(0)
        if method not in self.responses:
            raise UnknownMethodError(method, f"no mock response for {method}")
        response = self.responses[method]
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            response = response(params)
            if inspect.isawaitable(response):
                response = await response
        _raise_for_error(method, response)
        return response

    async def notify(self, name: str, payload: Any = None) -> None:
        """Deliver a server notification to the registered handlers."""
        self._dispatch(name, payload)
        await asyncio.sleep(0)


def local_responses() -> Dict[str, Any]:
    """Canned answers letting the API run offline with ``MAJSOUL_TRANSPORT=mock``.

    The game record is an empty record envelope, which resolves to an empty log.
    """
    return {
        "oauth2Login": {"account_id": 0},
        "fetchCustomizedContestByContestId": {},
        "fetchCustomizedContestGameRecords": {"record_list": []},
        "fetchGameRecord": {"data": encode_envelope(Envelope(type_name=".lq.GameDetailRecords", payload=b""))},
    }


def create_transport(name: Optional[str] = None, **kwargs):
    n = (name or "websocket").strip().lower()
    if n in ("mock", "none"):
        responses = local_responses()
        responses.update(kwargs.get("responses") or {})
        return MockTransport(responses)
    if n in ("websocket", "ws", "wss"):
        return WebSocketTransport(**kwargs)
    raise ValueError(f"Unknown transport name: {name}")
