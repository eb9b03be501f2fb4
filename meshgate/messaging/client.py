"""
MeshGate — Transport Client
===========================

What:  Request/response and fire-and-forget messaging to one backend service
       over a persistent TCP connection.
How:   One asyncio stream per client, opened lazily on first use and
       re-opened after a reset. Requests carry a random id; a background
       reader task resolves the matching future when the response frame
       arrives, so concurrent calls share the connection and may complete in
       any order.
Who:   The gateway holds one client per backend service. The user service
       holds one to the notification service (events, notification lookups)
       and the notification service holds one to the user service (user
       lookups, acknowledgement events).

Failure modes:
    - connect refused / reset mid-call     → ConnectionFailureError
    - no response within `timeout` seconds → TransportTimeoutError
    - remote handler raised                → RemoteServiceError(code, message)

    A timed-out request is forgotten locally; the remote side may still
    finish the work. A late response for it is dropped.
"""

import asyncio
import logging
import uuid
from typing import Any, Dict, Optional, Union

from meshgate.config import settings
from meshgate.exceptions import (
    ConnectionFailureError,
    FrameError,
    RemoteServiceError,
    TransportTimeoutError,
)
from meshgate.messaging.patterns import EventPattern, MessagePattern
from meshgate.messaging.protocol import (
    EventFrame,
    RequestFrame,
    ResponseFrame,
    decode_frame,
    encode_frame,
)
from meshgate.middleware.request_id import request_id_var

logger = logging.getLogger(__name__)

PatternLike = Union[MessagePattern, EventPattern, str]


def _pattern_name(pattern: PatternLike) -> str:
    return pattern.value if isinstance(pattern, (MessagePattern, EventPattern)) else str(pattern)


class TransportClient:
    """
    Client for a single `host:port` message server.

    Usage:
        client = TransportClient("localhost", 4001, name="user-service")
        user = await client.request(MessagePattern.USER_GET, {"id": 1}, timeout=5)
        await client.emit(EventPattern.USER_CREATED, event.model_dump(mode="json"))
        await client.close()
    """

    def __init__(
        self,
        host: str,
        port: int,
        name: Optional[str] = None,
        max_frame_bytes: Optional[int] = None,
        connect_timeout: float = 5.0,
    ):
        self.host = host
        self.port = port
        self.name = name or f"{host}:{port}"
        self.max_frame_bytes = max_frame_bytes or settings.transport_max_frame_bytes
        self.connect_timeout = connect_timeout

        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._pending: Dict[str, asyncio.Future] = {}
        # Serializes connect + write; responses are read by _reader_task only
        self._lock = asyncio.Lock()

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def connected(self) -> bool:
        return self._writer is not None and not self._writer.is_closing()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    # ── Public API ────────────────────────────────────────────────────────

    async def connect(self) -> None:
        """Open the connection now instead of on first use (health checks)."""
        async with self._lock:
            await self._ensure_connected()

    async def request(
        self,
        pattern: PatternLike,
        data: Any = None,
        timeout: float = 10.0,
    ) -> Any:
        """
        Send a request frame and wait for its response.

        Args:
            pattern: Message pattern the remote router dispatches on
            data:    JSON-compatible payload (use model_dump(mode="json"))
            timeout: Seconds to wait for the response, connect included

        Returns:
            The decoded `response` value (None for a lookup miss)

        Raises:
            TransportTimeoutError, ConnectionFailureError, RemoteServiceError
        """
        name = _pattern_name(pattern)
        request_id = uuid.uuid4().hex
        line = encode_frame(
            RequestFrame(id=request_id, pattern=name, data=data, meta=self._meta()),
            self.max_frame_bytes,
        )

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            frame: ResponseFrame = await asyncio.wait_for(self._exchange(line, future), timeout)
        except asyncio.TimeoutError:
            logger.warning("Request '%s' to %s timed out after %gs", name, self.name, timeout)
            raise TransportTimeoutError(pattern=name, timeout=timeout) from None
        finally:
            self._pending.pop(request_id, None)

        if frame.err is not None:
            raise RemoteServiceError(
                message=frame.err.message,
                remote_code=frame.err.code,
                context={"pattern": name, "service": self.name},
            )
        return frame.response

    async def emit(self, pattern: PatternLike, data: Any = None) -> None:
        """
        Write an event frame and return without waiting for any reply.

        Raises:
            ConnectionFailureError: the frame could not be written
        """
        line = encode_frame(
            EventFrame(pattern=_pattern_name(pattern), data=data, meta=self._meta()),
            self.max_frame_bytes,
        )
        await self._send(line)

    async def close(self) -> None:
        """Close the connection and fail every outstanding request."""
        async with self._lock:
            reader_task = self._reader_task
            self._reader_task = None
            writer = self._writer
            self._drop_connection(ConnectionFailureError(f"Client for {self.name} closed"))

        if reader_task is not None and not reader_task.done():
            reader_task.cancel()
            try:
                await reader_task
            except asyncio.CancelledError:
                pass
        if writer is not None:
            try:
                await writer.wait_closed()
            except OSError as e:
                logger.debug("Error while closing connection to %s: %s", self.name, e)
        logger.info("Transport client for %s closed", self.name)

    # ── Internals ─────────────────────────────────────────────────────────

    def _meta(self) -> Dict[str, Any]:
        request_id = request_id_var.get("")
        return {"request_id": request_id} if request_id else {}

    async def _exchange(self, line: bytes, future: asyncio.Future) -> ResponseFrame:
        await self._send(line)
        return await future

    async def _send(self, line: bytes) -> None:
        async with self._lock:
            await self._ensure_connected()
            try:
                self._writer.write(line)
                await self._writer.drain()
            except OSError as e:
                self._drop_connection(
                    ConnectionFailureError(f"Connection to {self.name} lost: {e}")
                )
                raise ConnectionFailureError(
                    message=f"Failed to send to {self.name} at {self.address}: {e}",
                    context={"service": self.name},
                ) from e

    async def _ensure_connected(self) -> None:
        # Caller holds self._lock
        if self.connected:
            return
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port, limit=self.max_frame_bytes),
                self.connect_timeout,
            )
        except (OSError, asyncio.TimeoutError) as e:
            raise ConnectionFailureError(
                message=f"Could not connect to {self.name} at {self.address}: {e or type(e).__name__}",
                context={"service": self.name},
            ) from e

        self._reader, self._writer = reader, writer
        self._reader_task = asyncio.create_task(
            self._read_loop(reader),
            name=f"transport-reader-{self.name}",
        )
        logger.info("Connected to %s at %s", self.name, self.address)

    async def _read_loop(self, reader: asyncio.StreamReader) -> None:
        reason = "connection closed by peer"
        try:
            while True:
                try:
                    line = await reader.readline()
                except ValueError:
                    logger.warning("Dropped oversized frame from %s", self.name)
                    continue
                if not line:
                    break
                try:
                    frame = decode_frame(line)
                except FrameError as e:
                    logger.warning("Skipping frame from %s: %s", self.name, e.message)
                    continue
                if not isinstance(frame, ResponseFrame):
                    logger.warning("Ignoring non-response frame from %s", self.name)
                    continue

                future = self._pending.get(frame.id)
                if future is None or future.done():
                    logger.debug("Dropping late response %s from %s", frame.id, self.name)
                    continue
                future.set_result(frame)
        except OSError as e:
            reason = f"connection reset: {e}"

        if self._reader is reader:
            logger.warning("Lost connection to %s (%s)", self.name, reason)
            self._drop_connection(ConnectionFailureError(f"Connection to {self.name} lost: {reason}"))

    def _drop_connection(self, error: ConnectionFailureError) -> None:
        if self._writer is not None:
            self._writer.close()
        self._reader = None
        self._writer = None

        pending, self._pending = self._pending, {}
        for future in pending.values():
            if not future.done():
                future.set_exception(error)
