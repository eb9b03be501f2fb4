"""
MeshGate — Message Server
=========================

What:  The service side of the transport: accepts TCP connections, decodes
       frames, dispatches them through a MessageRouter and writes responses.
How:   asyncio.start_server. Each request frame runs in its own task so a slow
       handler never blocks the connection; writes are serialized per
       connection. Event frames are published to subscribers without a reply.

Error conversion (request frames only):
    MeshError             → {"code": e.code, "message": e.message}
    pydantic validation   → {"code": "validation_error", ...}
    anything else         → {"code": "internal_error", ...}, traceback logged

Every request is logged with its pattern, outcome and elapsed time. A
handler that runs past handler_timeout is answered with transport_timeout.
Malformed frames are logged and skipped; the connection stays open.
"""

import asyncio
import logging
import time
from typing import Optional, Set

from pydantic import ValidationError as PydanticValidationError

from meshgate.config import settings
from meshgate.exceptions import FrameError, MeshError, TransportTimeoutError
from meshgate.messaging.protocol import (
    ErrorBody,
    EventFrame,
    RequestFrame,
    ResponseFrame,
    decode_frame,
    encode_frame,
)
from meshgate.messaging.router import MessageRouter
from meshgate.middleware.request_id import new_request_id, request_id_var

logger = logging.getLogger(__name__)


def error_body(exc: Exception, pattern: str) -> ErrorBody:
    """Translate a handler exception into the error frame payload."""
    if isinstance(exc, MeshError):
        return ErrorBody(code=exc.code, message=exc.message)
    if isinstance(exc, PydanticValidationError):
        first = exc.errors()[0] if exc.error_count() else {}
        location = ".".join(str(part) for part in first.get("loc", ())) or "payload"
        return ErrorBody(
            code="validation_error",
            message=f"Invalid payload for '{pattern}': {location}: {first.get('msg', 'invalid')}",
        )
    return ErrorBody(code="internal_error", message=str(exc) or type(exc).__name__)


class MessageServer:
    """
    TCP message server for one service.

    Args:
        router:          Routing table; validated before the socket opens
        host, port:      Bind address (port 0 picks a free port, see `port`)
        max_frame_bytes: Longest accepted line
        handler_timeout: Seconds a request handler may run; defaults to
                         settings.service_handler_timeout
    """

    def __init__(
        self,
        router: MessageRouter,
        host: str,
        port: int,
        max_frame_bytes: Optional[int] = None,
        handler_timeout: Optional[float] = None,
    ):
        self.router = router
        self.host = host
        self.requested_port = port
        self.max_frame_bytes = max_frame_bytes or settings.transport_max_frame_bytes
        self.handler_timeout = handler_timeout or settings.service_handler_timeout
        self._server: Optional[asyncio.AbstractServer] = None
        self._tasks: Set[asyncio.Task] = set()
        self._writers: Set[asyncio.StreamWriter] = set()

    @property
    def port(self) -> int:
        """Bound port (differs from the requested one when that was 0)."""
        if self._server is None or not self._server.sockets:
            return self.requested_port
        return self._server.sockets[0].getsockname()[1]

    async def start(self) -> None:
        """
        Raises:
            ConfigurationError: the router has unhandled owned patterns
        """
        self.router.validate()
        self._server = await asyncio.start_server(
            self._handle_connection,
            self.host,
            self.requested_port,
            limit=self.max_frame_bytes,
        )
        logger.info(
            "%s service listening on %s:%d",
            self.router.service.value,
            self.host,
            self.port,
        )

    async def serve_forever(self) -> None:
        """Serve until cancelled; open connections are closed on the way out."""
        if self._server is None:
            await self.start()
        try:
            await self._server.serve_forever()
        finally:
            await self.stop()

    async def stop(self) -> None:
        """Stop accepting connections and cancel in-flight handlers."""
        if self._server is not None:
            self._server.close()
            # wait_closed() also waits for open connections
            for writer in list(self._writers):
                writer.close()
            await self._server.wait_closed()
            self._server = None
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("%s service stopped", self.router.service.value)

    # ── Connection handling ───────────────────────────────────────────────

    async def _handle_connection(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        peer = writer.get_extra_info("peername")
        write_lock = asyncio.Lock()
        self._writers.add(writer)
        logger.debug("Connection from %s", peer)

        try:
            while True:
                try:
                    line = await reader.readline()
                except ValueError:
                    logger.warning("Skipping oversized frame from %s", peer)
                    continue
                except OSError as e:
                    logger.info("Connection from %s reset: %s", peer, e)
                    break
                if not line:
                    break

                try:
                    frame = decode_frame(line)
                except FrameError as e:
                    logger.warning("Skipping frame from %s: %s", peer, e.message)
                    continue

                if isinstance(frame, RequestFrame):
                    self._spawn(self._handle_request(frame, writer, write_lock))
                elif isinstance(frame, EventFrame):
                    self._spawn(self._handle_event(frame))
                else:
                    logger.warning("Ignoring response frame from %s", peer)
        finally:
            logger.debug("Connection from %s closed", peer)
            self._writers.discard(writer)
            writer.close()

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _handle_request(
        self,
        frame: RequestFrame,
        writer: asyncio.StreamWriter,
        write_lock: asyncio.Lock,
    ) -> None:
        token = request_id_var.set(frame.meta.get("request_id") or new_request_id())
        started = time.perf_counter()
        outcome = "ok"
        try:
            try:
                try:
                    result = await asyncio.wait_for(
                        self.router.dispatch(frame.pattern, frame.data),
                        timeout=self.handler_timeout,
                    )
                except asyncio.TimeoutError:
                    raise TransportTimeoutError(frame.pattern, self.handler_timeout)
                line = encode_frame(ResponseFrame(id=frame.id, response=result), self.max_frame_bytes)
            except MeshError as e:
                outcome = e.code
                logger.warning("'%s' failed: [%s] %s", frame.pattern, e.code, e.message)
                line = self._error_line(frame, e)
            except PydanticValidationError as e:
                outcome = "validation_error"
                logger.warning("'%s' rejected payload: %d validation error(s)", frame.pattern, e.error_count())
                line = self._error_line(frame, e)
            except Exception as e:
                outcome = "internal_error"
                logger.error("'%s' handler crashed: %s", frame.pattern, e, exc_info=True)
                line = self._error_line(frame, e)

            logger.info(
                "'%s' %s in %.1fms",
                frame.pattern,
                outcome,
                (time.perf_counter() - started) * 1000,
                extra={"pattern": frame.pattern, "outcome": outcome},
            )
            async with write_lock:
                try:
                    writer.write(line)
                    await writer.drain()
                except OSError as e:
                    logger.warning("Could not deliver response to '%s': %s", frame.pattern, e)
        finally:
            request_id_var.reset(token)

    def _error_line(self, frame: RequestFrame, exc: Exception) -> bytes:
        return encode_frame(ResponseFrame(id=frame.id, err=error_body(exc, frame.pattern)))

    async def _handle_event(self, frame: EventFrame) -> None:
        token = request_id_var.set(frame.meta.get("request_id") or new_request_id())
        try:
            delivered = await self.router.publish(frame.pattern, frame.data)
            logger.debug("Event '%s' handled by %d subscriber(s)", frame.pattern, delivered)
        finally:
            request_id_var.reset(token)
