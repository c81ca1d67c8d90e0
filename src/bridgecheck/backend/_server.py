# Copyright 2022 Akamai Technologies, Inc
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

from __future__ import annotations

import enum
import inspect
import logging
import traceback

import anyio
from anyio.abc import ByteStream, TaskGroup, TaskStatus

from bridgecheck._configuration import ServerTLSConfig
from bridgecheck._typing import AddressType
from bridgecheck.networking import listen_tcp, listener_address

from ._models import BackendRequest, BackendResponse, HandlerType, noop_handler
from ._protocols import (
    ConnectionTerminated,
    HTTP1ServerProtocol,
    HTTP2ServerProtocol,
    RequestReceived,
    ServerProtocol,
)

logger = logging.getLogger("bridgecheck.backend")


class BackendProtocol(enum.Enum):
    """
    HTTP version spoken by the backend test server.
    """

    #: HTTP/1.1 (ALPN ``http/1.1`` when TLS is used)
    HTTP1 = "http1"
    #: HTTP/2 with prior knowledge (ALPN ``h2`` when TLS is used)
    HTTP2 = "http2"

    @property
    def alpn_protocol(self) -> str:
        return "h2" if self is BackendProtocol.HTTP2 else "http/1.1"


class BackendServer:
    """
    An origin server that the proxy under test forwards requests to.

    Every forwarded request is passed to a handler. The handler can assert
    request shape; its failures are recorded in :attr:`errors` and answered
    with a 500 response, but the server keeps serving subsequent requests.

    :param handler: per-test backend behavior
    :param protocol: HTTP version to serve
    :param tls_config: TLS configuration, ``None`` for cleartext
    :param local_address: where to listen, port 0 selects an ephemeral port
    """

    #: All requests received by the handler, in order of arrival.
    requests: list[BackendRequest]

    #: Exceptions raised by the handler, in order of occurrence.
    errors: list[BaseException]

    _handler: HandlerType
    _protocol: BackendProtocol
    _tls_config: ServerTLSConfig | None
    _local_address: AddressType

    _address: AddressType | None = None
    _cancel_scope: anyio.CancelScope | None = None
    _stopped: anyio.Event | None = None
    _closed: bool = False
    _connection_counter: int = 0

    def __init__(
        self,
        handler: HandlerType = noop_handler,
        *,
        protocol: BackendProtocol = BackendProtocol.HTTP1,
        tls_config: ServerTLSConfig | None = None,
        local_address: AddressType = ("127.0.0.1", 0),
    ) -> None:
        self._handler = handler
        self._protocol = protocol
        self._tls_config = tls_config
        self._local_address = local_address
        self.requests = []
        self.errors = []

    @property
    def protocol(self) -> BackendProtocol:
        return self._protocol

    @property
    def address(self) -> AddressType:
        """
        The address where the server listens.

        Available after :meth:`start` returns.
        """
        if self._address is None:
            raise RuntimeError("Backend server has not been started.")
        return self._address

    @property
    def url(self) -> str:
        scheme = "http" if self._tls_config is None else "https"
        host, port = self.address
        return f"{scheme}://{host}:{port}"

    @property
    def closed(self) -> bool:
        return self._closed

    async def start(self, task_group: TaskGroup) -> AddressType:
        """
        Start listening and serving in the given task group.

        :param task_group: task group that will run the server
        :return: the address where the server listens
        """
        if self._stopped is not None:
            raise RuntimeError("Backend server can be started only once.")
        self._stopped = anyio.Event()
        address: AddressType = await task_group.start(self._run)
        return address

    async def aclose(self) -> None:
        """
        Stop accepting and drop the listener and all open connections.

        Waits until the server has stopped. Calling this method again is a noop.
        """
        if self._closed:
            return
        self._closed = True
        if self._cancel_scope is not None:
            self._cancel_scope.cancel()
        if self._stopped is not None:
            await self._stopped.wait()
        logger.info(f"Backend server closed: address={self._address}")

    async def _run(
        self, *, task_status: TaskStatus = anyio.TASK_STATUS_IGNORED
    ) -> None:
        assert self._stopped is not None
        try:
            self._cancel_scope = anyio.CancelScope()
            with self._cancel_scope:
                listener = await listen_tcp(
                    self._local_address,
                    tls_config=self._tls_config,
                    alpn_protocols=[self._protocol.alpn_protocol],
                )
                async with listener:
                    self._address = listener_address(listener)
                    logger.info(
                        f"Backend server listening: address={self._address}, "
                        f"protocol={self._protocol.value}"
                    )
                    task_status.started(self._address)
                    await listener.serve(self._handle_stream)
        finally:
            self._stopped.set()

    async def _handle_stream(self, stream: ByteStream) -> None:
        self._connection_counter += 1
        connection_id = self._connection_counter
        async with stream:
            logger.info(f"Backend connection #{connection_id}: Accepted.")
            try:
                await self._serve_connection(connection_id, stream)
            except (anyio.BrokenResourceError, anyio.ClosedResourceError):
                logger.info(f"Backend connection #{connection_id}: Lost.")
            except Exception:
                # One broken connection must not stop the whole server.
                logger.exception(f"Backend connection #{connection_id}: Failed:")
            else:
                logger.info(f"Backend connection #{connection_id}: Done serving.")

    async def _serve_connection(self, connection_id: int, stream: ByteStream) -> None:
        protocol = self._create_protocol()
        await self._flush(stream, protocol)
        while not protocol.has_expired():
            try:
                data = await stream.receive()
            except anyio.EndOfStream:
                protocol.eof_received()
                if not protocol.has_expired():
                    protocol.connection_lost()
            else:
                protocol.bytes_received(data)
            for event in iter(protocol.next_event, None):
                if isinstance(event, RequestReceived):
                    response = await self._respond(connection_id, event.request)
                    protocol.submit_response(event.stream_id, response)
                    await self._flush(stream, protocol)
                elif isinstance(event, ConnectionTerminated):
                    logger.info(
                        f"Backend connection #{connection_id}: Terminated: "
                        f"error_code={event.error_code}, message={event.message!r}"
                    )
            await self._flush(stream, protocol)

    async def _flush(self, stream: ByteStream, protocol: ServerProtocol) -> None:
        data = protocol.bytes_to_send()
        if data:
            await stream.send(data)

    async def _respond(
        self, connection_id: int, request: BackendRequest
    ) -> BackendResponse:
        logger.info(
            f"Backend connection #{connection_id}: Request received: "
            f"{request.method} {request.path} HTTP/{request.http_version}"
        )
        self.requests.append(request)
        try:
            result = self._handler(request)
            if inspect.isawaitable(result):
                result = await result
        except (anyio.get_cancelled_exc_class(), KeyboardInterrupt, SystemExit):
            raise
        except BaseException as exc:
            # Includes pytest.fail(), which raises a BaseException.
            self.errors.append(exc)
            logger.exception(
                f"Backend connection #{connection_id}: Handler failed "
                f"for {request.method} {request.path}:"
            )
            return self._error_response(exc)
        if result is None:
            return BackendResponse()
        return result

    def _error_response(self, exc: BaseException) -> BackendResponse:
        lines = traceback.format_exception(type(exc), exc, exc.__traceback__)
        return BackendResponse(
            status=500,
            headers=[("content-type", "text/plain")],
            body="\r\n".join(lines).encode(),
        )

    def _create_protocol(self) -> ServerProtocol:
        if self._protocol is BackendProtocol.HTTP2:
            scheme = "http" if self._tls_config is None else "https"
            return HTTP2ServerProtocol(scheme=scheme)
        return HTTP1ServerProtocol()
