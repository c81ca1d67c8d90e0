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

import logging

import anyio
import h11
from anyio.abc import ByteStream

from bridgecheck._configuration import ClientTLSConfig, HarnessConfig
from bridgecheck._errors import (
    ConnectionClosedError,
    HarnessIOError,
    ReadTimeout,
    ResponseParseError,
)
from bridgecheck._headers import connection_tokens
from bridgecheck._models import RequestParam, ServerResponse
from bridgecheck._typing import AddressType, HeaderType
from bridgecheck.networking import connect_tcp

logger = logging.getLogger("bridgecheck.client")


def serialize_request(
    param: RequestParam,
    *,
    authority: str,
    test_case_header: str = "Test-Case",
) -> tuple[h11.Connection, bytes]:
    """
    Serialize a structured request to HTTP/1.1 wire bytes.

    Fields are sent in this order: Host (unless the request has its own),
    the test-case header, request fields, Content-Length for a non-empty body.

    :return: an h11 connection that expects the response, and the bytes to send
    """
    own_names = {name.lower() for name, _ in param.header}
    headers: list[HeaderType] = []
    if b"host" not in own_names:
        headers.append((b"Host", authority.encode()))
    headers.append((test_case_header.encode(), param.name.encode()))
    headers += param.header
    body = param.body or b""
    if body and not own_names & {b"content-length", b"transfer-encoding"}:
        headers.append((b"Content-Length", str(len(body)).encode()))

    connection = h11.Connection(our_role=h11.CLIENT)
    try:
        chunks = [
            connection.send(
                h11.Request(method=param.method, target=param.path, headers=headers)
            )
        ]
        if body:
            chunks.append(connection.send(h11.Data(data=body)))
        chunks.append(connection.send(h11.EndOfMessage()))
    except h11.LocalProtocolError as e:
        raise ValueError(f"Cannot serialize request {param.name!r}: {e}") from e
    return connection, b"".join(chunk for chunk in chunks if chunk)


def response_parser(method: str | bytes = "GET") -> h11.Connection:
    """
    Create an h11 connection ready to parse a response to a raw request.

    The parser is told the request method, which affects response framing
    (responses to HEAD have no body).
    """
    connection = h11.Connection(our_role=h11.CLIENT)
    connection.send(
        h11.Request(method=method, target="/", headers=[(b"Host", b"raw")])
    )
    connection.send(h11.EndOfMessage())
    return connection


class ClientConnection:
    """
    A raw client connection to the proxy front end.

    Requests are written either from structured parameters or verbatim,
    responses are parsed with h11. Bytes received after one response
    are kept for the next one, so the connection can be reused
    for sequential requests until the proxy closes it.

    Use :meth:`open` to create instances.
    """

    _stream: ByteStream
    _config: HarnessConfig
    _remote_address: AddressType

    _buffer: bytes = b""
    _eof: bool = False
    _peer_closed: bool = False
    _closed: bool = False

    def __init__(
        self,
        stream: ByteStream,
        *,
        remote_address: AddressType,
        config: HarnessConfig,
    ) -> None:
        self._stream = stream
        self._remote_address = remote_address
        self._config = config

    @classmethod
    async def open(
        cls,
        remote_address: AddressType,
        *,
        tls: bool = False,
        tls_config: ClientTLSConfig | None = None,
        server_name: str | None = None,
        config: HarnessConfig | None = None,
    ) -> ClientConnection:
        """
        Connect to the given address.

        :param remote_address: an IP address and a port number to connect to
        :param tls: whether to secure the connection using TLS
        :param tls_config: TLS configuration
        :param server_name: override server name sent in TLS SNI
        :param config: timeouts; defaults to :class:`.HarnessConfig` defaults
        :raises HarnessIOError: if the connection cannot be established
        """
        if config is None:
            config = HarnessConfig()
        try:
            with anyio.fail_after(config.connect_timeout):
                stream = await connect_tcp(
                    remote_address,
                    tls=tls,
                    tls_config=tls_config,
                    server_name=server_name,
                    alpn_protocols=["http/1.1"],
                )
        except TimeoutError:
            raise HarnessIOError(
                f"Connection to {remote_address} timed out "
                f"after {config.connect_timeout} seconds"
            ) from None
        except (OSError, anyio.BrokenResourceError) as e:
            raise HarnessIOError(f"Cannot connect to {remote_address}: {e}") from e
        logger.debug(f"Connected to {remote_address}")
        return cls(stream, remote_address=remote_address, config=config)

    @property
    def stream(self) -> ByteStream:
        """
        The underlying byte stream, for tests that need full control.
        """
        return self._stream

    @property
    def peer_closed(self) -> bool:
        """
        Whether a response said that the proxy closes this connection.
        """
        return self._peer_closed

    async def aclose(self) -> None:
        """
        Close this connection. Calling this method again is a noop.
        """
        if self._closed:
            return
        self._closed = True
        await self._stream.aclose()
        logger.debug(f"Closed connection to {self._remote_address}")

    async def send_request(
        self,
        param: RequestParam,
        *,
        authority: str,
        test_case_header: str = "Test-Case",
    ) -> ServerResponse:
        """
        Send a structured request and read the response.

        :param param: the request
        :param authority: value of the Host header
        :param test_case_header: name of the diagnostic header
        :raises HarnessIOError: if the connection breaks
        :raises ResponseParseError: if the response is malformed
        """
        parser, data = serialize_request(
            param, authority=authority, test_case_header=test_case_header
        )
        logger.debug(f"Sending request {param.name!r}: {param.method} {param.path}")
        await self.send_raw(data)
        return await self._read_response(parser)

    async def send_raw(self, data: bytes) -> None:
        """
        Write bytes verbatim.

        This is the only way to send requests that are not valid HTTP.

        :raises ConnectionClosedError: if the proxy has already closed the connection
        :raises HarnessIOError: if the write fails
        """
        if self._closed:
            raise RuntimeError("Connection is closed.")
        if self._peer_closed:
            raise ConnectionClosedError(
                "The proxy has closed this connection, reconnect to send more requests."
            )
        try:
            await self._stream.send(data)
        except (anyio.BrokenResourceError, anyio.ClosedResourceError) as e:
            raise HarnessIOError(f"Write to {self._remote_address} failed: {e}") from e

    async def read_response(self, method: str | bytes = "GET") -> ServerResponse:
        """
        Read a response to a request previously written by :meth:`send_raw`.

        :param method: method of the request, affects response framing
        :raises HarnessIOError: if the connection breaks
        :raises ResponseParseError: if the response is malformed
        """
        return await self._read_response(response_parser(method))

    async def receive_eof(self) -> bool:
        """
        Return whether the proxy closed the connection.

        Waits (up to the read timeout) for the proxy to either send
        something or close the connection. Received bytes are kept
        for the next response.
        """
        if self._buffer:
            return False
        if self._eof:
            return True
        data = await self._receive()
        if data:
            self._buffer += data
            return False
        self._eof = True
        return True

    async def _read_response(self, parser: h11.Connection) -> ServerResponse:
        if self._buffer:
            parser.receive_data(self._buffer)
            self._buffer = b""
        if self._eof:
            parser.receive_data(b"")
        response: h11.Response | h11.InformationalResponse | None = None
        body: list[bytes] = []
        while True:
            try:
                event = parser.next_event()
            except h11.RemoteProtocolError as e:
                if self._eof:
                    raise ConnectionClosedError(
                        f"Connection closed before a complete response: {e}"
                    ) from e
                raise ResponseParseError(f"Invalid response: {e}") from e
            if event is h11.NEED_DATA:
                data = await self._receive()
                if not data:
                    self._eof = True
                parser.receive_data(data)
            elif isinstance(event, h11.Response):
                response = event
            elif isinstance(event, h11.Data):
                body.append(event.data)
            elif isinstance(event, h11.EndOfMessage):
                break
            elif isinstance(event, h11.ConnectionClosed):
                raise ConnectionClosedError("Connection closed before a response.")
            elif isinstance(event, h11.InformationalResponse):
                # Other interim (1xx) responses are skipped.
                if event.status_code == 101:
                    response = event
            elif event is h11.PAUSED:
                if response is None:
                    raise ResponseParseError("Unexpected pause before a response.")
                # Switched protocols, the rest of the stream is not HTTP/1.1.
                break

        assert response is not None
        trailing_data, closed = parser.trailing_data
        self._buffer = trailing_data
        self._eof = self._eof or closed
        conn_close = (
            b"close" in connection_tokens(response.headers)
            or parser.their_state is h11.MUST_CLOSE
            or (self._eof and not self._buffer)
        )
        self._peer_closed = conn_close
        header: dict[str, list[str]] = {}
        for name, value in response.headers:
            values = header.setdefault(name.decode("latin-1"), [])
            values.append(value.decode("latin-1"))
        result = ServerResponse(
            status=response.status_code,
            header=header,
            conn_close=conn_close,
            body=b"".join(body),
            http_version=response.http_version.decode(),
        )
        logger.debug(
            f"Received response: status={result.status}, conn_close={conn_close}"
        )
        return result

    async def _receive(self) -> bytes:
        try:
            with anyio.fail_after(self._config.read_timeout):
                return await self._stream.receive()
        except anyio.EndOfStream:
            return b""
        except TimeoutError:
            raise ReadTimeout(
                f"No data from {self._remote_address} "
                f"in {self._config.read_timeout} seconds"
            ) from None
        except (anyio.BrokenResourceError, anyio.ClosedResourceError) as e:
            raise HarnessIOError(f"Read from {self._remote_address} failed: {e}") from e
