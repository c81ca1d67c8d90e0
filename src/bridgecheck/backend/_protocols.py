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

"""
Sans-IO protocols used by the backend test server.

A protocol consumes bytes received from the proxy, emits events for
complete requests, and converts handler responses to bytes to send.
It never touches a socket, so it can be tested without networking.
"""

from __future__ import annotations

from abc import ABCMeta, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from typing import Iterable, Union

import h2.config
import h2.connection
import h2.events
import h2.exceptions
import h11

from bridgecheck._headers import capitalize_field_name

from ._models import BackendRequest, BackendResponse

# Connection-specific fields are forbidden in HTTP/2 (RFC 9113, 8.2.2).
_HOP_BY_HOP_FIELDS = frozenset(
    {
        b"connection",
        b"keep-alive",
        b"proxy-connection",
        b"transfer-encoding",
        b"upgrade",
    }
)


def _decode(value: bytes) -> str:
    return value.decode("latin-1")


@dataclass
class RequestReceived:
    """
    A complete request (headers and body) was received.
    """

    stream_id: int
    request: BackendRequest


@dataclass
class ConnectionTerminated:
    """
    The connection was terminated and should be closed.
    """

    error_code: int = 0
    message: str | None = field(default=None, compare=False)


Event = Union[RequestReceived, ConnectionTerminated]


class ServerProtocol(metaclass=ABCMeta):
    """
    Interface for server-side sans-IO protocols on top of TCP.
    """

    @property
    @abstractmethod
    def http_version(self) -> str:
        """
        An HTTP version as a string.
        """
        raise NotImplementedError

    @abstractmethod
    def has_expired(self) -> bool:
        """
        Return whether this connection is closed or should be closed.
        """
        raise NotImplementedError

    # Receiving direction

    @abstractmethod
    def bytes_received(self, data: bytes) -> None:
        """
        Called when some data is received.
        """
        raise NotImplementedError

    @abstractmethod
    def eof_received(self) -> None:
        """
        Called when the other end signals it won't send any more data.
        """
        raise NotImplementedError

    @abstractmethod
    def connection_lost(self) -> None:
        """
        Called when the connection is lost or closed.
        """
        raise NotImplementedError

    @abstractmethod
    def next_event(self) -> Event | None:
        """
        Consume next event, return ``None`` if there are no more events.
        """
        raise NotImplementedError

    # Sending direction

    @abstractmethod
    def submit_response(self, stream_id: int, response: BackendResponse) -> None:
        """
        Submit a complete response to a request received at the given stream.
        """
        raise NotImplementedError

    @abstractmethod
    def bytes_to_send(self) -> bytes:
        """
        Returns data for sending out of the internal data buffer.
        """
        raise NotImplementedError


class HTTP1ServerProtocol(ServerProtocol):
    """
    HTTP/1.1 server protocol built on the top of the h11_ library.

    Requests are served one at a time; pipelined requests wait
    in the receive buffer until the current response is submitted.

    .. _h11: https://h11.readthedocs.io/
    """

    _connection: h11.Connection
    _current_stream_id: int = 1

    _request: h11.Request | None = None
    _body: list[bytes]

    _data_buffer: list[bytes]
    _events: deque[Event]
    _terminated: bool = False

    def __init__(self) -> None:
        self._connection = h11.Connection(our_role=h11.SERVER)
        self._body = []
        self._data_buffer = []
        self._events = deque()

    @property
    def http_version(self) -> str:
        their_http_version = self._connection.their_http_version
        if their_http_version is None:
            return "1.1"
        return _decode(their_http_version)

    def has_expired(self) -> bool:
        return self._terminated

    def bytes_received(self, data: bytes) -> None:
        if not data:
            return  # h11 treats empty data as EOF.
        self._connection.receive_data(data)
        self._fetch_events()

    def eof_received(self) -> None:
        self._connection.receive_data(b"")
        self._fetch_events()

    def connection_lost(self) -> None:
        if not self._terminated:
            self._terminate()

    def next_event(self) -> Event | None:
        if not self._events:
            return None
        return self._events.popleft()

    def submit_response(self, stream_id: int, response: BackendResponse) -> None:
        if stream_id != self._current_stream_id:
            raise ValueError("Invalid stream ID.")
        assert self._request is not None
        headers = [
            (capitalize_field_name(name), value)
            for name, value in response.encoded_headers()
        ]
        self._submit(h11.Response(status_code=response.status, headers=headers))
        if response.body and self._response_has_body(response.status):
            self._submit(h11.Data(data=response.body))
        self._submit(h11.EndOfMessage())
        self._maybe_start_next_cycle()

    def bytes_to_send(self) -> bytes:
        data = b"".join(self._data_buffer)
        self._data_buffer.clear()
        return data

    def _response_has_body(self, status: int) -> bool:
        assert self._request is not None
        if self._request.method == b"HEAD":
            return False
        return status >= 200 and status not in {204, 304}

    def _submit(self, h11_event: h11.Event) -> None:
        data = self._connection.send(h11_event)
        if data:
            self._data_buffer.append(data)

    def _fetch_events(self) -> None:
        while not self._terminated:
            try:
                h11_event = self._connection.next_event()
            except h11.RemoteProtocolError as e:
                self._reject(e.error_status_hint)
                self._terminate(e.error_status_hint, str(e))
                break
            if h11_event is h11.NEED_DATA or h11_event is h11.PAUSED:
                break
            elif isinstance(h11_event, h11.Request):
                self._request = h11_event
                self._body = []
            elif isinstance(h11_event, h11.Data):
                self._body.append(h11_event.data)
            elif isinstance(h11_event, h11.EndOfMessage):
                self._events.append(self._request_received())
            elif isinstance(h11_event, h11.ConnectionClosed):
                self._terminate()

    def _request_received(self) -> RequestReceived:
        assert self._request is not None
        headers = [(_decode(n), _decode(v)) for n, v in self._request.headers]
        authority = next((v for n, v in headers if n == "host"), None)
        request = BackendRequest(
            method=_decode(self._request.method),
            path=_decode(self._request.target),
            authority=authority,
            scheme=None,
            http_version=_decode(self._request.http_version),
            headers=headers,
            body=b"".join(self._body),
        )
        return RequestReceived(self._current_stream_id, request)

    def _reject(self, status: int) -> None:
        # A response can be sent only if we have not started one.
        if self._connection.our_state not in {h11.IDLE, h11.SEND_RESPONSE}:
            return
        headers = [(b"Content-Length", b"0"), (b"Connection", b"close")]
        try:
            self._submit(h11.Response(status_code=status, headers=headers))
            self._submit(h11.EndOfMessage())
        except h11.LocalProtocolError:
            pass  # The broken request does not allow a response.

    def _maybe_start_next_cycle(self) -> None:
        if h11.DONE == self._connection.our_state == self._connection.their_state:
            self._connection.start_next_cycle()
            self._current_stream_id += 1
            self._request = None
            self._fetch_events()
        elif self._connection.our_state is h11.MUST_CLOSE:
            self._terminate()

    def _terminate(self, error_code: int = 0, message: str | None = None) -> None:
        self._terminated = True
        self._events.append(ConnectionTerminated(error_code, message))


class HTTP2ServerProtocol(ServerProtocol):
    """
    HTTP/2 server protocol built on the top of the Hyper h2_ library.

    Request bodies are buffered until a stream ends.
    Response bodies are sent as flow control windows allow.

    .. _h2: https://python-hyper.org/projects/hyper-h2/
    """

    _connection: h2.connection.H2Connection
    _scheme: str | None

    _streams: dict[int, BackendRequest]
    _pending_data: dict[int, bytes]
    _events: deque[Event]
    _terminated: bool = False

    def __init__(self, *, scheme: str | None = None) -> None:
        config = h2.config.H2Configuration(client_side=False, header_encoding=None)
        self._connection = h2.connection.H2Connection(config)
        self._connection.initiate_connection()
        self._scheme = scheme
        self._streams = {}
        self._pending_data = {}
        self._events = deque()

    @property
    def http_version(self) -> str:
        return "2"

    def has_expired(self) -> bool:
        return self._terminated

    def bytes_received(self, data: bytes) -> None:
        if not data:
            return
        try:
            h2_events = self._connection.receive_data(data)
        except h2.exceptions.ProtocolError as e:
            self._terminate(int(e.error_code), str(e))
        else:
            self._handle_events(h2_events)

    def eof_received(self) -> None:
        self._terminate()

    def connection_lost(self) -> None:
        self._terminate()

    def next_event(self) -> Event | None:
        if not self._events:
            return None
        return self._events.popleft()

    def submit_response(self, stream_id: int, response: BackendResponse) -> None:
        headers = [(b":status", str(response.status).encode())]
        headers += [
            (name, value)
            for name, value in response.encoded_headers()
            if name not in _HOP_BY_HOP_FIELDS
        ]
        try:
            self._connection.send_headers(
                stream_id, headers, end_stream=not response.body
            )
        except h2.exceptions.StreamClosedError:
            return  # The proxy has reset the stream meanwhile.
        if response.body:
            self._pending_data[stream_id] = response.body
            self._send_pending_data(stream_id)

    def bytes_to_send(self) -> bytes:
        data: bytes = self._connection.data_to_send()
        return data

    def _handle_events(self, h2_events: Iterable[h2.events.Event]) -> None:
        for e in h2_events:
            if isinstance(e, h2.events.RequestReceived):
                self._streams[e.stream_id] = self._request_from_headers(e.headers)
                if e.stream_ended is not None:
                    self._stream_ended(e.stream_id)
            elif isinstance(e, h2.events.DataReceived):
                self._connection.acknowledge_received_data(
                    e.flow_controlled_length, e.stream_id
                )
                request = self._streams.get(e.stream_id)
                if request is not None:
                    request.body += e.data
                if e.stream_ended is not None:
                    self._stream_ended(e.stream_id)
            elif isinstance(e, h2.events.StreamReset):
                self._streams.pop(e.stream_id, None)
                self._pending_data.pop(e.stream_id, None)
            elif isinstance(e, h2.events.WindowUpdated):
                if e.stream_id:
                    self._send_pending_data(e.stream_id)
                else:
                    for stream_id in list(self._pending_data):
                        self._send_pending_data(stream_id)
            elif isinstance(e, h2.events.ConnectionTerminated):
                self._terminate(int(e.error_code))

    def _stream_ended(self, stream_id: int) -> None:
        request = self._streams.pop(stream_id, None)
        if request is not None:
            self._events.append(RequestReceived(stream_id, request))

    def _request_from_headers(
        self, headers: Iterable[tuple[bytes, bytes]]
    ) -> BackendRequest:
        pseudo: dict[bytes, str] = {}
        regular = []
        for name, value in headers:
            if name.startswith(b":"):
                pseudo[name] = _decode(value)
            else:
                regular.append((_decode(name), _decode(value)))
        return BackendRequest(
            method=pseudo.get(b":method", ""),
            path=pseudo.get(b":path", ""),
            authority=pseudo.get(b":authority"),
            scheme=pseudo.get(b":scheme", self._scheme),
            http_version="2",
            headers=regular,
        )

    def _send_pending_data(self, stream_id: int) -> None:
        data = self._pending_data.pop(stream_id, b"")
        try:
            while data:
                window = self._connection.local_flow_control_window(stream_id)
                size = min(window, self._connection.max_outbound_frame_size, len(data))
                if size <= 0:
                    break
                self._connection.send_data(
                    stream_id, data[:size], end_stream=size == len(data)
                )
                data = data[size:]
        except h2.exceptions.StreamClosedError:
            return
        if data:
            self._pending_data[stream_id] = data

    def _terminate(self, error_code: int = 0, message: str | None = None) -> None:
        if self._terminated:
            return
        self._terminated = True
        self._events.append(ConnectionTerminated(error_code, message))
