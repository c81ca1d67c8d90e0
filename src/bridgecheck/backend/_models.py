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

import dataclasses
from typing import Awaitable, Callable, Sequence, Tuple, Union

from bridgecheck._headers import get_header

StrHeaderType = Tuple[str, str]


@dataclasses.dataclass
class BackendRequest:
    """
    A request forwarded by the proxy to the backend test server.
    """

    method: str
    path: str
    #: Host header (HTTP/1) or :authority pseudo header (HTTP/2)
    authority: str | None
    #: ``None`` for HTTP/1, where requests carry no scheme
    scheme: str | None
    #: ``"1.1"``, ``"1.0"`` or ``"2"``
    http_version: str
    #: Regular header fields as received (names are lower-cased)
    headers: Sequence[StrHeaderType] = ()
    body: bytes = b""

    def header(self, name: str) -> str | None:
        """
        Return a combined value of all fields with the given name.

        Crumbled Cookie fields are joined with ``"; "``.
        """
        return get_header(self.headers, name)

    @property
    def cookie(self) -> str | None:
        """Reassembled Cookie header"""
        return self.header("cookie")


@dataclasses.dataclass
class BackendResponse:
    """
    A response returned by a backend handler.
    """

    status: int = 200
    headers: Sequence[StrHeaderType] = ()
    body: bytes = b""

    def encoded_headers(self) -> list[tuple[bytes, bytes]]:
        """
        Return header fields as bytes, with Content-Length filled in.
        """
        headers = [
            (n.lower().encode("latin-1"), v.encode("latin-1"))
            for n, v in self.headers
        ]
        names = {n for n, _ in headers}
        if b"content-length" not in names and b"transfer-encoding" not in names:
            headers.append((b"content-length", str(len(self.body)).encode()))
        return headers


HandlerResult = Union[BackendResponse, None]

#: A per-test backend behavior. Returning ``None`` means an empty 200 response.
HandlerType = Callable[
    [BackendRequest], Union[HandlerResult, Awaitable[HandlerResult]]
]


def noop_handler(request: BackendRequest) -> None:
    """
    Reply with an empty 200 response.
    """


def echo_handler(request: BackendRequest) -> BackendResponse:
    """
    Reply with a plain-text dump of the request line and headers.
    """
    lines = [f"{request.method} {request.path} HTTP/{request.http_version}"]
    if request.authority is not None:
        lines.append(f":authority: {request.authority}")
    lines += [f"{name}: {value}" for name, value in request.headers]
    body = ("\r\n".join(lines) + "\r\n").encode()
    return BackendResponse(
        headers=[("content-type", "text/plain; charset=utf-8")],
        body=body,
    )
