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
from typing import Mapping, NamedTuple, Sequence
from urllib.parse import urlsplit

from ._typing import AddressType, HeaderType


@dataclasses.dataclass(frozen=True)
class RequestParam:
    """
    A structured request sent to the proxy front end.
    """

    #: Test identifier, sent in a diagnostic header.
    name: str

    #: Request header fields, in the order they should be sent.
    header: Sequence[HeaderType] = ()

    #: Request body. A Content-Length field is added for non-empty bodies.
    body: bytes | None = None

    #: Request method
    method: str = "GET"

    #: Request target
    path: str = "/"


@dataclasses.dataclass(frozen=True)
class ServerResponse:
    """
    A response received from the proxy front end.
    """

    #: Status code
    status: int

    #: Header fields: lower-cased names mapped to lists of values.
    header: Mapping[str, Sequence[str]]

    #: Whether the proxy closes the connection after this response: the response
    #: says so (``Connection: close``, HTTP/1.0 framing) or EOF was already seen
    #: while reading it. A later close is reported by ``receive_eof()``.
    conn_close: bool

    #: Response body, already decoded from the transfer coding.
    body: bytes = b""

    #: HTTP version from the status line, for example ``"1.1"``.
    http_version: str = "1.1"

    def get(self, name: str) -> str | None:
        """
        Return a combined value of all fields with the given name.

        :param name: case-insensitive field name
        :return: values joined with a comma or ``None`` if the field is missing
        """
        values = self.header.get(name.lower())
        if not values:
            return None
        return ", ".join(values)


class Endpoint(NamedTuple):
    """
    An endpoint where a server listens.
    """

    #: Either ``"http"`` or ``"https"``.
    scheme: str
    #: A hostname or an IP address
    host: str
    #: A port number
    port: int

    def __repr__(self) -> str:
        return f"<{type(self).__name__}: {str(self)!r}>"

    def __str__(self) -> str:
        return f"{self.scheme}://{self.authority}"

    @classmethod
    def parse(cls, value: str) -> Endpoint:
        """
        Parse an endpoint from a string.

        :param value: string value in the ``{http,https}://[HOST]:PORT`` format
        :return: a new instance
        """
        if "//" not in value:
            value = "//" + value
        parsed = urlsplit(value, scheme="http")
        if parsed.scheme not in {"http", "https"}:
            raise ValueError("Invalid scheme.")
        if parsed.port is None:
            raise ValueError("Endpoint port is required.")
        if parsed.path:
            raise ValueError("Endpoint must not have a path component.")
        if parsed.query:
            raise ValueError("Endpoint must not have a query component.")
        return cls(parsed.scheme, parsed.hostname or "", parsed.port)

    @property
    def tls(self) -> bool:
        """Whether to use TLS"""
        return self.scheme == "https"

    @property
    def address(self) -> AddressType:
        """A tuple with a host and a port"""
        return self.host, self.port

    @property
    def authority(self) -> str:
        """A host and a port as used in the Host header"""
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"
