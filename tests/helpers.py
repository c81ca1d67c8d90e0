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

from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Sequence

import anyio
import h2.config
import h2.connection
from anyio.abc import SocketStream

import bridgecheck
from bridgecheck.networking import listener_address


def build_request_headers(
    *extra_headers: bridgecheck.HeaderType,
    method: bytes = b"GET",
    scheme: bytes = b"http",
    authority: bytes = b"example.com",
    path: bytes = b"/",
) -> list[bridgecheck.HeaderType]:
    return [
        (b":method", method),
        (b":scheme", scheme),
        (b":authority", authority),
        (b":path", path),
    ] + list(extra_headers)


def build_raw_request(*lines: str, body: bytes = b"") -> bytes:
    """
    Join request lines with CRLF and terminate the head.
    """
    return "".join(line + "\r\n" for line in lines).encode() + b"\r\n" + body


def h2_client() -> h2.connection.H2Connection:
    config = h2.config.H2Configuration(client_side=True, header_encoding=None)
    connection = h2.connection.H2Connection(config)
    connection.initiate_connection()
    return connection


class ScriptedServer:
    """
    A TCP server that answers every connection with canned bytes.
    """

    address: bridgecheck.AddressType
    received: list[bytes]

    def __init__(self, replies: Sequence[bytes], *, close: bool) -> None:
        self._replies = list(replies)
        self._close = close
        self.received = []

    async def handle(self, stream: SocketStream) -> None:
        async with stream:
            for reply in self._replies:
                try:
                    self.received.append(await stream.receive())
                except anyio.EndOfStream:
                    return
                if reply:
                    await stream.send(reply)
            if not self._close:
                await anyio.sleep_forever()


@asynccontextmanager
async def scripted_server(
    *replies: bytes, close: bool = False
) -> AsyncIterator[ScriptedServer]:
    """
    Run a server that sends one reply after each received chunk.

    With ``close=False`` connections stay open after the last reply.
    """
    server = ScriptedServer(replies, close=close)
    listener = await anyio.create_tcp_listener(local_host="127.0.0.1")
    async with listener:
        server.address = listener_address(listener)
        # The listener must outlive the serving task.
        async with anyio.create_task_group() as tg:
            tg.start_soon(listener.serve, server.handle)
            yield server
            tg.cancel_scope.cancel()


async def eventually(predicate: Callable[[], bool], timeout: float = 5.0) -> None:
    with anyio.fail_after(timeout):
        while not predicate():
            await anyio.sleep(0.02)
