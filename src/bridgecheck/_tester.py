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
import os
from contextlib import AsyncExitStack
from types import TracebackType
from typing import Any, Awaitable, Callable, Sequence, Type

import anyio

from ._configuration import (
    PROXY_ENV_VAR,
    ClientTLSConfig,
    HarnessConfig,
    ProxyConfig,
    ServerTLSConfig,
)
from ._errors import HandlerAssertionError
from ._models import RequestParam, ServerResponse
from .backend import BackendProtocol, BackendServer, HandlerType, noop_handler
from .client import ClientConnection
from .process import ProxyProcess

logger = logging.getLogger("bridgecheck.tester")


def default_proxy_config() -> ProxyConfig:
    """
    Return a proxy configuration from the environment, or nghttpx defaults.
    """
    if os.environ.get(PROXY_ENV_VAR, "").strip():
        return ProxyConfig.from_env()
    return ProxyConfig()


class ServerTester:
    """
    One test's environment: a backend server, the proxy, and a client connection.

    Use as an async context manager::

        async with ServerTester(handler, ["--http2-bridge"]) as st:
            response = await st.http1(RequestParam("TestH1H2PlainGET"))
            assert response.status == 200

    Resources are started in this order: the backend server,
    the proxy (configured with the backend address), the client connection.
    They are released in the reverse order, also when startup fails.
    Failures of the backend handler are raised as
    :class:`.HandlerAssertionError` when the tester is closed.

    :param handler: per-test backend behavior
    :param flags: test-specific command-line flags of the proxy
    :param proxy_config: how to launch the proxy; defaults to
        ``BRIDGECHECK_PROXY`` if set, nghttpx otherwise
    :param config: timeouts and addresses
    :param backend_protocol: HTTP version of the backend server;
        derived from the flags by default
    :param backend_tls_config: TLS for the backend server, ``None`` for cleartext
    :param frontend_tls: whether the proxy accepts TLS from clients
    :param client_tls_config: TLS for client connections to the proxy
    """

    _handler: HandlerType
    _flags: Sequence[str]
    _proxy_config: ProxyConfig
    _config: HarnessConfig
    _frontend_tls: bool
    _client_tls_config: ClientTLSConfig

    _backend: BackendServer
    _process: ProxyProcess | None = None
    _conn: ClientConnection | None = None
    _extra_connections: list[ClientConnection]
    _task_group_stack: AsyncExitStack | None = None
    _resources: AsyncExitStack
    _closed: bool = False

    def __init__(
        self,
        handler: HandlerType = noop_handler,
        flags: Sequence[str] = (),
        *,
        proxy_config: ProxyConfig | None = None,
        config: HarnessConfig | None = None,
        backend_protocol: BackendProtocol | None = None,
        backend_tls_config: ServerTLSConfig | None = None,
        frontend_tls: bool = False,
        client_tls_config: ClientTLSConfig | None = None,
    ) -> None:
        if proxy_config is None:
            proxy_config = default_proxy_config()
        if config is None:
            config = HarnessConfig()
        if backend_protocol is None:
            if proxy_config.bridges_http2(flags):
                backend_protocol = BackendProtocol.HTTP2
            else:
                backend_protocol = BackendProtocol.HTTP1
        if client_tls_config is None:
            client_tls_config = ClientTLSConfig(insecure=True)
        self._handler = handler
        self._flags = list(flags)
        self._proxy_config = proxy_config
        self._config = config
        self._frontend_tls = frontend_tls
        self._client_tls_config = client_tls_config
        self._backend = BackendServer(
            handler,
            protocol=backend_protocol,
            tls_config=backend_tls_config,
            local_address=(config.backend_host, 0),
        )
        self._extra_connections = []

    async def __aenter__(self) -> ServerTester:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: Type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        if exc_value is None:
            await self.aclose()
        else:
            await self._release()

    @property
    def backend(self) -> BackendServer:
        """The backend test server"""
        return self._backend

    @property
    def process(self) -> ProxyProcess:
        """The proxy under test"""
        if self._process is None:
            raise RuntimeError("Server tester has not been started.")
        return self._process

    @property
    def conn(self) -> ClientConnection:
        """The current client connection to the proxy front end"""
        self._check_open()
        assert self._conn is not None
        return self._conn

    @property
    def authority(self) -> str:
        """Host and port of the proxy front end, as sent in the Host header"""
        return self.process.frontend.authority

    @property
    def url(self) -> str:
        """URL of the proxy front end"""
        return str(self.process.frontend)

    async def start(self) -> None:
        """
        Start the backend server, the proxy and open a client connection.

        Prefer using the tester as an async context manager.

        :raises StartupError: if the proxy cannot be started
        """
        if self._task_group_stack is not None:
            raise RuntimeError("Server tester can be started only once.")
        self._task_group_stack = AsyncExitStack()
        self._resources = resources = AsyncExitStack()
        try:
            task_group = await self._task_group_stack.enter_async_context(
                anyio.create_task_group()
            )
            backend_address = await self._backend.start(task_group)
            resources.push_async_callback(
                self._release_quietly, "backend", self._backend.aclose
            )
            self._process = await ProxyProcess.start(
                self._flags,
                backend_address,
                proxy_config=self._proxy_config,
                config=self._config,
                frontend_tls=self._frontend_tls,
            )
            resources.push_async_callback(
                self._release_quietly, "proxy", self._process.stop
            )
            resources.push_async_callback(
                self._release_quietly, "client connections", self._close_connections
            )
            self._conn = await self._open_connection()
        except BaseException:
            await self._release()
            raise
        logger.info(
            f"Server tester started: frontend={self.url}, backend={self._backend.url}, "
            f"backend_protocol={self._backend.protocol.value}"
        )

    async def aclose(self) -> None:
        """
        Release all resources. Calling this method again is a noop.

        :raises HandlerAssertionError: if the backend handler failed
        """
        if self._closed:
            return
        await self._release()
        if self._backend.errors:
            raise HandlerAssertionError(self._backend.errors)

    async def http1(self, param: RequestParam) -> ServerResponse:
        """
        Send a structured HTTP/1.1 request over the current connection.

        Protocol-level rejections (400, 503, ...) are returned as responses.

        :param param: the request
        :return: the parsed response
        """
        return await self.conn.send_request(
            param,
            authority=self.authority,
            test_case_header=self._config.test_case_header,
        )

    async def send_raw(self, data: bytes) -> None:
        """
        Write raw bytes to the current connection.
        """
        await self.conn.send_raw(data)

    async def read_response(self, method: str = "GET") -> ServerResponse:
        """
        Read a response to raw bytes written by :meth:`send_raw`.
        """
        return await self.conn.read_response(method)

    async def receive_eof(self) -> bool:
        """
        Return whether the proxy closed the current connection.
        """
        return await self.conn.receive_eof()

    async def reconnect(self) -> ClientConnection:
        """
        Close the current connection and open a new one.

        :return: the new connection, also available as :attr:`conn`
        """
        conn = self.conn
        await conn.aclose()
        self._conn = await self._open_connection()
        return self._conn

    async def connect(self) -> ClientConnection:
        """
        Open an additional connection to the proxy front end.

        The connection is owned by this tester and closed with it.
        """
        self._check_open()
        conn = await self._open_connection()
        self._extra_connections.append(conn)
        return conn

    async def graceful_shutdown(self) -> None:
        """
        Deliver the graceful-shutdown signal to the proxy.

        Returns immediately; the effect is observed through connection state.
        """
        self._check_open()
        await self.process.stop(graceful=True)

    async def _open_connection(self) -> ClientConnection:
        frontend = self.process.frontend
        return await ClientConnection.open(
            frontend.address,
            tls=frontend.tls,
            tls_config=self._client_tls_config,
            config=self._config,
        )

    async def _close_connections(self) -> None:
        connections = list(self._extra_connections)
        if self._conn is not None:
            connections.insert(0, self._conn)
        for conn in connections:
            await conn.aclose()

    async def _release(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._task_group_stack is None:
            return
        with anyio.CancelScope(shield=True):
            await self._resources.aclose()
        # The task group is left outside of the shield, cancel scopes must nest.
        await self._task_group_stack.aclose()
        logger.info("Server tester closed.")

    async def _release_quietly(
        self, name: str, release: Callable[[], Awaitable[Any]]
    ) -> None:
        try:
            await release()
        except Exception:
            logger.exception(f"Failed to release {name}:")

    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError("Server tester is closed.")
        if self._conn is None:
            raise RuntimeError("Server tester has not been started.")
