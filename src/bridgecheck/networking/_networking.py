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

import socket as _socket
import ssl
from typing import Sequence, cast

import anyio
from anyio.abc import ByteStream, Listener, SocketAttribute
from anyio.streams.tls import TLSListener, TLSStream

from bridgecheck._configuration import ClientTLSConfig, ServerTLSConfig
from bridgecheck._typing import AddressType


def client_ssl_context(
    tls_config: ClientTLSConfig | None, *, alpn_protocols: Sequence[str] | None
) -> ssl.SSLContext:
    if tls_config is None:
        tls_config = ClientTLSConfig()
    context = ssl.create_default_context(
        ssl.Purpose.SERVER_AUTH,
        cafile=tls_config.cafile,
        capath=tls_config.capath,
        cadata=tls_config.cadata,
    )
    if tls_config.insecure:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    if alpn_protocols is not None:
        context.set_alpn_protocols(alpn_protocols)
    return context


def server_ssl_context(
    tls_config: ServerTLSConfig,
    *,
    alpn_protocols: Sequence[str] | None,
) -> ssl.SSLContext:
    if tls_config.certfile is None:
        raise ValueError("TLS certfile is required.")
    context = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
    context.load_cert_chain(
        certfile=tls_config.certfile,
        keyfile=tls_config.keyfile,
    )
    if alpn_protocols is not None:
        context.set_alpn_protocols(alpn_protocols)
    return context


async def connect_tcp(
    remote_address: AddressType,
    *,
    tls_config: ClientTLSConfig | None = None,
    tls: bool = False,
    server_name: str | None = None,
    alpn_protocols: Sequence[str] | None = None,
) -> ByteStream:
    """
    Open a TCP connection, optionally secured using TLS.

    :param remote_address: an IP address and a port number to connect to
    :param tls_config: TLS configuration, used only if ``tls`` is true
    :param tls: whether to perform a TLS handshake
    :param server_name: override server name sent in TLS SNI
    :param alpn_protocols: ALPN protocols to offer in a TLS handshake
    :return: a new byte stream
    """
    host, port = remote_address
    tcp_socket = await anyio.connect_tcp(host, port)
    if not tls:
        return tcp_socket
    ssl_context = client_ssl_context(tls_config, alpn_protocols=alpn_protocols)
    try:
        return await TLSStream.wrap(
            tcp_socket,
            server_side=False,
            hostname=server_name or host,
            ssl_context=ssl_context,
            standard_compatible=False,  # HTTP requires this option to be False
        )
    except BaseException:
        await anyio.aclose_forcefully(tcp_socket)
        raise


async def listen_tcp(
    local_address: AddressType,
    *,
    tls_config: ServerTLSConfig | None = None,
    alpn_protocols: Sequence[str] | None = None,
) -> Listener[ByteStream]:
    """
    Listen for TCP connections, secured using TLS if a config is given.

    Port ``0`` binds an ephemeral port, use :func:`listener_address`
    to read it back.

    :param local_address: an IP address and a port number to listen on
    :param tls_config: TLS configuration, ``None`` for insecure connections
    :param alpn_protocols: ALPN protocols to offer in a TLS handshake
    :return: a new listener instance
    """
    local_host, local_port = local_address
    listener = await anyio.create_tcp_listener(
        local_host=local_host, local_port=local_port
    )
    if tls_config is None:
        # https://github.com/agronholm/anyio/pull/464
        return cast(Listener[ByteStream], listener)
    try:
        ssl_context = server_ssl_context(tls_config, alpn_protocols=alpn_protocols)
    except BaseException:
        await anyio.aclose_forcefully(listener)
        raise
    tls_listener = TLSListener(
        listener,
        ssl_context,
        standard_compatible=False,  # HTTP requires this option to be False
    )
    return cast(Listener[ByteStream], tls_listener)


def listener_address(listener: Listener[ByteStream]) -> AddressType:
    """
    Return a local address of a listener.

    Only the first two items (host and port) are kept from IPv6 addresses.
    """
    if isinstance(listener, TLSListener):
        listener = listener.listener
    address = listener.extra(SocketAttribute.local_address)
    assert isinstance(address, tuple)
    return address[0], address[1]


def allocate_port(host: str) -> int:
    """
    Find a free TCP port at the given host.

    The port is bound and released, so that a child process can bind it.
    Ports are picked by the operating system, which prevents collisions
    between tests running in parallel.
    """
    family = _socket.AF_INET6 if ":" in host else _socket.AF_INET
    with _socket.socket(family, _socket.SOCK_STREAM) as sock:
        sock.bind((host, 0))
        port: int = sock.getsockname()[1]
    return port
