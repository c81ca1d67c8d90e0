from ._networking import (
    allocate_port,
    client_ssl_context,
    connect_tcp,
    listen_tcp,
    listener_address,
    server_ssl_context,
)
