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

import argparse
import dataclasses

import anyio

from bridgecheck import Endpoint, ServerTLSConfig
from bridgecheck.backend import BackendProtocol, BackendServer, echo_handler

from .._options.common import (
    LoggingOptions,
    LoopOptions,
    parse_server_tls_options,
    server_tls_config_from_args,
)
from .base import Command


@dataclasses.dataclass
class BackendCommand(Command):
    """Runs a backend test server that echoes requests it receives."""

    help = __doc__

    logging: LoggingOptions
    loop: LoopOptions
    endpoint: Endpoint
    protocol: BackendProtocol
    tls_config: ServerTLSConfig | None

    @classmethod
    def parse(cls, parser: argparse.ArgumentParser) -> None:
        parser.add_argument(
            dest="endpoint",
            type=Endpoint.parse,
            metavar="ENDPOINT",
            help=(
                "Endpoint to listen at in an URL-like format: "
                "{http,https}://HOST:PORT"
            ),
        )
        group = parser.add_mutually_exclusive_group()
        group.set_defaults(protocol=BackendProtocol.HTTP1)
        group.add_argument(
            "--http1",
            "--http1.1",
            action="store_const",
            dest="protocol",
            const=BackendProtocol.HTTP1,
            help="Serve HTTP/1.1. This is the default behavior.",
        )
        group.add_argument(
            "--http2",
            action="store_const",
            dest="protocol",
            const=BackendProtocol.HTTP2,
            help="Serve HTTP/2 (with prior knowledge unless TLS is used).",
        )
        parse_server_tls_options(parser)
        LoggingOptions.parse(parser)
        LoopOptions.parse(parser)

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> BackendCommand:
        tls_config = None
        if args.endpoint.tls:
            if not args.tls_certfile:
                raise SystemExit("An https:// endpoint requires --cert and --key.")
            tls_config = server_tls_config_from_args(args)
        return cls(
            logging=LoggingOptions.from_args(args),
            loop=LoopOptions.from_args(args),
            endpoint=args.endpoint,
            protocol=args.protocol,
            tls_config=tls_config,
        )

    def run(self) -> int:
        self.logging.configure()
        try:
            self.loop.run(self._run_server)
        except KeyboardInterrupt:
            pass
        return 0

    async def _run_server(self) -> None:
        server = BackendServer(
            echo_handler,
            protocol=self.protocol,
            tls_config=self.tls_config,
            local_address=self.endpoint.address,
        )
        async with anyio.create_task_group() as tg:
            await server.start(tg)
            print(f"Backend server ({self.protocol.value}) listening at {server.url}")
