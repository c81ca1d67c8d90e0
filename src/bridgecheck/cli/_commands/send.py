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
import sys

from bridgecheck import ClientTLSConfig, Endpoint, HarnessError, ServerResponse
from bridgecheck.client import ClientConnection

from .._options.common import (
    LoggingOptions,
    LoopOptions,
    client_tls_config_from_args,
    parse_client_tls_options,
)
from .base import Command


def normalize_newlines(data: bytes) -> bytes:
    """
    Convert line endings to CRLF, so hand-written requests are valid HTTP.
    """
    return data.replace(b"\r\n", b"\n").replace(b"\n", b"\r\n")


def format_response(response: ServerResponse) -> str:
    lines = [f"HTTP/{response.http_version} {response.status}"]
    for name, values in response.header.items():
        lines += [f"{name}: {value}" for value in values]
    lines.append(f"(conn_close={response.conn_close}, body={len(response.body)} bytes)")
    return "\n".join(lines)


@dataclasses.dataclass
class SendCommand(Command):
    """Sends raw request bytes and prints the parsed response."""

    help = __doc__

    logging: LoggingOptions
    loop: LoopOptions
    endpoint: Endpoint
    tls: bool
    tls_config: ClientTLSConfig
    method: str
    data: bytes
    show_body: bool

    @classmethod
    def parse(cls, parser: argparse.ArgumentParser) -> None:
        parser.add_argument(
            dest="endpoint",
            type=Endpoint.parse,
            metavar="ENDPOINT",
            help=(
                "Endpoint to connect to in an URL-like format: "
                "{http,https}://HOST:PORT"
            ),
        )
        parser.add_argument(
            dest="file",
            nargs="?",
            type=argparse.FileType("rb"),
            default=None,
            metavar="FILE",
            help="File with the request. Read from the standard input if omitted.",
        )
        parser.add_argument(
            "-X",
            "--method",
            default="GET",
            help="Method of the sent request, affects how the response is read.",
        )
        parser.add_argument(
            "--binary",
            action="store_true",
            default=False,
            help="Send the request as is, without converting newlines to CRLF.",
        )
        parser.add_argument(
            "--body",
            dest="show_body",
            action="store_true",
            default=False,
            help="Write the response body to the standard output.",
        )
        parse_client_tls_options(parser)
        LoggingOptions.parse(parser)
        LoopOptions.parse(parser)

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> SendCommand:
        if args.file is None:
            data = sys.stdin.buffer.read()
        else:
            with args.file:
                data = args.file.read()
        if not args.binary:
            data = normalize_newlines(data)
        return cls(
            logging=LoggingOptions.from_args(args),
            loop=LoopOptions.from_args(args),
            endpoint=args.endpoint,
            tls=args.tls or args.endpoint.tls,
            tls_config=client_tls_config_from_args(args),
            method=args.method,
            data=data,
            show_body=args.show_body,
        )

    def run(self) -> int:
        self.logging.configure()
        try:
            response = self.loop.run(self._send)
        except HarnessError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        print(format_response(response))
        if self.show_body:
            sys.stdout.flush()
            sys.stdout.buffer.write(response.body)
            sys.stdout.buffer.flush()
        return 0

    async def _send(self) -> ServerResponse:
        conn = await ClientConnection.open(
            self.endpoint.address,
            tls=self.tls,
            tls_config=self.tls_config,
            server_name=self.endpoint.host,
        )
        try:
            await conn.send_raw(self.data)
            return await conn.read_response(self.method)
        finally:
            await conn.aclose()
