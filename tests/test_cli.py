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
from pathlib import Path

import pytest

from bridgecheck import Endpoint, ServerResponse
from bridgecheck.backend import BackendProtocol
from bridgecheck.cli._commands.backend import BackendCommand
from bridgecheck.cli._commands.send import (
    SendCommand,
    format_response,
    normalize_newlines,
)


def parse(command: type, *argv: str) -> argparse.Namespace:
    parser = argparse.ArgumentParser()
    command.parse(parser)
    return parser.parse_args(argv)


@pytest.mark.parametrize(
    "data, expected",
    [
        (b"GET / HTTP/1.1\nHost: a\n\n", b"GET / HTTP/1.1\r\nHost: a\r\n\r\n"),
        (b"GET / HTTP/1.1\r\nHost: a\r\n\r\n", b"GET / HTTP/1.1\r\nHost: a\r\n\r\n"),
    ],
)
def test_normalize_newlines(data: bytes, expected: bytes) -> None:
    assert normalize_newlines(data) == expected


def test_format_response() -> None:
    response = ServerResponse(
        status=400,
        header={"content-length": ["0"], "connection": ["close"]},
        conn_close=True,
    )
    assert format_response(response) == (
        "HTTP/1.1 400\n"
        "content-length: 0\n"
        "connection: close\n"
        "(conn_close=True, body=0 bytes)"
    )


class TestBackendCommand:
    def test_defaults(self) -> None:
        args = parse(BackendCommand, "http://127.0.0.1:8080")
        command = BackendCommand.from_args(args)
        assert command.endpoint == Endpoint("http", "127.0.0.1", 8080)
        assert command.protocol is BackendProtocol.HTTP1
        assert command.tls_config is None
        assert command.loop.loop == "asyncio"
        assert command.logging.log_level == "WARNING"

    def test_http2(self) -> None:
        args = parse(BackendCommand, "--http2", "--log-level=DEBUG", "127.0.0.1:8080")
        command = BackendCommand.from_args(args)
        assert command.protocol is BackendProtocol.HTTP2
        assert command.logging.log_level == "DEBUG"

    def test_https_requires_certificate(self) -> None:
        args = parse(BackendCommand, "https://127.0.0.1:8443")
        with pytest.raises(SystemExit):
            BackendCommand.from_args(args)

    def test_https(self) -> None:
        args = parse(
            BackendCommand,
            "--cert=cert.pem",
            "--key=key.pem",
            "https://127.0.0.1:8443",
        )
        command = BackendCommand.from_args(args)
        assert command.tls_config is not None
        assert command.tls_config.certfile == "cert.pem"
        assert command.tls_config.keyfile == "key.pem"


class TestSendCommand:
    def test_from_file(self, tmp_path: Path) -> None:
        path = tmp_path / "request.txt"
        path.write_bytes(b"HEAD / HTTP/1.1\nHost: example.com\n\n")
        args = parse(SendCommand, "-X", "HEAD", "127.0.0.1:3000", str(path))
        command = SendCommand.from_args(args)
        assert command.endpoint == Endpoint("http", "127.0.0.1", 3000)
        assert command.method == "HEAD"
        assert command.data == b"HEAD / HTTP/1.1\r\nHost: example.com\r\n\r\n"
        assert not command.tls

    def test_binary(self, tmp_path: Path) -> None:
        path = tmp_path / "request.bin"
        path.write_bytes(b"GET / HTTP/1.1\nHost: example.com\n\n")
        args = parse(SendCommand, "--binary", "127.0.0.1:3000", str(path))
        command = SendCommand.from_args(args)
        assert command.data == b"GET / HTTP/1.1\nHost: example.com\n\n"

    def test_tls(self, tmp_path: Path) -> None:
        path = tmp_path / "request.txt"
        path.write_bytes(b"")
        args = parse(SendCommand, "-k", "https://127.0.0.1:3443", str(path))
        command = SendCommand.from_args(args)
        assert command.tls
        assert command.tls_config.insecure
