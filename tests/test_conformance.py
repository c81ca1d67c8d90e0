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
Conformance of an HTTP/1.1 front end bridged to HTTP/1.1 or HTTP/2 backends.

Runs against the proxy named by ``BRIDGECHECK_PROXY`` (nghttpx flags),
or against the bundled ``fakeproxy.py``.
"""

from __future__ import annotations

from typing import Mapping, Sequence

import anyio
import pytest

from bridgecheck import (
    HarnessConfig,
    HarnessIOError,
    ProxyConfig,
    RequestParam,
    ServerTester,
    pair,
)
from bridgecheck.backend import BackendRequest

pytestmark = pytest.mark.anyio

HTTP2_BRIDGE = ["--http2-bridge"]


def reject_all(request: BackendRequest) -> None:
    raise AssertionError("server should not forward bad request")


def without_date(header: Mapping[str, Sequence[str]]) -> dict[str, list[str]]:
    return {name: list(values) for name, values in header.items() if name != "date"}


@pytest.mark.parametrize("flags", [[], HTTP2_BRIDGE], ids=["h1", "h2"])
async def test_plain_get(
    flags: list[str], proxy_config: ProxyConfig, config: HarnessConfig
) -> None:
    async with ServerTester(
        flags=flags, proxy_config=proxy_config, config=config
    ) as st:
        res = await st.http1(RequestParam("TestPlainGET"))
        assert res.status == 200
        assert not res.conn_close
        [request] = st.backend.requests
        assert request.method == "GET"
        assert request.path == "/"
        assert request.header("test-case") == "TestPlainGET"


async def test_h1_h1_plain_get_close(
    proxy_config: ProxyConfig, config: HarnessConfig
) -> None:
    async with ServerTester(proxy_config=proxy_config, config=config) as st:
        res = await st.http1(
            RequestParam(
                "TestH1H1PlainGETClose",
                header=[pair("Connection", "close")],
            )
        )
        assert res.status == 200
        assert res.conn_close
        assert await st.receive_eof()


async def test_h1_h1_multiple_request_cl(
    proxy_config: ProxyConfig, config: HarnessConfig
) -> None:
    async with ServerTester(
        reject_all, proxy_config=proxy_config, config=config
    ) as st:
        await st.send_raw(
            f"GET / HTTP/1.1\r\n"
            f"Host: {st.authority}\r\n"
            f"Test-Case: TestH1H1MultipleRequestCL\r\n"
            f"Content-Length: 0\r\n"
            f"Content-Length: 0\r\n"
            f"\r\n".encode()
        )
        res = await st.read_response()
        assert res.status == 400
    assert st.backend.requests == []


@pytest.mark.parametrize("flags", [[], HTTP2_BRIDGE], ids=["h1", "h2"])
async def test_connect_failure(
    flags: list[str], proxy_config: ProxyConfig, config: HarnessConfig
) -> None:
    async with ServerTester(
        flags=flags, proxy_config=proxy_config, config=config
    ) as st:
        # Simulate backend connect attempt failure.
        await st.backend.aclose()
        res = await st.http1(RequestParam("TestConnectFailure"))
        assert res.status == 503


async def test_h1_h1_graceful_shutdown(
    proxy_config: ProxyConfig, config: HarnessConfig
) -> None:
    async with ServerTester(proxy_config=proxy_config, config=config) as st:
        res = await st.http1(RequestParam("TestH1H1GracefulShutdown-1"))
        assert res.status == 200

        await st.graceful_shutdown()
        # Signal delivery is asynchronous.
        await anyio.sleep(0.5)

        # A new connection is refused, or served once and closed.
        try:
            conn = await st.connect()
            res = await conn.send_request(
                RequestParam("TestH1H1GracefulShutdown-new"), authority=st.authority
            )
        except HarnessIOError:
            pass
        else:
            assert res.conn_close

        res = await st.http1(RequestParam("TestH1H1GracefulShutdown-2"))
        assert res.status == 200
        assert res.conn_close
        assert await st.receive_eof()


async def test_h1_h2_no_host(proxy_config: ProxyConfig, config: HarnessConfig) -> None:
    async with ServerTester(
        reject_all, HTTP2_BRIDGE, proxy_config=proxy_config, config=config
    ) as st:
        # Without Host header field, we expect 400 response.
        await st.send_raw(b"GET / HTTP/1.1\r\nTest-Case: TestH1H2NoHost\r\n\r\n")
        res = await st.read_response()
        assert res.status == 400
    assert st.backend.requests == []


async def test_h1_h2_crumble_cookie(
    proxy_config: ProxyConfig, config: HarnessConfig
) -> None:
    def handler(request: BackendRequest) -> None:
        assert request.http_version == "2"
        assert request.cookie == "alpha; bravo; charlie"

    async with ServerTester(
        handler, HTTP2_BRIDGE, proxy_config=proxy_config, config=config
    ) as st:
        res = await st.http1(
            RequestParam(
                "TestH1H2CrumbleCookie",
                header=[pair("Cookie", "alpha; bravo; charlie")],
            )
        )
        assert res.status == 200


@pytest.mark.parametrize("flags", [[], HTTP2_BRIDGE], ids=["h1", "h2"])
async def test_forwarding_headers(
    flags: list[str], proxy_config: ProxyConfig, config: HarnessConfig
) -> None:
    def handler(request: BackendRequest) -> None:
        assert request.header("x-forwarded-proto") == "http"
        assert request.header("via")

    async with ServerTester(
        handler, flags, proxy_config=proxy_config, config=config
    ) as st:
        res = await st.http1(RequestParam("TestForwardingHeaders"))
        assert res.status == 200


@pytest.mark.parametrize("flags", [[], HTTP2_BRIDGE], ids=["h1", "h2"])
async def test_post_body(
    flags: list[str], proxy_config: ProxyConfig, config: HarnessConfig
) -> None:
    def handler(request: BackendRequest) -> None:
        assert request.method == "POST"
        assert request.body == b"Hello HTTP!"

    async with ServerTester(
        handler, flags, proxy_config=proxy_config, config=config
    ) as st:
        res = await st.http1(
            RequestParam("TestPostBody", method="POST", body=b"Hello HTTP!")
        )
        assert res.status == 200


@pytest.mark.parametrize("flags", [[], HTTP2_BRIDGE], ids=["h1", "h2"])
async def test_repeated_request_on_fresh_connection(
    flags: list[str], proxy_config: ProxyConfig, config: HarnessConfig
) -> None:
    param = RequestParam("TestIdempotence", header=[pair("Accept", "*/*")])
    async with ServerTester(
        flags=flags, proxy_config=proxy_config, config=config
    ) as st:
        first = await st.http1(param)
        await st.reconnect()
        second = await st.http1(param)
    assert first.status == second.status == 200
    assert without_date(first.header) == without_date(second.header)
    assert first.body == second.body
