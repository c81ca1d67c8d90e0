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

import pytest

from bridgecheck import (
    PROXY_ENV_VAR,
    HandlerAssertionError,
    HarnessConfig,
    ProxyConfig,
    RequestParam,
    ServerTester,
    StartupError,
    default_proxy_config,
)
from bridgecheck.backend import BackendProtocol, BackendRequest


def failing_handler(request: BackendRequest) -> None:
    raise AssertionError(f"unexpected request to {request.path}")


@pytest.mark.anyio
async def test_properties(
    fake_proxy_config: ProxyConfig, config: HarnessConfig
) -> None:
    async with ServerTester(proxy_config=fake_proxy_config, config=config) as st:
        assert st.url == f"http://{st.authority}"
        assert st.authority == f"127.0.0.1:{st.process.frontend.port}"
        assert st.process.returncode is None
        assert st.backend.protocol is BackendProtocol.HTTP1
        assert not st.conn.peer_closed
    assert st.backend.closed
    assert st.process.returncode is not None


def test_backend_protocol_follows_flags(fake_proxy_config: ProxyConfig) -> None:
    st = ServerTester(flags=["--http2-bridge"], proxy_config=fake_proxy_config)
    assert st.backend.protocol is BackendProtocol.HTTP2
    st = ServerTester(
        flags=["--http2-bridge"],
        proxy_config=fake_proxy_config,
        backend_protocol=BackendProtocol.HTTP1,
    )
    assert st.backend.protocol is BackendProtocol.HTTP1


@pytest.mark.anyio
async def test_handler_failure_is_raised_on_close(
    fake_proxy_config: ProxyConfig, config: HarnessConfig
) -> None:
    with pytest.raises(HandlerAssertionError) as exc_info:
        async with ServerTester(
            failing_handler, proxy_config=fake_proxy_config, config=config
        ) as st:
            res = await st.http1(RequestParam("TestFailure", path="/oops"))
            assert res.status == 500
    assert [str(e) for e in exc_info.value.errors] == ["unexpected request to /oops"]


@pytest.mark.anyio
async def test_pytest_failure_in_handler_keeps_serving(
    fake_proxy_config: ProxyConfig, config: HarnessConfig
) -> None:
    def handler(request: BackendRequest) -> None:
        if request.path == "/fail":
            pytest.fail("bad forwarded request")

    with pytest.raises(HandlerAssertionError) as exc_info:
        async with ServerTester(
            handler, proxy_config=fake_proxy_config, config=config
        ) as st:
            res = await st.http1(RequestParam("TestFailure", path="/fail"))
            assert res.status == 500
            res = await st.http1(RequestParam("TestAfterFailure"))
            assert res.status == 200
    [error] = exc_info.value.errors
    assert "bad forwarded request" in str(error)


@pytest.mark.anyio
async def test_handler_failure_does_not_mask_other_errors(
    fake_proxy_config: ProxyConfig, config: HarnessConfig
) -> None:
    with pytest.raises(KeyError):
        async with ServerTester(
            failing_handler, proxy_config=fake_proxy_config, config=config
        ) as st:
            await st.http1(RequestParam("TestFailure"))
            raise KeyError("test failed")
    assert st.backend.closed
    assert st.process.returncode is not None


@pytest.mark.anyio
async def test_startup_failure_releases_backend(
    fake_proxy_config: ProxyConfig, config: HarnessConfig
) -> None:
    st = ServerTester(
        flags=["--no-such-flag"], proxy_config=fake_proxy_config, config=config
    )
    with pytest.raises(StartupError):
        async with st:
            pass
    assert st.backend.closed


@pytest.mark.anyio
async def test_closed_tester(
    fake_proxy_config: ProxyConfig, config: HarnessConfig
) -> None:
    st = ServerTester(proxy_config=fake_proxy_config, config=config)
    with pytest.raises(RuntimeError):
        await st.http1(RequestParam("TestNotStarted"))
    async with st:
        pass
    await st.aclose()
    with pytest.raises(RuntimeError):
        await st.http1(RequestParam("TestClosed"))
    with pytest.raises(RuntimeError):
        await st.start()


@pytest.mark.anyio
async def test_additional_connection(
    fake_proxy_config: ProxyConfig, config: HarnessConfig
) -> None:
    async with ServerTester(proxy_config=fake_proxy_config, config=config) as st:
        conn = await st.connect()
        res = await conn.send_request(
            RequestParam("TestAdditional"), authority=st.authority
        )
        assert res.status == 200
        res = await st.http1(RequestParam("TestPrimary"))
        assert res.status == 200
    assert len(st.backend.requests) == 2


class TestDefaultProxyConfig:
    def test_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(PROXY_ENV_VAR, "myproxy --workers=1")
        assert list(default_proxy_config().command) == ["myproxy", "--workers=1"]

    def test_nghttpx(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv(PROXY_ENV_VAR, raising=False)
        assert list(default_proxy_config().command) == ["nghttpx"]
