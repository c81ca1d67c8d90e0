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

import os
import sys
from pathlib import Path

import pytest

from bridgecheck import PROXY_ENV_VAR, HarnessConfig, ProxyConfig

FAKE_PROXY = Path(__file__).parent / "fakeproxy.py"


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def fake_proxy_config() -> ProxyConfig:
    """
    Launches the bundled bridging proxy.
    """
    return ProxyConfig(command=[sys.executable, str(FAKE_PROXY)])


@pytest.fixture
def proxy_config(fake_proxy_config: ProxyConfig) -> ProxyConfig:
    """
    Launches the proxy under test: ``BRIDGECHECK_PROXY`` or the bundled one.
    """
    if os.environ.get(PROXY_ENV_VAR, "").strip():
        return ProxyConfig.from_env()
    return fake_proxy_config


@pytest.fixture
def config() -> HarnessConfig:
    return HarnessConfig(read_timeout=5.0, stop_timeout=2.0)
