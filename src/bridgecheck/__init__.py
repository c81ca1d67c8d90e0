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
A conformance-testing harness for bridging HTTP reverse proxies.
"""

from ._configuration import (
    PROXY_ENV_VAR,
    ClientTLSConfig,
    HarnessConfig,
    ProxyConfig,
    ServerTLSConfig,
)
from ._errors import (
    ConnectionClosedError,
    HandlerAssertionError,
    HarnessError,
    HarnessIOError,
    ReadTimeout,
    ResponseParseError,
    StartupError,
    StartupTimeout,
)
from ._headers import pair
from ._models import Endpoint, RequestParam, ServerResponse
from ._tester import ServerTester, default_proxy_config
from ._typing import AddressType, HeadersType, HeaderType

__version__ = "0.1"
