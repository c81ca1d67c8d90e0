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

import dataclasses
import os
import shlex
import signal
from typing import Mapping, Sequence

#: Environment variable with a command line of the proxy under test.
PROXY_ENV_VAR = "BRIDGECHECK_PROXY"


@dataclasses.dataclass
class ClientTLSConfig:
    """
    Client TLS configuration.
    """

    #: Allows to proceed for server without valid TLS certificates.
    insecure: bool = False

    #: File with CA certificates to trust for server verification
    cafile: str | None = None

    #: Directory with CA certificates to trust for server verification
    capath: str | None = None

    #: Blob with CA certificates to trust for server verification
    cadata: bytes | None = None

    def clone(self) -> ClientTLSConfig:
        """
        Clone this instance.
        """
        return dataclasses.replace(self)


@dataclasses.dataclass
class ServerTLSConfig:
    """
    Server TLS configuration.
    """

    #: File with a server certificate.
    certfile: str | None = None

    #: File with a key for the server certificate.
    keyfile: str | None = None

    def clone(self) -> ServerTLSConfig:
        """
        Clone this instance.
        """
        return dataclasses.replace(self)


@dataclasses.dataclass
class HarnessConfig:
    """
    Timeouts and addresses used by the harness.

    Every blocking operation of the harness is bounded by one of these values,
    so an unresponsive proxy fails a test instead of hanging a test run.
    All durations are in seconds.
    """

    #: Limit for opening a client connection to the proxy front end.
    connect_timeout: float = 5.0

    #: Limit for one read from the proxy front end.
    read_timeout: float = 10.0

    #: How long to wait for the proxy front end to become connectable.
    startup_timeout: float = 15.0

    #: First delay between connection attempts during startup polling.
    poll_interval: float = 0.05

    #: Factor by which the polling delay grows after each failed attempt.
    poll_backoff: float = 1.5

    #: Upper bound for the polling delay.
    poll_max_interval: float = 0.5

    #: Grace period between a termination signal and a forceful kill.
    stop_timeout: float = 5.0

    #: Host where the proxy front end listens.
    frontend_host: str = "127.0.0.1"

    #: Host where the backend test server listens.
    backend_host: str = "127.0.0.1"

    #: Name of the diagnostic header identifying a test case.
    test_case_header: str = "Test-Case"

    def clone(self) -> HarnessConfig:
        """
        Clone this instance.
        """
        return dataclasses.replace(self)


@dataclasses.dataclass
class ProxyConfig:
    """
    How to launch the proxy under test.

    The defaults follow nghttpx command-line conventions.
    Address flags are templates formatted with ``host`` and ``port``.
    """

    #: Program and leading arguments, for example ``["nghttpx"]``.
    command: Sequence[str] = ("nghttpx",)

    #: Arguments added to every invocation (before test-specific flags).
    extra_args: Sequence[str] = ()

    #: Template of a flag with the front-end (listening) address.
    frontend_flag: str = "-f{host},{port}"

    #: Template of a flag with the backend address.
    backend_flag: str = "-b{host},{port}"

    #: Flag that disables TLS at the front end (``None`` if not needed).
    frontend_no_tls_flag: str | None = "--frontend-no-tls"

    #: Flags that make the proxy speak HTTP/2 to the backend.
    http2_bridge_flags: Sequence[str] = ("--http2-bridge",)

    #: Signal that starts a graceful shutdown.
    graceful_signal: signal.Signals = signal.SIGQUIT

    #: Signal that asks the proxy to terminate.
    terminate_signal: signal.Signals = signal.SIGTERM

    #: Environment variables to set for the proxy process.
    env: Mapping[str, str] = dataclasses.field(default_factory=dict)

    def clone(self) -> ProxyConfig:
        """
        Clone this instance.
        """
        return dataclasses.replace(self)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ProxyConfig:
        """
        Create a configuration with a command from ``BRIDGECHECK_PROXY``.

        :param environ: environment to read (defaults to ``os.environ``)
        :return: a new instance
        """
        if environ is None:
            environ = os.environ
        value = environ.get(PROXY_ENV_VAR, "").strip()
        if not value:
            raise ValueError(f"Environment variable {PROXY_ENV_VAR} is not set.")
        return cls(command=shlex.split(value))

    def bridges_http2(self, flags: Sequence[str]) -> bool:
        """
        Whether the given flags make the proxy speak HTTP/2 to the backend.
        """
        return any(flag in self.http2_bridge_flags for flag in flags)
