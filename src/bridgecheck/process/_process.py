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

import logging
import os
import subprocess
import tempfile
from typing import IO, Sequence

import anyio
from anyio.abc import Process

from bridgecheck._configuration import HarnessConfig, ProxyConfig
from bridgecheck._errors import StartupError, StartupTimeout
from bridgecheck._models import Endpoint
from bridgecheck._typing import AddressType
from bridgecheck.networking import allocate_port

logger = logging.getLogger("bridgecheck.process")

# How much of the captured proxy output to show in errors.
_OUTPUT_TAIL = 4096


def build_command(
    proxy_config: ProxyConfig,
    flags: Sequence[str],
    *,
    frontend: Endpoint,
    backend_address: AddressType,
) -> list[str]:
    """
    Build a command line of the proxy under test.

    :param proxy_config: how to launch the proxy
    :param flags: test-specific flags
    :param frontend: where the proxy should listen
    :param backend_address: where the proxy should forward requests
    :return: program arguments
    """
    backend_host, backend_port = backend_address
    command = list(proxy_config.command)
    command += proxy_config.extra_args
    command += flags
    command.append(
        proxy_config.frontend_flag.format(host=frontend.host, port=frontend.port)
    )
    command.append(
        proxy_config.backend_flag.format(host=backend_host, port=backend_port)
    )
    if not frontend.tls and proxy_config.frontend_no_tls_flag:
        command.append(proxy_config.frontend_no_tls_flag)
    return command


class ProxyProcess:
    """
    The proxy under test running as a child process.

    Owns the only reference to the OS process.
    Use :meth:`start` to create instances.
    """

    _process: Process
    _frontend: Endpoint
    _proxy_config: ProxyConfig
    _config: HarnessConfig
    _output_file: IO[bytes]

    _signalled: bool = False
    _reaped: bool = False

    def __init__(
        self,
        process: Process,
        *,
        frontend: Endpoint,
        proxy_config: ProxyConfig,
        config: HarnessConfig,
        output_file: IO[bytes],
    ) -> None:
        self._process = process
        self._frontend = frontend
        self._proxy_config = proxy_config
        self._config = config
        self._output_file = output_file

    @classmethod
    async def start(
        cls,
        flags: Sequence[str],
        backend_address: AddressType,
        *,
        proxy_config: ProxyConfig,
        config: HarnessConfig | None = None,
        frontend_tls: bool = False,
    ) -> ProxyProcess:
        """
        Spawn the proxy and wait until its front end is connectable.

        :param flags: test-specific command-line flags
        :param backend_address: address of the backend test server
        :param proxy_config: how to launch the proxy
        :param config: timeouts; defaults to :class:`.HarnessConfig` defaults
        :param frontend_tls: whether the proxy should accept TLS at the front end
        :return: a running proxy
        :raises StartupError: if the proxy exits during startup
        :raises StartupTimeout: if the proxy is not reachable in time
        """
        if config is None:
            config = HarnessConfig()
        host = config.frontend_host
        frontend = Endpoint(
            "https" if frontend_tls else "http", host, allocate_port(host)
        )
        command = build_command(
            proxy_config, flags, frontend=frontend, backend_address=backend_address
        )
        env = dict(os.environ)
        env.update(proxy_config.env)
        output_file = tempfile.TemporaryFile()
        logger.info(f"Starting proxy: {subprocess.list2cmdline(command)}")
        try:
            process = await anyio.open_process(
                command,
                stdin=subprocess.DEVNULL,
                stdout=output_file,
                stderr=subprocess.STDOUT,
                env=env,
            )
        except OSError as e:
            output_file.close()
            raise StartupError(f"Cannot execute proxy {command[0]!r}: {e}") from e
        proxy = cls(
            process,
            frontend=frontend,
            proxy_config=proxy_config,
            config=config,
            output_file=output_file,
        )
        try:
            await proxy._wait_until_connectable()
        except BaseException:
            with anyio.CancelScope(shield=True):
                await proxy.stop()
            raise
        logger.info(f"Proxy started: pid={proxy.pid}, frontend={frontend}")
        return proxy

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    @property
    def frontend(self) -> Endpoint:
        """Where the proxy accepts client connections"""
        return self._frontend

    def output(self) -> str:
        """
        Return output captured from the proxy (stdout and stderr combined).
        """
        if self._output_file.closed:
            return ""
        # The file offset is shared with the child, so it must not move.
        fd = self._output_file.fileno()
        data = os.pread(fd, os.fstat(fd).st_size, 0)
        return data.decode(errors="replace")

    async def stop(self, graceful: bool = False) -> None:
        """
        Stop the proxy.

        A forced stop sends the termination signal, waits up to the stop timeout,
        kills the process if it is still running, and reaps it.
        A graceful stop only delivers the graceful-shutdown signal
        and returns immediately; a later forced stop still reaps the process.
        Repeated calls are noops.

        :param graceful: whether to start a graceful shutdown
        """
        if self._reaped:
            return
        if graceful:
            if not self._signalled:
                self._signalled = True
                self._send_signal(self._proxy_config.graceful_signal)
            return
        self._reaped = True
        try:
            await self._terminate()
        finally:
            output = self.output()
            self._output_file.close()
            if output:
                logger.debug(f"Proxy output (pid={self.pid}):\n{output}")

    async def _terminate(self) -> None:
        if self._process.returncode is None:
            self._send_signal(self._proxy_config.terminate_signal)
            with anyio.move_on_after(self._config.stop_timeout):
                await self._process.wait()
        if self._process.returncode is None:
            logger.warning(
                f"Proxy did not stop in {self._config.stop_timeout} seconds, "
                f"killing it: pid={self.pid}"
            )
            self._process.kill()
            await self._process.wait()
        logger.info(f"Proxy stopped: pid={self.pid}, returncode={self.returncode}")

    def _send_signal(self, signal: int) -> None:
        if self._process.returncode is not None:
            return
        try:
            self._process.send_signal(signal)
        except ProcessLookupError:
            pass  # Exited meanwhile, it will be reaped by wait().

    async def _wait_until_connectable(self) -> None:
        config = self._config
        delay = config.poll_interval
        attempts = 0
        with anyio.move_on_after(config.startup_timeout):
            while True:
                if self._process.returncode is not None:
                    raise StartupError(
                        f"Proxy exited during startup with code "
                        f"{self._process.returncode}",
                        output=self._output_tail(),
                    )
                attempts += 1
                try:
                    with anyio.fail_after(config.connect_timeout):
                        stream = await anyio.connect_tcp(*self._frontend.address)
                except (OSError, TimeoutError):
                    await anyio.sleep(delay)
                    delay = min(delay * config.poll_backoff, config.poll_max_interval)
                else:
                    await stream.aclose()
                    logger.debug(f"Proxy front end reachable after {attempts} attempts")
                    return
        raise StartupTimeout(
            f"Proxy front end {self._frontend} is not reachable after "
            f"{config.startup_timeout} seconds ({attempts} attempts); "
            f"command-line arguments may be invalid",
            output=self._output_tail(),
        )

    def _output_tail(self) -> str:
        return self.output()[-_OUTPUT_TAIL:]
