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

from typing import Sequence


class HarnessError(Exception):
    """
    Base class for errors raised by the harness.
    """


class StartupError(HarnessError):
    """
    The proxy or the backend could not be started.

    Fatal to a test, never retried.
    """

    #: Output captured from the proxy process, if any.
    output: str

    def __init__(self, message: str, output: str = "") -> None:
        if output:
            message = f"{message}\n--- proxy output ---\n{output}"
        super().__init__(message)
        self.output = output


class StartupTimeout(StartupError):
    """
    The proxy front end did not become connectable in time.
    """


class HarnessIOError(HarnessError):
    """
    A connection to the proxy failed while writing or reading.
    """


class ConnectionClosedError(HarnessIOError):
    """
    The proxy closed a connection before a complete response was read.
    """


class ReadTimeout(HarnessIOError):
    """
    The proxy did not send anything in time.
    """


class ResponseParseError(HarnessError):
    """
    The proxy sent bytes that are not a valid HTTP/1.1 response.
    """


class HandlerAssertionError(HarnessError, AssertionError):
    """
    A backend handler failed while serving forwarded requests.

    Raised when a server tester is closed, so that handler failures
    fail the test even though they happened in the backend.
    """

    #: Exceptions raised by the handler, in the order they happened.
    errors: Sequence[BaseException]

    def __init__(self, errors: Sequence[BaseException]) -> None:
        lines = [f"Backend handler failed {len(errors)} time(s):"]
        lines += [f"  {type(e).__name__}: {e}" for e in errors]
        super().__init__("\n".join(lines))
        self.errors = list(errors)
