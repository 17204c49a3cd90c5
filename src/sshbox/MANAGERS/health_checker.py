# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
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
Readiness polling for the SSH service of a container.
"""
import logging
import socket
import time
from dataclasses import dataclass
from typing import Callable, Optional, Union

import paramiko
from tenacity import Retrying, retry_if_result, stop_after_delay

from ..MODELS.container_handle import ContainerHandle

logger = logging.getLogger(__name__)


@dataclass
class Ready:
    """The SSH service completed a handshake."""

    attempts: int
    elapsed: float
    server_version: str = ""


@dataclass
class TimedOut:
    """No handshake succeeded before the timeout elapsed."""

    attempts: int
    elapsed: float
    last_error: str = ""


ReadinessResult = Union[Ready, TimedOut]


class HealthChecker:
    """
    Polls a container's published SSH port until an SSH handshake succeeds.
    Returns a typed result instead of raising, so callers choose whether
    to retry or abort.
    """

    def __init__(self,
                 host: str = "127.0.0.1",
                 interval: float = 1.0,
                 handshake_timeout: float = 5.0,
                 sleep: Callable[[float], None] = time.sleep):
        """
        :param host: Address the SSH port is published on.
        :param interval: Seconds between probes.
        :param handshake_timeout: Upper bound for a single probe.
        :param sleep: Sleep function, replaceable in tests.
        """
        self.host = host
        self.interval = interval
        self.handshake_timeout = handshake_timeout
        self.sleep = sleep

    def wait_ready(self, handle: ContainerHandle, timeout: float) -> ReadinessResult:
        """
        Waits until the container's SSH port answers a handshake.

        :param handle: The container to probe.
        :param timeout: Seconds to wait; zero or less returns TimedOut immediately.
        :return: Ready or TimedOut.
        """
        if timeout <= 0:
            return TimedOut(attempts=0, elapsed=0.0, last_error="timeout elapsed before first probe")

        started = time.monotonic()
        deadline = started + timeout
        progress = {"attempts": 0, "error": "", "version": ""}

        def probe() -> bool:
            progress["attempts"] += 1
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            ok, detail = self.probe(self.host, handle.host_port, min(self.handshake_timeout, remaining))
            if ok:
                progress["version"] = detail
            else:
                progress["error"] = detail
                logger.debug("SSH probe %d on %s:%s failed: %s",
                             progress["attempts"], self.host, handle.host_port, detail)
            return ok

        retrying = Retrying(
            stop=stop_after_delay(timeout),
            wait=lambda retry_state: min(self.interval, max(0.0, deadline - time.monotonic())),
            retry=retry_if_result(lambda ok: not ok),
            retry_error_callback=lambda retry_state: False,
            sleep=self.sleep,
        )
        ok = retrying(probe)
        elapsed = time.monotonic() - started

        if ok:
            logger.info("SSH on %s:%s ready after %d attempt(s)", self.host, handle.host_port, progress["attempts"])
            return Ready(attempts=progress["attempts"], elapsed=elapsed, server_version=progress["version"])
        logger.warning("SSH on %s:%s not ready after %.1fs: %s",
                       self.host, handle.host_port, elapsed, progress["error"])
        return TimedOut(attempts=progress["attempts"], elapsed=elapsed, last_error=progress["error"])

    @staticmethod
    def probe(host: str, port: int, timeout: float) -> tuple:
        """
        Performs one SSH transport handshake (no authentication).

        :return: (True, server version) on success, (False, error) otherwise.
        """
        sock: Optional[socket.socket] = None
        transport: Optional[paramiko.Transport] = None
        try:
            sock = socket.create_connection((host, port), timeout=timeout)
            transport = paramiko.Transport(sock)
            transport.banner_timeout = timeout
            transport.start_client(timeout=timeout)
            return True, transport.remote_version or ""
        except (OSError, EOFError, paramiko.SSHException) as e:
            return False, f"{type(e).__name__}: {e}"
        finally:
            if transport is not None:
                transport.close()
            elif sock is not None:
                sock.close()
