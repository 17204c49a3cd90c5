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
Unit tests for SSH readiness polling.
"""
import socket
import threading
import time

from sshbox.MANAGERS.health_checker import HealthChecker, Ready, TimedOut
from sshbox.MODELS.container_handle import ContainerHandle
from sshbox.UTILS.port_finder import get_free_port


def _handle(port):
    return ContainerHandle(id="abc", name="box", host_port=port)


class TestHealthChecker:
    """Tests for HealthChecker.wait_ready."""

    def test_zero_timeout_returns_immediately(self):
        checker = HealthChecker(interval=5.0)
        started = time.monotonic()
        result = checker.wait_ready(_handle(get_free_port()), timeout=0)
        assert isinstance(result, TimedOut)
        assert result.attempts == 0
        assert time.monotonic() - started < 0.5

    def test_unreachable_target_times_out(self):
        checker = HealthChecker(interval=0.05, handshake_timeout=0.2)
        result = checker.wait_ready(_handle(get_free_port()), timeout=0.5)
        assert isinstance(result, TimedOut)
        assert result.attempts >= 1
        assert result.last_error

    def test_interval_longer_than_timeout_is_cut_short(self):
        checker = HealthChecker(interval=2.0, handshake_timeout=0.2)
        started = time.monotonic()
        result = checker.wait_ready(_handle(get_free_port()), timeout=0.3)
        assert isinstance(result, TimedOut)
        assert time.monotonic() - started < 0.3 + 0.2 + 0.3

    def test_sleep_never_passes_deadline(self):
        sleeps = []
        checker = HealthChecker(interval=10.0, sleep=sleeps.append)
        checker.probe = lambda host, port, timeout: (False, "ConnectionRefusedError")
        checker.wait_ready(_handle(2222), timeout=0.2)
        assert sleeps
        assert all(0 <= s <= 0.2 for s in sleeps)

    def test_ready_after_retries(self):
        outcomes = [(False, "ConnectionRefusedError"), (False, "EOFError"), (True, "SSH-2.0-OpenSSH_8.9")]
        sleeps = []
        checker = HealthChecker(interval=1.0, sleep=sleeps.append)
        checker.probe = lambda host, port, timeout: outcomes.pop(0)
        result = checker.wait_ready(_handle(2222), timeout=30)
        assert isinstance(result, Ready)
        assert result.attempts == 3
        assert result.server_version == "SSH-2.0-OpenSSH_8.9"
        assert sleeps == [1.0, 1.0]

    def test_probe_fails_on_non_ssh_server(self):
        server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        server.bind(("127.0.0.1", 0))
        server.listen(1)
        port = server.getsockname()[1]

        def serve():
            conn, _ = server.accept()
            conn.sendall(b"HTTP/1.1 400 Bad Request\r\n\r\n")
            conn.close()

        thread = threading.Thread(target=serve, daemon=True)
        thread.start()
        try:
            ok, detail = HealthChecker.probe("127.0.0.1", port, timeout=2.0)
        finally:
            thread.join(timeout=2)
            server.close()
        assert ok is False
        assert detail
