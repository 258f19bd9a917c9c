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
Unit tests for readiness probes.
"""
import socket
import threading
import time
from http.server import BaseHTTPRequestHandler, HTTPServer

import pytest

from repdev.MANAGERS.readiness_checker import PROBE_TIMEOUT, HealthStatus, ReadinessChecker, health_status
from repdev.MODELS.service_definition import ContainerHealthyWait, HttpWait, ServiceSpec, TcpWait
from repdev.RUNNERS.runtime_client import RuntimeUnavailableError


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


class _StatusHandler(BaseHTTPRequestHandler):
    def do_GET(self):
        if self.path.startswith("/redirect/"):
            self.send_response(302)
            self.send_header("Location", self.path[len("/redirect/"):])
            self.end_headers()
            return
        code = int(self.path.strip("/") or 200)
        self.send_response(code)
        self.end_headers()

    def log_message(self, *args):
        pass


@pytest.fixture
def http_server():
    server = HTTPServer(("127.0.0.1", 0), _StatusHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{server.server_address[1]}"
    server.shutdown()
    server.server_close()


@pytest.fixture
def slow_server():
    """Answers with one header line every 200 ms, never finishing in time."""
    listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    listener.bind(("127.0.0.1", 0))
    listener.listen(1)
    stop = threading.Event()

    def drip():
        try:
            conn, _ = listener.accept()
        except OSError:
            return
        with conn:
            try:
                conn.recv(1024)
                conn.sendall(b"HTTP/1.1 200 OK\r\n")
                for i in range(20):
                    if stop.wait(0.2):
                        break
                    conn.sendall(f"X-Drip-{i}: 1\r\n".encode())
            except OSError:
                pass

    thread = threading.Thread(target=drip, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{listener.getsockname()[1]}/"
    stop.set()
    listener.close()
    thread.join(timeout=1)


@pytest.fixture
def checker(runtime):
    return ReadinessChecker(runtime)


SERVICE = ServiceSpec(name="web", image="x", container_name="web_1")


class TestHttpProbe:
    """Tests for the HTTP probe."""

    def test_ok(self, checker, http_server):
        assert checker.probe(HttpWait(url=f"{http_server}/200"), SERVICE)

    def test_no_content_is_ready(self, checker, http_server):
        assert checker.probe(HttpWait(url=f"{http_server}/204"), SERVICE)

    def test_redirect_is_ready(self, checker, http_server):
        assert checker.probe(HttpWait(url=f"{http_server}/302"), SERVICE)

    def test_redirect_is_not_followed(self, checker, http_server):
        closed = f"http://127.0.0.1:{_free_port()}/"
        assert checker.probe(HttpWait(url=f"{http_server}/redirect/{closed}"), SERVICE)

    def test_redirect_to_missing_page_is_ready(self, checker, http_server):
        assert checker.probe(HttpWait(url=f"{http_server}/redirect/{http_server}/404"), SERVICE)

    def test_slow_response_bounded_by_probe_timeout(self, runtime, slow_server):
        started = time.monotonic()
        ready = ReadinessChecker(runtime, probe_timeout=0.5).probe(HttpWait(url=slow_server), SERVICE)
        assert not ready
        assert time.monotonic() - started < 2.0

    def test_server_error_not_ready(self, checker, http_server):
        assert not checker.probe(HttpWait(url=f"{http_server}/503"), SERVICE)

    def test_not_found_not_ready(self, checker, http_server):
        assert not checker.probe(HttpWait(url=f"{http_server}/404"), SERVICE)

    def test_refused_not_ready(self, checker):
        assert not checker.probe(HttpWait(url=f"http://127.0.0.1:{_free_port()}/"), SERVICE)

    def test_malformed_url_not_ready(self, checker):
        assert not checker.probe(HttpWait(url="not a url"), SERVICE)


class TestTcpProbe:
    """Tests for the TCP probe."""

    def test_listener_ready(self, checker):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as server:
            server.bind(("127.0.0.1", 0))
            server.listen(1)
            port = server.getsockname()[1]
            assert checker.probe(TcpWait(host="127.0.0.1", port=port), SERVICE)

    def test_no_listener(self, checker):
        assert not checker.probe(TcpWait(host="127.0.0.1", port=_free_port()), SERVICE)


class TestContainerHealthProbe:
    """Tests for the runtime health probe."""

    def test_healthy(self, checker, runtime):
        runtime.add_container("web_1")
        runtime.health["web_1"] = "healthy"
        assert checker.probe(ContainerHealthyWait(), SERVICE)

    @pytest.mark.parametrize("status", ["starting", "unhealthy"])
    def test_not_healthy(self, checker, runtime, status):
        runtime.add_container("web_1")
        runtime.health["web_1"] = status
        assert not checker.probe(ContainerHealthyWait(), SERVICE)

    def test_no_healthcheck_never_ready(self, checker, runtime):
        runtime.add_container("web_1")
        assert not checker.probe(ContainerHealthyWait(), SERVICE)

    def test_missing_container(self, checker):
        assert not checker.probe(ContainerHealthyWait(), SERVICE)

    def test_explicit_container_name_wins(self, checker, runtime):
        runtime.add_container("sidecar")
        runtime.health["sidecar"] = "healthy"
        assert checker.probe(ContainerHealthyWait(container_name="sidecar"), SERVICE)

    def test_falls_back_to_container_id(self, checker, runtime):
        container_id = runtime.add_container("anon")
        runtime.health["anon"] = "healthy"
        assert checker.probe(ContainerHealthyWait(), ServiceSpec(name="svc", image="x"), container_id)

    def test_runtime_error_not_ready(self, checker, runtime):
        def unreachable(target):
            raise RuntimeUnavailableError("connection refused")
        runtime.inspect = unreachable
        assert not checker.probe(ContainerHealthyWait(), SERVICE)


def test_no_strategy_is_ready(checker):
    assert checker.probe(None, SERVICE)


def test_probe_timeout_capped(runtime):
    assert ReadinessChecker(runtime, probe_timeout=30).probe_timeout == PROBE_TIMEOUT


def test_health_status_parsing():
    assert health_status(None) == HealthStatus.NONE
    assert health_status({"State": {}}) == HealthStatus.NONE
    assert health_status({"State": {"Health": {"Status": "healthy"}}}) == HealthStatus.HEALTHY
    assert health_status({"State": {"Health": {"Status": "weird"}}}) == HealthStatus.NONE
