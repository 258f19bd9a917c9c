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
Single-shot readiness probes for started services: HTTP, TCP and the
runtime's own container health status.
"""
import socket
import threading
from enum import Enum
from typing import List, Optional
from http.client import HTTPException
from urllib.error import HTTPError
from urllib.request import HTTPRedirectHandler, Request, build_opener

from ..MODELS.service_definition import ServiceSpec, HttpWait, TcpWait, ContainerHealthyWait
from ..RUNNERS.runtime_client import RuntimeClient, RuntimeOperationError, RuntimeUnavailableError

# Upper bound for one probe, whatever the strategy's own timeout
PROBE_TIMEOUT = 5.0


class HealthStatus(str, Enum):
    """Health status values reported by the runtime."""

    STARTING = "starting"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    NONE = "none"  # No health check configured


class ReadinessChecker:
    """
    Performs one readiness probe per call. Probes never raise: any error,
    refusal or timeout simply means "not ready yet".
    """

    def __init__(self, client: RuntimeClient, probe_timeout: float = PROBE_TIMEOUT):
        """
        :param client: Runtime used for container health lookups.
        :param probe_timeout: Per-probe limit in seconds, capped at PROBE_TIMEOUT.
        """
        self.client = client
        self.probe_timeout = min(probe_timeout, PROBE_TIMEOUT)

    def probe(self, strategy, service: ServiceSpec, container: Optional[str] = None) -> bool:
        """
        Runs one probe.

        :param strategy: The service's wait strategy; None means no gating.
        :param service: The service being checked.
        :param container: Id of the service's own container, when known.
        :return: True when the service is ready.
        """
        if isinstance(strategy, HttpWait):
            return self._probe_http(strategy)
        if isinstance(strategy, TcpWait):
            return self._probe_tcp(strategy)
        if isinstance(strategy, ContainerHealthyWait):
            return self._probe_container(strategy, service, container)
        return True

    def _timeout_for(self, strategy) -> float:
        return min(self.probe_timeout, strategy.timeout / 1000.0)

    def _probe_http(self, strategy: HttpWait) -> bool:
        # The socket timeout bounds each read, the join bounds the whole request
        timeout = self._timeout_for(strategy)
        answer: List[bool] = []
        worker = threading.Thread(target=_http_request, args=(strategy.url, timeout, answer), daemon=True)
        worker.start()
        worker.join(timeout)
        return bool(answer) and answer[0]

    def _probe_tcp(self, strategy: TcpWait) -> bool:
        try:
            with socket.create_connection((strategy.host, strategy.port), timeout=self._timeout_for(strategy)):
                return True
        except OSError:
            return False

    def _probe_container(self, strategy: ContainerHealthyWait, service: ServiceSpec, container: Optional[str]) -> bool:
        target = strategy.container_name or container or service.container_name or service.name
        try:
            data = self.client.inspect(target)
        except (RuntimeOperationError, RuntimeUnavailableError):
            return False
        return health_status(data) == HealthStatus.HEALTHY


class _KeepRedirect(HTTPRedirectHandler):
    """Hands a 3xx back as an HTTPError instead of following it."""

    def redirect_request(self, req, fp, code, msg, headers, newurl):
        return None


_OPENER = build_opener(_KeepRedirect)


def _http_request(url: str, timeout: float, answer: List[bool]):
    try:
        with _OPENER.open(Request(url, method="GET"), timeout=timeout) as response:
            answer.append(200 <= response.status < 400)
    except HTTPError as e:
        e.close()
        answer.append(200 <= e.code < 400)
    except (OSError, HTTPException, ValueError):
        answer.append(False)


def health_status(inspect_data: Optional[dict]) -> HealthStatus:
    """
    Extracts the health status from container inspect data.
    """
    if not inspect_data:
        return HealthStatus.NONE
    health = (inspect_data.get("State") or {}).get("Health") or {}
    try:
        return HealthStatus(health.get("Status", "none"))
    except ValueError:
        return HealthStatus.NONE
