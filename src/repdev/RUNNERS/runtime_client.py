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
Adapter over the Docker Engine API.

Everything the lifecycle components need from the runtime goes through
RuntimeClient, so tests can hand the orchestrator a fake with the same
methods instead of a daemon.
"""
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

import docker
from docker.errors import DockerException, NotFound

from ..MODELS.runtime_container import RuntimeContainerRef

# requests' connection errors subclass OSError
_RUNTIME_ERRORS = (DockerException, OSError)


class RuntimeUnavailableError(Exception):
    """
    The runtime daemon did not answer.
    """


class RuntimeOperationError(Exception):
    """
    A runtime API call failed. Carries the operation and its target.
    """

    def __init__(self, operation: str, target: str, cause: Union[Exception, str]):
        self.operation = operation
        self.target = target
        self.cause = cause
        super().__init__(f"{operation} {target} failed: {cause}")


def map_ports(ports: List[str]) -> Dict[str, List[Dict[str, str]]]:
    """
    Translates ``[ip:]host:container[/proto]`` strings into port bindings.

    :param ports: Port mappings as written in the template.
    :return: ``{"80/tcp": [{"HostPort": "8080"}]}`` style bindings.
    """
    bindings: Dict[str, List[Dict[str, str]]] = {}
    for mapping in ports or []:
        spec, _, proto = mapping.partition("/")
        parts = spec.split(":")
        container = parts[-1]
        host = parts[-2]
        binding = {"HostPort": host}
        if len(parts) == 3:
            binding["HostIp"] = parts[0]
        bindings.setdefault(f"{container}/{proto or 'tcp'}", []).append(binding)
    return bindings


def exposed_ports(port_bindings: Dict[str, Any]) -> List[Tuple[int, str]]:
    """Container-side ports to expose for a set of bindings."""
    exposed = []
    for key in port_bindings:
        port, _, proto = key.partition("/")
        exposed.append((int(port), proto or "tcp"))
    return exposed


def map_env(environment: Dict[str, str]) -> List[str]:
    """Flattens a mapping into ``KEY=VALUE`` strings."""
    return [f"{key}={value}" for key, value in (environment or {}).items()]


class RuntimeClient:
    """
    Thin wrapper around docker's low-level API client.
    """

    def __init__(self, client: Optional[docker.DockerClient] = None):
        """
        :param client: A configured DockerClient; created from the
            environment (DOCKER_HOST and friends) on first use otherwise.
        """
        self._client = client

    @property
    def api(self) -> docker.APIClient:
        if self._client is None:
            try:
                self._client = docker.from_env()
            except _RUNTIME_ERRORS as e:
                raise RuntimeUnavailableError(str(e)) from e
        return self._client.api

    def ping(self):
        """
        :raises RuntimeUnavailableError: If the daemon cannot be reached.
        """
        try:
            self.api.ping()
        except _RUNTIME_ERRORS as e:
            raise RuntimeUnavailableError(str(e)) from e

    def pull_image(self, ref: str) -> Iterator[Dict[str, Any]]:
        """
        Pulls an image, yielding the daemon's progress events.

        :raises RuntimeOperationError: When the pull fails, including errors
            reported inside the progress stream.
        """
        try:
            for event in self.api.pull(ref, stream=True, decode=True):
                if "error" in event:
                    raise RuntimeOperationError("pull", ref, event["error"])
                yield event
        except _RUNTIME_ERRORS as e:
            raise RuntimeOperationError("pull", ref, e) from e

    def list_containers(self, label: Optional[str] = None, name: Optional[str] = None) -> List[RuntimeContainerRef]:
        """
        Lists containers in every state.

        :param label: ``key=value`` label filter.
        :param name: Exact container name.
        """
        filters: Dict[str, str] = {}
        if label:
            filters["label"] = label
        if name:
            filters["name"] = name
        try:
            entries = self.api.containers(all=True, filters=filters)
        except _RUNTIME_ERRORS as e:
            raise RuntimeOperationError("list", label or name or "containers", e) from e

        refs = [RuntimeContainerRef.from_api(entry) for entry in entries]
        if name:
            # The daemon's name filter is a substring match
            refs = [ref for ref in refs if name in ref.names]
        return refs

    def find_by_name(self, name: str) -> Optional[RuntimeContainerRef]:
        found = self.list_containers(name=name)
        return found[0] if found else None

    def create_container(self,
                         image: str,
                         name: Optional[str] = None,
                         command: Optional[Union[str, List[str]]] = None,
                         environment: Optional[List[str]] = None,
                         port_bindings: Optional[Dict[str, Any]] = None,
                         binds: Optional[List[str]] = None,
                         labels: Optional[Dict[str, str]] = None,
                         working_dir: Optional[str] = None) -> str:
        """
        Creates (but does not start) a container.

        :return: The new container's id.
        """
        port_bindings = port_bindings or {}
        try:
            host_config = self.api.create_host_config(port_bindings=port_bindings, binds=binds or [])
            created = self.api.create_container(
                image=image,
                name=name,
                command=command,
                environment=environment or [],
                ports=exposed_ports(port_bindings),
                labels=labels or {},
                working_dir=working_dir,
                host_config=host_config,
                tty=True,
            )
        except _RUNTIME_ERRORS as e:
            raise RuntimeOperationError("create", name or image, e) from e
        return created["Id"]

    def start(self, container_id: str):
        self._call("start", container_id, self.api.start, container_id)

    def stop(self, container_id: str, timeout: int = 10):
        self._call("stop", container_id, self.api.stop, container_id, timeout=timeout)

    def restart(self, container_id: str, timeout: int = 10):
        self._call("restart", container_id, self.api.restart, container_id, timeout=timeout)

    def remove(self, container_id: str, force: bool = False):
        self._call("remove", container_id, self.api.remove_container, container_id, force=force)

    def inspect(self, container: str) -> Optional[Dict[str, Any]]:
        """
        Full inspect data for a container id or name, None if it does not exist.
        """
        try:
            return self.api.inspect_container(container)
        except NotFound:
            return None
        except _RUNTIME_ERRORS as e:
            raise RuntimeOperationError("inspect", container, e) from e

    def _call(self, operation: str, target: str, fn, *args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except _RUNTIME_ERRORS as e:
            raise RuntimeOperationError(operation, target, e) from e
