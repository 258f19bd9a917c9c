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
Shared fixtures: an in-memory runtime standing in for the Docker daemon.
"""
import itertools
from typing import Dict, List, Optional

import pytest

from repdev.MODELS.runtime_container import RuntimeContainerRef
from repdev.PARSERS.template_parser import TemplateParser
from repdev.RUNNERS.hook_runner import HookExecutor
from repdev.RUNNERS.runtime_client import RuntimeOperationError, RuntimeUnavailableError
from repdev.UTILS.reporter import Reporter

MUTATING = ("pull", "create", "start", "stop", "restart", "remove")


class FakeRuntimeClient:
    """
    Mirrors RuntimeClient's methods over a dict of containers.

    ``fail`` maps an operation (or an ``(operation, target)`` pair) to the
    error text that call should raise.
    """

    def __init__(self, reachable: bool = True):
        self.reachable = reachable
        self.containers: Dict[str, Dict] = {}
        self.calls: List[tuple] = []
        self.fail: Dict = {}
        self.health: Dict[str, str] = {}
        self._ids = itertools.count(1)

    # Test helpers

    def add_container(self, name: str, image: str = "busybox", state: str = "running",
                      labels: Optional[Dict[str, str]] = None) -> str:
        container_id = f"{next(self._ids):064x}"
        self.containers[container_id] = {
            "id": container_id,
            "name": name,
            "image": image,
            "state": state,
            "labels": dict(labels or {}),
        }
        return container_id

    def by_name(self, name: str) -> Optional[Dict]:
        for container in self.containers.values():
            if container["name"] == name:
                return container
        return None

    @property
    def mutating_calls(self) -> List[tuple]:
        return [call for call in self.calls if call[0] in MUTATING]

    def ops(self) -> List[str]:
        return [call[0] for call in self.mutating_calls]

    def _record(self, operation: str, target):
        self.calls.append((operation, target))
        if not self.reachable:
            raise RuntimeUnavailableError("connect: connection refused")
        message = self.fail.get((operation, target)) or self.fail.get(operation)
        if message:
            raise RuntimeOperationError(operation, target, message)

    def _ref(self, container: Dict) -> RuntimeContainerRef:
        return RuntimeContainerRef(
            id=container["id"],
            names=[container["name"]],
            image=container["image"],
            state=container["state"],
            labels=container["labels"],
        )

    def _resolve(self, target: str) -> Dict:
        container = self.containers.get(target) or self.by_name(target)
        if container is None:
            raise RuntimeOperationError("lookup", target, "No such container")
        return container

    # RuntimeClient surface

    def ping(self):
        self.calls.append(("ping", None))
        if not self.reachable:
            raise RuntimeUnavailableError("connect: connection refused")

    def pull_image(self, ref: str):
        self._record("pull", ref)
        return iter([{"status": "Pulling from library/" + ref}, {"status": "Download complete"}])

    def list_containers(self, label: Optional[str] = None, name: Optional[str] = None) -> List[RuntimeContainerRef]:
        self._record("list", label or name)
        refs = []
        for container in self.containers.values():
            if label:
                key, _, value = label.partition("=")
                if container["labels"].get(key) != value:
                    continue
            if name and container["name"] != name:
                continue
            refs.append(self._ref(container))
        return refs

    def find_by_name(self, name: str) -> Optional[RuntimeContainerRef]:
        found = self.list_containers(name=name)
        return found[0] if found else None

    def create_container(self, image, name=None, command=None, environment=None, port_bindings=None,
                         binds=None, labels=None, working_dir=None) -> str:
        self._record("create", name or image)
        if name and self.by_name(name):
            raise RuntimeOperationError("create", name, f'Conflict. The container name "/{name}" is already in use')
        container_id = self.add_container(name or f"anon_{len(self.containers)}", image, "created", labels)
        self.containers[container_id].update(
            command=command,
            environment=environment,
            port_bindings=port_bindings,
            binds=binds,
            working_dir=working_dir,
        )
        return container_id

    def start(self, container_id: str):
        self._record("start", container_id)
        self._resolve(container_id)["state"] = "running"

    def stop(self, container_id: str, timeout: int = 10):
        self._record("stop", container_id)
        self._resolve(container_id)["state"] = "exited"

    def restart(self, container_id: str, timeout: int = 10):
        self._record("restart", container_id)
        self._resolve(container_id)["state"] = "running"

    def remove(self, container_id: str, force: bool = False):
        self._record("remove", container_id)
        container = self._resolve(container_id)
        if container["state"] == "running" and not force:
            raise RuntimeOperationError("remove", container_id, "cannot remove a running container")
        del self.containers[container["id"]]

    def inspect(self, container: str):
        self.calls.append(("inspect", container))
        found = self.containers.get(container) or self.by_name(container)
        if found is None:
            return None
        state = {"Status": found["state"]}
        status = self.health.get(found["name"])
        if status:
            state["Health"] = {"Status": status}
        return {"Id": found["id"], "Name": "/" + found["name"], "State": state}


@pytest.fixture
def runtime():
    return FakeRuntimeClient()


@pytest.fixture
def reporter():
    return Reporter(quiet=True)


@pytest.fixture
def hooks(reporter):
    return HookExecutor(reporter)


@pytest.fixture
def sleeps():
    """Collects requested sleeps instead of sleeping."""
    return []


@pytest.fixture
def make_config(tmp_path):
    """
    Parses template YAML as if it lived at tmp_path/repdev.yml.
    """
    def _make(content: str, context: Optional[Dict[str, str]] = None):
        path = tmp_path / "repdev.yml"
        path.write_text(content)
        return TemplateParser(context=context or {}).parse(str(path))
    return _make
