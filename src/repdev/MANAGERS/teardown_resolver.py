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
Locating and removing the containers that belong to a template.

Containers carrying the template's ownership label are authoritative. Only
when none exist does resolution fall back to the declared container names.
"""
from typing import List, Optional, Tuple

from ..MODELS.orchestration_config import EnvironmentConfig, OrchestrationOptions
from ..MODELS.outcome import ContainerOutcome, ContainerStatus, RunResult
from ..MODELS.runtime_container import RuntimeContainerRef
from ..RUNNERS.hook_runner import HookExecutor, HookExecutionError
from ..RUNNERS.runtime_client import RuntimeClient, RuntimeOperationError, RuntimeUnavailableError
from ..UTILS.ownership import OWNERSHIP_KEY, split_label
from ..UTILS.reporter import EventKind, Reporter

RESOLVED_BY_LABEL = "label"
RESOLVED_BY_NAME = "name"

_RUNTIME_FAILURES = (RuntimeOperationError, RuntimeUnavailableError)


class TeardownResolver:
    """
    Resolves and removes a template's containers.
    """

    def __init__(self, client: RuntimeClient, reporter: Reporter, hooks: HookExecutor):
        self.client = client
        self.reporter = reporter
        self.hooks = hooks

    def down(self, config: EnvironmentConfig, options: OrchestrationOptions) -> RunResult:
        """
        Tears the environment down.

        Running containers are only removed with ``force``. Stop failures
        are logged; remove failures are reported per container. Neither
        aborts the remaining containers.
        """
        result = RunResult(action="down", dry_run=options.dry_run)

        try:
            self.hooks.run_hooks("pre_down", config.hooks.pre_down, dry_run=options.dry_run, cwd=config.base_dir)
        except HookExecutionError as e:
            return result.fail(str(e))

        try:
            mode, targets = self.locate(config, options)
        except _RUNTIME_FAILURES as e:
            return result.fail(f"Could not list containers: {e}")
        result.resolution = mode

        if not targets:
            self.reporter.info("Nothing to remove")
        for ref, service in targets:
            result.containers.append(self._remove(ref, service, options))

        try:
            self.hooks.run_hooks("post_down", config.hooks.post_down, dry_run=options.dry_run, cwd=config.base_dir)
        except HookExecutionError as e:
            return result.fail(str(e))
        return result

    def locate(self,
               config: EnvironmentConfig,
               options: OrchestrationOptions) -> Tuple[Optional[str], List[Tuple[RuntimeContainerRef, Optional[str]]]]:
        """
        Finds the containers this template owns.

        :return: The resolution mode (``label``, ``name`` or None when
            nothing was found) and ``(container, service name)`` pairs
            already narrowed by the service filter.
        :raises RuntimeOperationError: If the runtime cannot be listed.
        """
        labeled: List[RuntimeContainerRef] = []
        if config.run_label:
            labeled = self._list_tolerant(config.run_label, options)

        if labeled:
            self.reporter.emit(
                EventKind.RESOLVE,
                f"Found {len(labeled)} container(s) owned by this template",
                dry_run=options.dry_run,
            )
            targets = []
            for ref in labeled:
                service = ref.service or config.service_for_container(ref.name)
                if options.services and not self._selected(ref, service, options):
                    self.reporter.emit(EventKind.SKIPPED, f"{ref.name} not selected, skipping", service, options.dry_run)
                    continue
                targets.append((ref, service))
            return RESOLVED_BY_LABEL, targets

        self.reporter.emit(
            EventKind.RESOLVE,
            "No labeled containers found, falling back to declared container names",
            dry_run=options.dry_run,
        )
        own_label = split_label(config.run_label).get(OWNERSHIP_KEY) if config.run_label else None
        targets = []
        for name, spec in config.services.items():
            if not options.includes(name):
                self.reporter.emit(EventKind.SKIPPED, "Not selected, skipping", name, options.dry_run)
                continue
            if not spec.container_name:
                self.reporter.emit(
                    EventKind.NOT_FOUND,
                    "No container_name declared and no ownership label found, nothing to resolve",
                    name,
                    options.dry_run,
                )
                continue
            ref = self._find_tolerant(spec.container_name, options)
            if ref is None:
                self.reporter.emit(EventKind.NOT_FOUND, f"Container {spec.container_name} not found", name, options.dry_run)
                continue
            if ref.ownership_label and ref.ownership_label != own_label:
                self.reporter.emit(
                    EventKind.SKIPPED,
                    f"{ref.name} belongs to another template, leaving it",
                    name,
                    options.dry_run,
                )
                continue
            targets.append((ref, name))
        return (RESOLVED_BY_NAME if targets else None), targets

    def _selected(self, ref: RuntimeContainerRef, service: Optional[str], options: OrchestrationOptions) -> bool:
        if service and service in options.services:
            return True
        return ref.name in options.services

    def _list_tolerant(self, label: str, options: OrchestrationOptions) -> List[RuntimeContainerRef]:
        try:
            return self.client.list_containers(label=label)
        except _RUNTIME_FAILURES as e:
            if not options.dry_run:
                raise
            self.reporter.emit(EventKind.WARNING, f"Could not list containers: {e}", dry_run=True)
            return []

    def _find_tolerant(self, name: str, options: OrchestrationOptions) -> Optional[RuntimeContainerRef]:
        try:
            return self.client.find_by_name(name)
        except _RUNTIME_FAILURES as e:
            if not options.dry_run:
                raise
            self.reporter.emit(EventKind.WARNING, f"Could not look up {name}: {e}", dry_run=True)
            return None

    def _remove(self, ref: RuntimeContainerRef, service: Optional[str], options: OrchestrationOptions) -> ContainerOutcome:
        if ref.is_running and not options.force:
            self.reporter.emit(
                EventKind.KEPT,
                f"{ref.name} is running, skipping (use --force to remove it)",
                service,
                options.dry_run,
            )
            return ContainerOutcome(ref.name, ContainerStatus.KEPT_RUNNING, service)

        if options.dry_run:
            self.reporter.emit(EventKind.STOP, f"Would stop {ref.name}", service, dry_run=True)
            self.reporter.emit(EventKind.REMOVE, f"Would remove {ref.name}", service, dry_run=True)
            return ContainerOutcome(ref.name, ContainerStatus.REMOVED, service)

        self.reporter.emit(EventKind.STOP, f"Stopping {ref.name}", service)
        try:
            self.client.stop(ref.id)
        except _RUNTIME_FAILURES as e:
            # Best effort, remove follows regardless
            self.reporter.emit(EventKind.WARNING, f"Stop of {ref.name} failed, removing anyway: {e}", service)

        self.reporter.emit(EventKind.REMOVE, f"Removing {ref.name}", service)
        try:
            self.client.remove(ref.id, force=options.force)
        except _RUNTIME_FAILURES as e:
            self.reporter.emit(EventKind.FAILED, f"Could not remove {ref.name}: {e}", service)
            return ContainerOutcome(ref.name, ContainerStatus.FAILED, service, reason=str(e))
        self.reporter.info(f"Container removed: {ref.name}", service)
        return ContainerOutcome(ref.name, ContainerStatus.REMOVED, service)
