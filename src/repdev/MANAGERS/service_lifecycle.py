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
Lifecycle management for a single service container: pull, replace a stale
container, create, start, wait for readiness, run hooks.
"""
import time
from typing import Callable, Optional, Tuple

from tenacity import Retrying, RetryError, retry_if_result, stop_after_attempt, wait_fixed

from ..MODELS.orchestration_config import EnvironmentConfig, OrchestrationOptions
from ..MODELS.outcome import OutcomeStatus, ServiceOutcome
from ..MODELS.runtime_container import RuntimeContainerRef
from ..MODELS.service_definition import ServiceSpec
from ..RUNNERS.hook_runner import HookExecutor, HookExecutionError
from ..RUNNERS.runtime_client import (
    RuntimeClient,
    RuntimeOperationError,
    RuntimeUnavailableError,
    map_env,
    map_ports,
)
from ..UTILS.ownership import SERVICE_KEY, split_label
from ..UTILS.reporter import EventKind, Reporter
from .environment_manager import EnvironmentManager
from .readiness_checker import ReadinessChecker
from .volume_manager import VolumeManager

_RUNTIME_FAILURES = (RuntimeOperationError, RuntimeUnavailableError)


class LifecycleStepError(Exception):
    """
    One startup step failed. Fatal for the service it belongs to.
    """

    def __init__(self, phase: str, reason: str):
        self.phase = phase
        self.reason = reason
        super().__init__(f"{phase} failed: {reason}")


class ServiceLifecycleDriver:
    """
    Brings one service up. Every step is awaited before the next starts.
    """

    def __init__(self,
                 client: RuntimeClient,
                 reporter: Reporter,
                 hooks: HookExecutor,
                 checker: Optional[ReadinessChecker] = None,
                 sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], float] = time.monotonic):
        """
        Initializes the driver.

        :param client: Runtime adapter.
        :param reporter: Receives one event per step.
        :param hooks: Runs before_start / after_start hooks.
        :param checker: Readiness probe; built on the client if omitted.
        :param sleep: Used between readiness probes.
        :param clock: Used to time readiness.
        """
        self.client = client
        self.reporter = reporter
        self.hooks = hooks
        self.checker = checker or ReadinessChecker(client)
        self.sleep = sleep
        self.clock = clock

    def bring_up(self,
                 name: str,
                 spec: ServiceSpec,
                 config: EnvironmentConfig,
                 options: OrchestrationOptions) -> ServiceOutcome:
        """
        Runs the startup sequence for one service.

        :return: The outcome; a failed step yields a FAILED outcome carrying
            the phase and reason instead of raising.
        """
        if not options.includes(name):
            self.reporter.emit(EventKind.SKIPPED, "Not selected, skipping", name, options.dry_run)
            return ServiceOutcome(name, OutcomeStatus.SKIPPED, reason="excluded by service filter")

        try:
            return self._bring_up(name, spec, config, options)
        except LifecycleStepError as e:
            self.reporter.emit(EventKind.FAILED, str(e), name, options.dry_run)
            return ServiceOutcome(
                name,
                OutcomeStatus.FAILED,
                reason=e.reason,
                phase=e.phase,
                container_name=spec.container_name,
            )

    def _bring_up(self, name, spec, config, options) -> ServiceOutcome:
        dry_run = options.dry_run

        self._run_hooks("before_start", spec.hooks.before_start, name, config, dry_run)
        self._pull(name, spec.image, dry_run)

        existing = self._find_existing(name, spec, dry_run)
        if existing is not None:
            if existing.is_running and not options.force:
                self.reporter.emit(
                    EventKind.ALREADY_RUNNING,
                    f"Container {existing.name} is already running, leaving it alone (use --force to recreate)",
                    name,
                    dry_run,
                )
                self._run_hooks("after_start", spec.hooks.after_start, name, config, dry_run)
                return ServiceOutcome(name, OutcomeStatus.ALREADY_RUNNING, container_name=existing.name)
            self._remove_stale(name, existing, dry_run)

        container_id = self._create(name, spec, config, dry_run)
        self._start(name, spec, container_id, dry_run)

        attempts, elapsed_ms = 0, 0
        if spec.wait_for is not None and not options.no_wait:
            attempts, elapsed_ms = self._wait_ready(name, spec, container_id, dry_run)

        label = spec.container_name or (container_id or "")[:12] or name
        if attempts:
            message = f"Container started: {label} (ready after {attempts} attempt(s), {elapsed_ms}ms)"
        else:
            message = f"Container started: {label}"
        self.reporter.emit(EventKind.STARTED, message, name, dry_run)

        self._run_hooks("after_start", spec.hooks.after_start, name, config, dry_run)
        return ServiceOutcome(
            name,
            OutcomeStatus.STARTED,
            attempts=attempts,
            elapsed_ms=elapsed_ms,
            container_name=spec.container_name,
        )

    def _run_hooks(self, phase: str, commands, name: str, config: EnvironmentConfig, dry_run: bool):
        try:
            self.hooks.run_hooks(phase, commands, dry_run=dry_run, service=name, cwd=config.base_dir)
        except HookExecutionError as e:
            raise LifecycleStepError(phase, str(e)) from e

    def _pull(self, name: str, image: str, dry_run: bool):
        if dry_run:
            self.reporter.emit(EventKind.PULL, f"Would pull image {image}", name, dry_run=True)
            return

        self.reporter.emit(EventKind.PULL, f"Pulling image {image}", name)
        try:
            for event in self.client.pull_image(image):
                status = event.get("status")
                if status:
                    progress = event.get("progress")
                    self.reporter.progress(f"Pull: {image} - {status}{' ' + progress if progress else ''}", name)
        except _RUNTIME_FAILURES as e:
            raise LifecycleStepError("pull", str(e)) from e

    def _find_existing(self, name: str, spec: ServiceSpec, dry_run: bool) -> Optional[RuntimeContainerRef]:
        """
        Looks up a container already holding the declared name.
        """
        if not spec.container_name:
            return None
        try:
            return self.client.find_by_name(spec.container_name)
        except _RUNTIME_FAILURES as e:
            if dry_run:
                self.reporter.emit(
                    EventKind.WARNING,
                    f"Could not check for an existing {spec.container_name}: {e}",
                    name,
                    dry_run=True,
                )
                return None
            raise LifecycleStepError("lookup", str(e)) from e

    def _remove_stale(self, name: str, existing: RuntimeContainerRef, dry_run: bool):
        if dry_run:
            self.reporter.emit(
                EventKind.REMOVE_STALE,
                f"Would remove existing container {existing.name} ({existing.state})",
                name,
                dry_run=True,
            )
            return

        self.reporter.emit(
            EventKind.REMOVE_STALE,
            f"Container name \"{existing.name}\" already in use by {existing.short_id} ({existing.state}), removing it",
            name,
        )
        try:
            self.client.remove(existing.id, force=True)
        except _RUNTIME_FAILURES as e:
            raise LifecycleStepError("remove", str(e)) from e

    def _create(self, name: str, spec: ServiceSpec, config: EnvironmentConfig, dry_run: bool) -> Optional[str]:
        environment = EnvironmentManager(config.base_dir, self.reporter).get_merged_environment(
            spec.environment, spec.env_file, name
        )
        labels = {SERVICE_KEY: name}
        if config.run_label:
            labels.update(split_label(config.run_label))
        target = spec.container_name or "an unnamed container"

        if dry_run:
            self.reporter.emit(EventKind.CREATE, f"Would create {target} from {spec.image}", name, dry_run=True)
            return None

        self.reporter.emit(EventKind.CREATE, f"Creating {target} from {spec.image}", name)
        try:
            return self.client.create_container(
                image=spec.image,
                name=spec.container_name,
                command=spec.command,
                environment=map_env(environment),
                port_bindings=map_ports(spec.ports),
                binds=VolumeManager(config.base_dir).resolve_binds(spec.volumes),
                labels=labels,
                working_dir=spec.working_dir,
            )
        except _RUNTIME_FAILURES as e:
            raise LifecycleStepError("create", str(e)) from e

    def _start(self, name: str, spec: ServiceSpec, container_id: Optional[str], dry_run: bool):
        target = spec.container_name or (container_id or "")[:12]
        if dry_run:
            self.reporter.emit(EventKind.START, f"Would start {target or 'the container'}", name, dry_run=True)
            return

        self.reporter.emit(EventKind.START, f"Starting {target}", name)
        try:
            self.client.start(container_id)
        except _RUNTIME_FAILURES as e:
            raise LifecycleStepError("start", str(e)) from e

    def _wait_ready(self, name: str, spec: ServiceSpec, container_id: Optional[str], dry_run: bool) -> Tuple[int, int]:
        """
        Polls the readiness probe until it passes or the retries run out.

        :return: (attempts, elapsed milliseconds).
        :raises LifecycleStepError: When the service never became ready.
        """
        strategy = spec.wait_for
        retries = strategy.retries
        described = describe_strategy(strategy, spec)

        if dry_run:
            self.reporter.emit(EventKind.WAIT, f"Would wait for {described}", name, dry_run=True)
            return 0, 0

        self.reporter.emit(
            EventKind.WAIT,
            f"Waiting for {described} (up to {retries} attempt(s), every {strategy.interval}ms)",
            name,
        )
        attempts = 0

        def attempt() -> bool:
            nonlocal attempts
            attempts += 1
            return self.checker.probe(strategy, spec, container_id)

        started = self.clock()
        retryer = Retrying(
            stop=stop_after_attempt(retries),
            wait=wait_fixed(strategy.interval / 1000.0),
            retry=retry_if_result(lambda ready: not ready),
            sleep=self.sleep,
        )
        try:
            retryer(attempt)
        except RetryError as e:
            raise LifecycleStepError(
                "readiness",
                f"{described} not ready after {attempts} attempt(s) ({strategy.timeout}ms timeout)",
            ) from e
        return attempts, int((self.clock() - started) * 1000)


def describe_strategy(strategy, spec: ServiceSpec) -> str:
    """Short human description of a wait strategy."""
    if strategy.type == "http":
        return f"http {strategy.url}"
    if strategy.type == "tcp":
        return f"tcp {strategy.host}:{strategy.port}"
    return f"health of {strategy.container_name or spec.container_name or spec.name}"
