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
Orchestration of a whole environment: global hooks around the services,
which are brought up strictly one after another in declaration order.
"""
import time
from typing import Callable, Optional

from ..MODELS.orchestration_config import EnvironmentConfig, OrchestrationOptions
from ..MODELS.outcome import ContainerOutcome, ContainerStatus, RunResult
from ..RUNNERS.hook_runner import HookExecutor, HookExecutionError
from ..RUNNERS.runtime_client import RuntimeClient, RuntimeOperationError, RuntimeUnavailableError
from ..UTILS.reporter import EventKind, Reporter
from .readiness_checker import ReadinessChecker
from .service_lifecycle import ServiceLifecycleDriver
from .teardown_resolver import TeardownResolver

DAEMON_HINT = (
    "Cannot connect to the Docker daemon. Make sure Docker is running, or set "
    "DOCKER_HOST to a reachable daemon (e.g. unix:///var/run/docker.sock or tcp://127.0.0.1:2375)."
)


class EnvironmentOrchestrator:
    """
    Brings a validated environment up, down, or restarts it.

    The orchestrator is not transactional: a failure leaves services that
    already started running. Re-running `up` is the recovery path, since a
    running container with the declared name is left alone.
    """
    def __init__(self,
                 client: RuntimeClient,
                 reporter: Optional[Reporter] = None,
                 hooks: Optional[HookExecutor] = None,
                 checker: Optional[ReadinessChecker] = None,
                 sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], float] = time.monotonic):
        """
        Initializes the orchestrator.

        :param client: Runtime adapter, passed explicitly so tests can substitute a fake.
        :param reporter: Event sink; a console reporter by default.
        :param hooks: Hook executor; built on the reporter if omitted.
        :param checker: Readiness probe.
        :param sleep: Sleep between readiness probes.
        :param clock: Monotonic clock used to time readiness.
        """
        self.client = client
        self.reporter = reporter or Reporter()
        self.hooks = hooks or HookExecutor(self.reporter)
        self.driver = ServiceLifecycleDriver(
            client, self.reporter, self.hooks, checker=checker, sleep=sleep, clock=clock
        )
        self.resolver = TeardownResolver(client, self.reporter, self.hooks)

    def up(self, config: EnvironmentConfig, options: OrchestrationOptions) -> RunResult:
        """
        Starts the selected services in declaration order.

        :param config: The validated environment.
        :param options: Force, dry-run, service filter and wait switches.
        :return: Outcomes per service; `error` is set when a stage failed.
        """
        result = RunResult(action="up", dry_run=options.dry_run)

        if not self._check_runtime(options, result):
            return result
        self._warn_unknown_services(config, options)

        try:
            self.hooks.run_hooks("pre_up", config.hooks.pre_up, dry_run=options.dry_run, cwd=config.base_dir)
        except HookExecutionError as e:
            return result.fail(str(e))

        for name, spec in config.services.items():
            outcome = self.driver.bring_up(name, spec, config, options)
            result.outcomes.append(outcome)
            if outcome.failed:
                return result.fail(f"Service '{name}' failed during {outcome.phase}: {outcome.reason}")

        try:
            self.hooks.run_hooks("post_up", config.hooks.post_up, dry_run=options.dry_run, cwd=config.base_dir)
        except HookExecutionError as e:
            return result.fail(str(e))
        return result

    def down(self, config: EnvironmentConfig, options: OrchestrationOptions) -> RunResult:
        """
        Stops and removes the template's containers.
        """
        check = RunResult(action="down", dry_run=options.dry_run)
        if not self._check_runtime(options, check):
            return check
        self._warn_unknown_services(config, options)
        return self.resolver.down(config, options)

    def restart(self, config: EnvironmentConfig, options: OrchestrationOptions) -> RunResult:
        """
        Restarts the template's existing containers in place.
        Per-container failures are reported and do not stop the others.
        """
        result = RunResult(action="restart", dry_run=options.dry_run)
        if not self._check_runtime(options, result):
            return result
        self._warn_unknown_services(config, options)

        try:
            mode, targets = self.resolver.locate(config, options)
        except (RuntimeOperationError, RuntimeUnavailableError) as e:
            return result.fail(f"Could not list containers: {e}")
        result.resolution = mode

        if not targets:
            self.reporter.info("Nothing to restart. Run 'repdev up' first to start containers.")
        for ref, service in targets:
            if options.dry_run:
                self.reporter.emit(EventKind.RESTART, f"Would restart {ref.name}", service, dry_run=True)
                result.containers.append(ContainerOutcome(ref.name, ContainerStatus.RESTARTED, service))
                continue
            self.reporter.emit(EventKind.RESTART, f"Restarting {ref.name}", service)
            try:
                self.client.restart(ref.id)
            except (RuntimeOperationError, RuntimeUnavailableError) as e:
                self.reporter.emit(EventKind.FAILED, f"Could not restart {ref.name}: {e}", service)
                result.containers.append(ContainerOutcome(ref.name, ContainerStatus.FAILED, service, reason=str(e)))
                continue
            result.containers.append(ContainerOutcome(ref.name, ContainerStatus.RESTARTED, service))
        return result

    def _check_runtime(self, options: OrchestrationOptions, result: RunResult) -> bool:
        """
        Liveness precondition; skipped in dry-run.
        """
        if options.dry_run:
            return True
        try:
            self.client.ping()
        except RuntimeUnavailableError as e:
            self.reporter.emit(EventKind.FAILED, f"Docker daemon not reachable: {e}")
            result.fail(f"Docker daemon not reachable: {e}", DAEMON_HINT)
            return False
        return True

    def _warn_unknown_services(self, config: EnvironmentConfig, options: OrchestrationOptions):
        for name in sorted(options.services - set(config.services)):
            self.reporter.emit(
                EventKind.WARNING,
                f"Service '{name}' not found in template. Available services: {', '.join(config.services)}",
                dry_run=options.dry_run,
            )
