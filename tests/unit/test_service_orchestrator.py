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
Unit tests for whole-environment orchestration.
"""
import pytest

from repdev.MANAGERS.service_orchestrator import DAEMON_HINT, EnvironmentOrchestrator
from repdev.MODELS.orchestration_config import OrchestrationOptions
from repdev.MODELS.outcome import ContainerStatus, OutcomeStatus
from repdev.UTILS.reporter import EventKind

STACK = """
hooks:
  pre_up: ["echo A >> order.log"]
  post_up: ["echo E >> order.log"]
services:
  db:
    image: postgres:16
    container_name: stack_db
    hooks:
      before_start: ["echo B >> order.log"]
  api:
    image: node:20
    container_name: stack_api
    hooks:
      after_start: ["echo C >> order.log"]
  web:
    image: nginx
    container_name: stack_web
    hooks:
      before_start: ["echo D >> order.log"]
"""


@pytest.fixture
def orchestrator(runtime, reporter, sleeps):
    return EnvironmentOrchestrator(runtime, reporter=reporter, sleep=sleeps.append)


def _opts(**kwargs):
    if "services" in kwargs:
        kwargs["services"] = frozenset(kwargs["services"])
    return OrchestrationOptions(**kwargs)


class TestUp:
    """Tests for EnvironmentOrchestrator.up."""

    def test_declaration_order_and_hook_order(self, orchestrator, runtime, make_config, tmp_path):
        result = orchestrator.up(make_config(STACK), _opts())

        assert result.ok
        assert [o.service for o in result.outcomes] == ["db", "api", "web"]
        assert [c[1] for c in runtime.calls if c[0] == "pull"] == ["postgres:16", "node:20", "nginx"]
        assert (tmp_path / "order.log").read_text().split() == ["A", "B", "C", "D", "E"]

    def test_idempotent(self, orchestrator, runtime, reporter, make_config):
        config = make_config(STACK)
        orchestrator.up(config, _opts())
        runtime.calls.clear()

        result = orchestrator.up(config, _opts())
        assert result.ok
        assert {o.status for o in result.outcomes} == {OutcomeStatus.ALREADY_RUNNING}
        assert set(runtime.ops()) == {"pull"}
        assert len(runtime.containers) == 3

    def test_force_recreates_everything(self, orchestrator, runtime, make_config):
        config = make_config(STACK)
        orchestrator.up(config, _opts())
        before = set(runtime.containers)

        result = orchestrator.up(config, _opts(force=True))
        assert {o.status for o in result.outcomes} == {OutcomeStatus.STARTED}
        assert not before & set(runtime.containers)

    def test_service_filter(self, orchestrator, runtime, make_config, tmp_path):
        result = orchestrator.up(make_config(STACK), _opts(services={"api"}))

        statuses = {o.service: o.status for o in result.outcomes}
        assert statuses == {"db": OutcomeStatus.SKIPPED, "api": OutcomeStatus.STARTED, "web": OutcomeStatus.SKIPPED}
        assert runtime.by_name("stack_db") is None
        assert runtime.by_name("stack_api") is not None
        # Global hooks still run around a filtered run
        assert (tmp_path / "order.log").read_text().split() == ["A", "C", "E"]

    def test_unknown_service_warns(self, orchestrator, reporter, make_config):
        result = orchestrator.up(make_config(STACK), _opts(services={"api", "cache"}))
        assert result.ok
        warnings = [e.message for e in reporter.events if e.kind == EventKind.WARNING]
        assert any("'cache' not found" in w for w in warnings)

    def test_first_failure_stops_run(self, orchestrator, runtime, make_config, tmp_path):
        runtime.fail[("pull", "node:20")] = "manifest unknown"
        result = orchestrator.up(make_config(STACK), _opts())

        assert not result.ok
        assert result.error.startswith("Service 'api' failed during pull")
        assert [o.service for o in result.outcomes] == ["db", "api"]
        # Not transactional: db stays up
        assert runtime.by_name("stack_db")["state"] == "running"
        assert runtime.by_name("stack_web") is None
        assert (tmp_path / "order.log").read_text().split() == ["A", "B"]

    def test_pre_up_failure_touches_nothing(self, orchestrator, runtime, make_config):
        config = make_config("hooks:\n  pre_up: ['exit 7']\nservices:\n  web:\n    image: nginx\n")
        result = orchestrator.up(config, _opts())

        assert "pre_up hook failed" in result.error
        assert result.outcomes == []
        assert runtime.mutating_calls == []

    def test_post_up_failure(self, orchestrator, runtime, make_config):
        config = make_config("hooks:\n  post_up: ['exit 1']\nservices:\n  web:\n    image: nginx\n")
        result = orchestrator.up(config, _opts())

        assert "post_up hook failed" in result.error
        assert result.outcomes[0].status == OutcomeStatus.STARTED

    def test_unreachable_runtime(self, orchestrator, runtime, reporter, make_config):
        runtime.reachable = False
        result = orchestrator.up(make_config(STACK), _opts())

        assert not result.ok
        assert result.hint == DAEMON_HINT
        assert result.outcomes == []
        assert reporter.kinds() == [EventKind.FAILED]


class TestDryRun:
    """Dry-run and live runs emit the same steps; dry-run changes nothing."""

    def test_up_parity(self, runtime, reporter, sleeps, make_config, tmp_path):
        config = make_config(STACK)
        EnvironmentOrchestrator(runtime, reporter=reporter, sleep=sleeps.append).up(config, _opts(dry_run=True))
        dry_kinds = reporter.kinds()

        assert runtime.mutating_calls == []
        assert not (tmp_path / "order.log").exists()
        assert all(e.dry_run for e in reporter.events)

        reporter.events.clear()
        EnvironmentOrchestrator(runtime, reporter=reporter, sleep=sleeps.append).up(config, _opts())
        assert reporter.kinds() == dry_kinds

    def test_down_parity(self, runtime, reporter, make_config):
        config = make_config(STACK)
        orchestrator = EnvironmentOrchestrator(runtime, reporter=reporter)
        orchestrator.up(config, _opts())
        reporter.events.clear()
        runtime.calls.clear()

        orchestrator.down(config, _opts(dry_run=True, force=True))
        dry_kinds = reporter.kinds()
        assert runtime.mutating_calls == []
        assert len(runtime.containers) == 3

        reporter.events.clear()
        orchestrator.down(config, _opts(force=True))
        assert reporter.kinds() == dry_kinds
        assert runtime.containers == {}

    def test_dry_run_skips_liveness(self, runtime, reporter, make_config):
        runtime.reachable = False
        result = EnvironmentOrchestrator(runtime, reporter=reporter).up(make_config(STACK), _opts(dry_run=True))
        assert result.ok
        assert ("ping", None) not in runtime.calls


class TestDown:
    """Tests for EnvironmentOrchestrator.down."""

    def test_round_trip(self, orchestrator, runtime, make_config):
        config = make_config(STACK)
        orchestrator.up(config, _opts())
        result = orchestrator.down(config, _opts(force=True))

        assert result.ok
        assert result.resolution == "label"
        assert {c.status for c in result.containers} == {ContainerStatus.REMOVED}
        assert runtime.containers == {}

    def test_unreachable_runtime(self, orchestrator, runtime, make_config):
        runtime.reachable = False
        result = orchestrator.down(make_config(STACK), _opts(force=True))
        assert result.hint == DAEMON_HINT


class TestRestart:
    """Tests for EnvironmentOrchestrator.restart."""

    def test_restarts_owned_containers(self, orchestrator, runtime, make_config):
        config = make_config(STACK)
        orchestrator.up(config, _opts())
        runtime.calls.clear()

        result = orchestrator.restart(config, _opts(services={"api"}))
        assert [c.service for c in result.containers] == ["api"]
        assert result.containers[0].status == ContainerStatus.RESTARTED
        assert runtime.ops() == ["restart"]

    def test_failure_does_not_stop_others(self, orchestrator, runtime, make_config):
        config = make_config(STACK)
        orchestrator.up(config, _opts())
        runtime.fail[("restart", runtime.by_name("stack_db")["id"])] = "boom"

        result = orchestrator.restart(config, _opts())
        statuses = {c.service: c.status for c in result.containers}
        assert statuses == {
            "db": ContainerStatus.FAILED,
            "api": ContainerStatus.RESTARTED,
            "web": ContainerStatus.RESTARTED,
        }
        assert result.ok

    def test_dry_run(self, orchestrator, runtime, make_config):
        config = make_config(STACK)
        orchestrator.up(config, _opts())
        runtime.calls.clear()

        result = orchestrator.restart(config, _opts(dry_run=True))
        assert len(result.containers) == 3
        assert runtime.mutating_calls == []

    def test_nothing_to_restart(self, orchestrator, make_config):
        result = orchestrator.restart(make_config(STACK), _opts())
        assert result.ok
        assert result.containers == []
        assert result.resolution is None


def test_single_service_hook_order(orchestrator, make_config, tmp_path):
    config = make_config("""
hooks:
  preUp: ["echo A >> order.log", "echo B >> order.log"]
  postUp: ["echo E >> order.log"]
services:
  s:
    image: busybox
    container_name: only_s
    hooks:
      beforeStart: ["echo C >> order.log"]
      afterStart: ["echo D >> order.log"]
""")
    assert orchestrator.up(config, _opts()).ok
    assert (tmp_path / "order.log").read_text().split() == ["A", "B", "C", "D", "E"]


def test_down_after_container_rename(orchestrator, runtime, make_config):
    orchestrator.up(make_config(STACK), _opts())
    renamed = make_config(STACK.replace("stack_", "renamed_"))

    result = orchestrator.down(renamed, _opts(force=True))
    assert result.resolution == "label"
    assert len(result.containers) == 3
    assert runtime.containers == {}
