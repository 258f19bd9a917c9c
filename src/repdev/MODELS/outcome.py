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
Result values produced by `up`, `down` and `restart`.

Services and containers each get an outcome; the run as a whole carries the
fatal error, if any, that stopped it.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class OutcomeStatus(str, Enum):
    """What happened to one service during `up`."""

    SKIPPED = "skipped"
    STARTED = "started"
    ALREADY_RUNNING = "already_running"
    FAILED = "failed"


class ContainerStatus(str, Enum):
    """What happened to one container during `down` or `restart`."""

    REMOVED = "removed"
    RESTARTED = "restarted"
    KEPT_RUNNING = "kept_running"
    FAILED = "failed"


@dataclass
class ServiceOutcome:
    """Outcome for one declared service."""

    service: str
    status: OutcomeStatus
    reason: str = ""
    phase: Optional[str] = None
    attempts: int = 0
    elapsed_ms: int = 0
    container_name: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.status == OutcomeStatus.FAILED


@dataclass
class ContainerOutcome:
    """Outcome for one runtime container. Failures here are never fatal."""

    container: str
    status: ContainerStatus
    service: Optional[str] = None
    reason: str = ""


@dataclass
class RunResult:
    """Aggregate of a whole invocation."""

    action: str
    dry_run: bool = False
    outcomes: List[ServiceOutcome] = field(default_factory=list)
    containers: List[ContainerOutcome] = field(default_factory=list)
    resolution: Optional[str] = None  # "label", "name" or None for teardown
    error: Optional[str] = None
    hint: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def fail(self, error: str, hint: Optional[str] = None) -> "RunResult":
        self.error = error
        self.hint = hint
        return self

    def by_status(self, status: OutcomeStatus) -> List[ServiceOutcome]:
        return [o for o in self.outcomes if o.status == status]

    @property
    def container_failures(self) -> List[ContainerOutcome]:
        return [c for c in self.containers if c.status == ContainerStatus.FAILED]
