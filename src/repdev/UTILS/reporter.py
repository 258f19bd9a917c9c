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
Console output and the step-event record shared by all lifecycle components.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

import click


class EventKind(str, Enum):
    """Kinds of step events. Dry-run and live runs emit the same kinds in the same order."""

    HOOK = "hook"
    PULL = "pull"
    REMOVE_STALE = "remove_stale"
    CREATE = "create"
    START = "start"
    WAIT = "wait"
    SKIPPED = "skipped"
    STARTED = "started"
    ALREADY_RUNNING = "already_running"
    FAILED = "failed"
    RESOLVE = "resolve"
    STOP = "stop"
    REMOVE = "remove"
    RESTART = "restart"
    KEPT = "kept"
    NOT_FOUND = "not_found"
    WARNING = "warning"


@dataclass
class Event:
    """One observable step."""

    kind: EventKind
    message: str
    service: Optional[str] = None
    dry_run: bool = False


class Reporter:
    """
    Records step events and echoes them to the console.
    """

    def __init__(self, echo: Optional[Callable[..., None]] = None, verbose: bool = False, quiet: bool = False):
        """
        :param echo: Output function, defaults to click.echo.
        :param verbose: Also echo image pull progress lines.
        :param quiet: Record events without echoing them.
        """
        self.echo = echo or click.echo
        self.verbose = verbose
        self.quiet = quiet
        self.events: List[Event] = []

    def emit(self, kind: EventKind, message: str, service: Optional[str] = None, dry_run: bool = False) -> Event:
        event = Event(kind=kind, message=message, service=service, dry_run=dry_run)
        self.events.append(event)
        if not self.quiet:
            prefix = "[dry-run] " if dry_run else ""
            where = f"[{service}] " if service else ""
            is_error = kind in (EventKind.FAILED, EventKind.WARNING)
            self.echo(f"{where}{prefix}{message}", err=is_error)
        return event

    def info(self, message: str, service: Optional[str] = None):
        """Plain console line, not recorded as a step."""
        if not self.quiet:
            where = f"[{service}] " if service else ""
            self.echo(f"{where}{message}")

    def progress(self, message: str, service: Optional[str] = None):
        """Image pull progress; only shown in verbose mode."""
        if self.verbose:
            self.info(message, service)

    def kinds(self, service: Optional[str] = None) -> List[EventKind]:
        """Recorded event kinds, optionally for a single service."""
        return [e.kind for e in self.events if service is None or e.service == service]
