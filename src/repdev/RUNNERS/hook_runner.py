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
Execution of user-defined hook commands for lifecycle phases.
"""
import subprocess
from collections import deque
from typing import Deque, List, Optional

from ..UTILS.reporter import Reporter, EventKind

# Output lines kept for the failure message
TAIL_LINES = 10


class HookExecutionError(Exception):
    """
    A hook command exited non-zero or could not be spawned.
    """

    def __init__(self, phase: str, command: str, returncode: Optional[int] = None, output: str = ""):
        self.phase = phase
        self.command = command
        self.returncode = returncode
        self.output = output
        if returncode is None:
            detail = output or "could not be started"
        else:
            detail = f"exit code {returncode}"
            if output:
                detail += f": {output}"
        super().__init__(f"{phase} hook failed ({command}): {detail}")


class HookExecutor:
    """
    Runs the ordered hook commands of one phase, one after another.
    """

    def __init__(self, reporter: Reporter, cwd: Optional[str] = None):
        """
        Initializes the hook executor.

        :param reporter: Where step events and command output go.
        :param cwd: Directory hooks run in, usually the template's directory.
        """
        self.reporter = reporter
        self.cwd = cwd

    def run_hooks(self,
                  phase: str,
                  commands: Optional[List[str]],
                  dry_run: bool = False,
                  service: Optional[str] = None,
                  cwd: Optional[str] = None):
        """
        Runs hook commands in list order.

        :param phase: Label of the lifecycle phase, e.g. ``pre_up``.
        :param commands: Shell commands; empty or None is a no-op.
        :param dry_run: Report each command without running it.
        :param service: Service the hooks belong to, for display.
        :param cwd: Overrides the executor's working directory.
        :raises HookExecutionError: On the first failing command; later commands do not run.
        """
        if not commands:
            return

        for command in commands:
            if dry_run:
                self.reporter.emit(EventKind.HOOK, f"Would run {phase} hook: {command}", service, dry_run=True)
                continue

            self.reporter.emit(EventKind.HOOK, f"Running {phase} hook: {command}", service)
            try:
                # Hooks are shell snippets by definition
                process = subprocess.Popen(
                    command,
                    shell=True,
                    cwd=cwd or self.cwd,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.STDOUT,
                    text=True,
                )
            except OSError as e:
                raise HookExecutionError(phase, command, output=str(e)) from e

            tail: Deque[str] = deque(maxlen=TAIL_LINES)
            with process.stdout:
                for line in process.stdout:
                    line = line.rstrip()
                    if line:
                        self.reporter.info(line, service)
                        tail.append(line)
            returncode = process.wait()

            if returncode != 0:
                raise HookExecutionError(phase, command, returncode, "\n".join(tail)[-500:])
