"""
Display-only record of what the last runs did, kept in .repdev/state.json.

Nothing in the lifecycle reads this file back; the runtime is always the
source of truth.
"""
import json
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ..MODELS.orchestration_config import EnvironmentConfig
from ..MODELS.outcome import ContainerStatus, OutcomeStatus, RunResult
from ..UTILS.reporter import Reporter, EventKind

STATE_DIR = ".repdev"
STATE_FILE = "state.json"
STATE_VERSION = "1.0"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def empty_state() -> Dict[str, Any]:
    return {
        "version": STATE_VERSION,
        "containers": {},
        "lastUp": None,
        "lastDown": None,
        "templatePath": None,
    }


class StateManager:
    """
    Reads and writes the state summary for one project directory.
    """
    def __init__(self, base_dir: str = ".", reporter: Optional[Reporter] = None):
        self.path = os.path.join(base_dir, STATE_DIR, STATE_FILE)
        self.reporter = reporter

    def load(self) -> Dict[str, Any]:
        """
        Loads the state, or an empty one if it is missing or unreadable.
        """
        if not os.path.exists(self.path):
            return empty_state()
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            self._warn(f"Failed to load state: {e}")
            return empty_state()

    def save(self, state: Dict[str, Any]):
        try:
            os.makedirs(os.path.dirname(self.path), exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(state, f, indent=2)
        except OSError as e:
            self._warn(f"Failed to save state: {e}")

    def record_up(self, config: EnvironmentConfig, result: RunResult):
        """
        Marks services that started (or were already running) as running.
        """
        if result.dry_run:
            return
        state = self.load()
        state["templatePath"] = config.template_path
        for outcome in result.by_status(OutcomeStatus.STARTED) + result.by_status(OutcomeStatus.ALREADY_RUNNING):
            spec = config.services[outcome.service]
            state["containers"][outcome.service] = {
                "containerName": outcome.container_name,
                "image": spec.image,
                "ports": list(spec.ports),
                "startedAt": _now(),
                "status": "running",
            }
        state["lastUp"] = _now()
        self.save(state)

    def record_down(self, config: EnvironmentConfig, result: RunResult):
        """
        Marks removed containers as stopped.
        """
        if result.dry_run:
            return
        state = self.load()
        removed = {c.service or c.container for c in result.containers if c.status == ContainerStatus.REMOVED}
        for service, info in state["containers"].items():
            if service in removed or info.get("containerName") in removed:
                info["status"] = "stopped"
                info["stoppedAt"] = _now()
        state["lastDown"] = _now()
        self.save(state)

    def summary(self) -> Dict[str, Any]:
        state = self.load()
        containers = state.get("containers", {})
        running = sum(1 for c in containers.values() if c.get("status") == "running")
        return {
            "total": len(containers),
            "running": running,
            "stopped": len(containers) - running,
            "lastUp": state.get("lastUp"),
            "lastDown": state.get("lastDown"),
            "templatePath": state.get("templatePath"),
            "containers": containers,
        }

    def _warn(self, message: str):
        if self.reporter:
            self.reporter.emit(EventKind.WARNING, message)
