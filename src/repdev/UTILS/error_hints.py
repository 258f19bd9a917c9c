"""
Known failure patterns and what to do about them.
"""
import re
from dataclasses import dataclass
from typing import List, Optional


@dataclass
class ErrorHint:
    """A recognised failure with remediation suggestions."""

    name: str
    pattern: "re.Pattern"
    suggestions: List[str]


ERROR_HINTS: List[ErrorHint] = [
    ErrorHint(
        "Docker Not Running",
        re.compile(r"daemon not reachable|cannot connect to the docker daemon|error while fetching server api version", re.I),
        [
            "Start Docker Desktop, or on Linux: sudo systemctl start docker",
            "Check the daemon answers: docker ps",
            "Verify DOCKER_HOST if you use a remote daemon",
        ],
    ),
    ErrorHint(
        "Port Already in Use",
        re.compile(r"address already in use|port is already allocated", re.I),
        [
            "Find the process holding the port: lsof -i :<port>",
            "Stop the conflicting environment: repdev down --force",
            "Change the host port in repdev.yml",
        ],
    ),
    ErrorHint(
        "Container Name Conflict",
        re.compile(r"container name .* is already in use|conflict", re.I),
        [
            "Recreate it: repdev up --force",
            "Remove it by hand: docker rm -f <container_name>",
            "Change container_name in repdev.yml",
        ],
    ),
    ErrorHint(
        "Docker Image Not Found",
        re.compile(r"pull access denied|manifest unknown|repository does not exist|not found: manifest", re.I),
        [
            "Check the image name and tag in repdev.yml",
            "Try pulling manually: docker pull <image>",
            "Log in if the image is private: docker login",
        ],
    ),
    ErrorHint(
        "Template Not Found",
        re.compile(r"template file not found", re.I),
        [
            "Create a repdev.yml in the project directory",
            "Point at one explicitly: repdev -t path/to/template.yml up",
        ],
    ),
    ErrorHint(
        "Invalid Template",
        re.compile(r"validation error|invalid yaml|must declare", re.I),
        [
            "Run 'repdev validate' to see every problem",
            "Check YAML indentation, colons and quotes",
        ],
    ),
    ErrorHint(
        "Service Not Ready",
        re.compile(r"readiness failed|not ready after", re.I),
        [
            "Check the service's logs: docker logs <container_name>",
            "Increase wait_for.timeout in repdev.yml",
            "Skip the wait with --no-wait to inspect the container",
        ],
    ),
    ErrorHint(
        "Hook Failed",
        re.compile(r"hook failed", re.I),
        [
            "Run the failing command by hand from the template directory",
            "Preview every step with --dry-run",
        ],
    ),
    ErrorHint(
        "Connection Timeout",
        re.compile(r"timed? ?out|connection refused", re.I),
        [
            "Check your network connection and retry",
            "Check a firewall is not blocking Docker",
        ],
    ),
    ErrorHint(
        "Permission Denied",
        re.compile(r"permission denied", re.I),
        [
            "On Linux, add your user to the docker group: sudo usermod -aG docker $USER",
            "Check permissions of mounted host directories",
        ],
    ),
    ErrorHint(
        "Disk Space Issue",
        re.compile(r"no space left|disk quota", re.I),
        [
            "Free disk space: docker system prune",
            "Remove unused images: docker image prune -a",
        ],
    ),
]

GENERAL_SUGGESTIONS = [
    "Check Docker is running: docker ps",
    "Validate the template: repdev validate",
    "Preview the run: repdev up --dry-run",
    "Recreate containers: repdev up --force",
]


def match_hint(message: str) -> Optional[ErrorHint]:
    """
    Returns the first known pattern matching an error message.
    """
    for hint in ERROR_HINTS:
        if hint.pattern.search(message or ""):
            return hint
    return None
