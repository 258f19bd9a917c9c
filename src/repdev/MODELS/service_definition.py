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
Models for defining services, including wait strategies and lifecycle hooks.
"""
import re
from typing import List, Dict, Optional, Union, Literal, Annotated
from pydantic import BaseModel, ConfigDict, Field, field_validator

MIN_INTERVAL_MS = 100

_PORT_RE = re.compile(r"^(?:(?P<ip>[\d.]+):)?(?P<host>\d+):(?P<container>\d+)(?:/(?P<proto>tcp|udp|sctp))?$")


def _env_value(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class _TimedWait(BaseModel):
    """
    Shared timing fields for polling strategies. Values are milliseconds.
    """
    timeout: int = Field(default=30000, gt=0)
    interval: int = Field(default=1000, ge=MIN_INTERVAL_MS)

    @property
    def retries(self) -> int:
        """Number of probe attempts, never less than one."""
        return max(1, self.timeout // self.interval)


class HttpWait(_TimedWait):
    """
    Ready once a GET on the URL answers with a 2xx or 3xx status.
    """
    type: Literal["http"] = "http"
    url: str


class TcpWait(_TimedWait):
    """
    Ready once a TCP connection to host:port completes.
    """
    type: Literal["tcp"] = "tcp"
    host: str = "localhost"
    port: int = Field(gt=0, lt=65536)


class ContainerHealthyWait(BaseModel):
    """
    Ready once the runtime reports the container's health status as healthy.
    """
    type: Literal["container_healthy"] = "container_healthy"
    container_name: Optional[str] = None
    timeout: int = Field(default=60000, gt=0)
    interval: int = Field(default=1000, ge=MIN_INTERVAL_MS)

    @property
    def retries(self) -> int:
        return max(1, self.timeout // self.interval)


WaitStrategy = Annotated[
    Union[HttpWait, TcpWait, ContainerHealthyWait],
    Field(discriminator="type"),
]


class ServiceHooks(BaseModel):
    """
    Shell commands run around a single service's startup.
    """
    model_config = ConfigDict(populate_by_name=True)

    before_start: List[str] = Field(default_factory=list, alias="beforeStart")
    after_start: List[str] = Field(default_factory=list, alias="afterStart")


class ServiceSpec(BaseModel):
    """
    The full definition of a single service as declared in a template.
    """
    model_config = ConfigDict(populate_by_name=True)

    name: str
    image: str = Field(min_length=1)
    container_name: Optional[str] = None

    # Execution
    command: Optional[Union[str, List[str]]] = None
    working_dir: Optional[str] = None

    # Environment
    environment: Dict[str, str] = {}
    env_file: List[str] = []

    # Networking and storage, kept in their "host:container" form
    ports: List[str] = []
    volumes: List[str] = []

    # Lifecycle
    depends_on: List[str] = []  # informational only
    wait_for: Optional[WaitStrategy] = None
    hooks: ServiceHooks = Field(default_factory=ServiceHooks)

    @field_validator("environment", mode="before")
    @classmethod
    def _normalise_environment(cls, value):
        if value is None:
            return {}
        if isinstance(value, list):
            env = {}
            for item in value:
                key, sep, val = str(item).partition("=")
                if not key:
                    raise ValueError(f"invalid environment entry: {item!r}")
                env[key] = val if sep else ""
            return env
        if isinstance(value, dict):
            return {str(k): _env_value(v) for k, v in value.items()}
        return value

    @field_validator("env_file", mode="before")
    @classmethod
    def _env_file_list(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return value

    @field_validator("ports", mode="before")
    @classmethod
    def _validate_ports(cls, value):
        if value is None:
            return []
        ports = [str(p) for p in value]
        for port in ports:
            if not _PORT_RE.match(port):
                raise ValueError(f"port mapping must look like 'host:container', got {port!r}")
        return ports

    @field_validator("volumes", mode="before")
    @classmethod
    def _validate_volumes(cls, value):
        if value is None:
            return []
        for volume in value:
            parts = str(volume).split(":")
            if len(parts) not in (2, 3) or not parts[0] or not parts[1]:
                raise ValueError(f"volume mapping must look like 'host:container[:mode]', got {volume!r}")
            if len(parts) == 3 and parts[2] not in ("ro", "rw"):
                raise ValueError(f"unknown volume mode {parts[2]!r} in {volume!r}")
        return [str(v) for v in value]

    @field_validator("depends_on", mode="before")
    @classmethod
    def _depends_on_list(cls, value):
        if value is None:
            return []
        if isinstance(value, dict):
            return list(value.keys())
        return value
