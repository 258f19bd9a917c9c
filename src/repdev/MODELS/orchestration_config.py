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
Models for the overall environment configuration and per-run options.
"""
import os
from typing import Dict, List, Optional, FrozenSet
from pydantic import BaseModel, ConfigDict, Field, model_validator

from .service_definition import ServiceSpec
from ..UTILS.ownership import derive_run_label


class GlobalHooks(BaseModel):
    """
    Shell commands run around a whole `up` or `down`.
    """
    model_config = ConfigDict(populate_by_name=True)

    pre_up: List[str] = Field(default_factory=list, alias="preUp")
    post_up: List[str] = Field(default_factory=list, alias="postUp")
    pre_down: List[str] = Field(default_factory=list, alias="preDown")
    post_down: List[str] = Field(default_factory=list, alias="postDown")


class EnvironmentConfig(BaseModel):
    """
    A validated template. Service order is declaration order, which is
    also the execution order.
    """
    model_config = ConfigDict(frozen=True)

    services: Dict[str, ServiceSpec]
    hooks: GlobalHooks = Field(default_factory=GlobalHooks)
    template_path: Optional[str] = None
    version: Optional[str] = None

    @model_validator(mode="after")
    def _check_service_names(self):
        for key, spec in self.services.items():
            if spec.name != key:
                raise ValueError(f"service key {key!r} does not match its name {spec.name!r}")
        return self

    @property
    def run_label(self) -> Optional[str]:
        """Ownership label for this template, None when loaded without a path."""
        if not self.template_path:
            return None
        return derive_run_label(self.template_path)

    @property
    def base_dir(self) -> str:
        """Directory relative paths in the template are resolved against."""
        if self.template_path:
            return os.path.dirname(os.path.abspath(self.template_path))
        return os.getcwd()

    def service_for_container(self, container_name: str) -> Optional[str]:
        """
        Maps a declared container_name back to its service name.
        """
        for name, spec in self.services.items():
            if spec.container_name == container_name:
                return name
        return None


class OrchestrationOptions(BaseModel):
    """
    Per-invocation switches. Never persisted.
    """
    model_config = ConfigDict(frozen=True)

    force: bool = False
    dry_run: bool = False
    services: FrozenSet[str] = frozenset()
    no_wait: bool = False

    def includes(self, name: str) -> bool:
        """An empty filter selects every service."""
        return not self.services or name in self.services
