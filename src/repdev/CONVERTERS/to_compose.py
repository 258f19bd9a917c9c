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
Converter from a repdev template to a docker-compose file.
"""
import os
from typing import Any, Dict

import yaml

from ..MODELS.orchestration_config import EnvironmentConfig

COMPOSE_VERSION = "3.9"


class ComposeConverter:
    """
    Pure translation of an environment into compose's service format.
    Hooks and wait strategies have no compose equivalent and are dropped.
    """

    def __init__(self, config: EnvironmentConfig):
        """
        :param config: The parsed environment configuration.
        """
        self.config = config

    def to_dict(self) -> Dict[str, Any]:
        compose: Dict[str, Any] = {"version": COMPOSE_VERSION, "services": {}}
        for name, svc in self.config.services.items():
            definition: Dict[str, Any] = {"image": svc.image}
            if svc.container_name:
                definition["container_name"] = svc.container_name
            if svc.working_dir:
                definition["working_dir"] = svc.working_dir
            if svc.volumes:
                definition["volumes"] = list(svc.volumes)
            if svc.ports:
                definition["ports"] = list(svc.ports)
            if svc.env_file:
                definition["env_file"] = list(svc.env_file)
            if svc.environment:
                definition["environment"] = dict(svc.environment)
            if svc.command:
                definition["command"] = list(svc.command) if isinstance(svc.command, list) else svc.command
            if svc.depends_on:
                definition["depends_on"] = list(svc.depends_on)
            compose["services"][name] = definition
        return compose

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), sort_keys=False, default_flow_style=False)

    def convert(self, output_path: str = "docker-compose.yml") -> str:
        """
        Writes the compose file.

        :param output_path: Destination file.
        :return: The path written.
        """
        parent = os.path.dirname(output_path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        with open(output_path, "w", encoding="utf-8") as f:
            f.write(self.to_yaml())
        return output_path
