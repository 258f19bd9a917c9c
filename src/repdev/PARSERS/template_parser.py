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
Loading and validation of repdev.yml templates.
"""
import os
from typing import Any, Dict, Optional

import yaml
from dotenv import dotenv_values
from pydantic import ValidationError

from ..MODELS.orchestration_config import EnvironmentConfig
from ..UTILS.reporter import EventKind, Reporter
from ..UTILS.string_interpolation import EnvironmentInterpolator, InterpolationError

DEFAULT_TEMPLATE = "repdev.yml"


class TemplateError(Exception):
    """
    The template is missing, unreadable or fails validation.
    """


class TemplateParser:
    """
    Parser for repdev.yml templates.
    """
    def __init__(self, context: Optional[Dict[str, str]] = None, reporter: Optional[Reporter] = None):
        """
        Initializes the parser.

        :param context: Variables for interpolation. Defaults to the
            template directory's .env overlaid with the process environment.
        :param reporter: Receives warnings about unset variables.
        """
        self.context = context
        self.reporter = reporter

    def parse(self, template_path: str) -> EnvironmentConfig:
        """
        Parses a template from a path.

        :param template_path: Path to the template.
        :return: The validated configuration, remembering its absolute path.
        :raises TemplateError: If the file is missing or invalid.
        """
        if not os.path.isfile(template_path):
            raise TemplateError(f"Template file not found: {template_path}")
        try:
            with open(template_path, "r", encoding="utf-8") as f:
                content = f.read()
        except OSError as e:
            raise TemplateError(f"Cannot read template {template_path}: {e}") from e

        resolved = os.path.abspath(template_path)
        context = self.context if self.context is not None else self._default_context(os.path.dirname(resolved))
        return self.parse_from_string(content, template_path=resolved, context=context)

    def parse_from_string(self,
                          content: str,
                          template_path: Optional[str] = None,
                          context: Optional[Dict[str, str]] = None) -> EnvironmentConfig:
        """
        Parses a template from a string.

        :param content: YAML content of the template.
        :param template_path: Path the content came from, if any; it
            determines the ownership label and relative path resolution.
        :param context: Interpolation variables.
        """
        if context is None:
            context = self.context if self.context is not None else dict(os.environ)
        interpolator = EnvironmentInterpolator(context)
        try:
            content = interpolator.interpolate(content)
        except InterpolationError as e:
            raise TemplateError(f"Interpolation failed: {e}") from e
        for name in interpolator.missing:
            self._warn(f"Variable {name} is not set, defaulting to an empty string")

        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise TemplateError(f"Invalid YAML: {e}") from e

        if not isinstance(data, dict):
            raise TemplateError("Template must be a mapping with a 'services' section")
        services = data.get("services")
        if not isinstance(services, dict) or not services:
            raise TemplateError("Template must declare at least one service under 'services'")

        try:
            return EnvironmentConfig.model_validate({
                "services": {name: self._service_data(name, spec) for name, spec in services.items()},
                "hooks": data.get("hooks") or {},
                "template_path": template_path,
                "version": str(data["version"]) if data.get("version") is not None else None,
            })
        except ValidationError as e:
            raise TemplateError(format_validation_error(e)) from e

    def _service_data(self, name: Any, spec: Any) -> Dict[str, Any]:
        if not isinstance(spec, dict):
            raise TemplateError(f"Service '{name}' must be a mapping")
        data = dict(spec)
        data["name"] = str(name)
        return data

    def _default_context(self, base_dir: str) -> Dict[str, str]:
        context: Dict[str, str] = {}
        env_path = os.path.join(base_dir, ".env")
        if os.path.isfile(env_path):
            context.update({k: v for k, v in dotenv_values(env_path).items() if v is not None})
        context.update(os.environ)
        return context

    def _warn(self, message: str):
        if self.reporter:
            self.reporter.emit(EventKind.WARNING, message)


def format_validation_error(error: ValidationError) -> str:
    """
    Renders pydantic errors as ``services.web.ports.0: message`` lines.
    """
    lines = ["Template validation error:"]
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"])
        lines.append(f"  {location}: {item['msg']}")
    return "\n".join(lines)
