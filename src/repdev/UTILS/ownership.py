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
Ownership labels tying runtime containers back to the template that created them.
"""
import base64
import os
from typing import Dict

OWNERSHIP_KEY = "repdev.template"
SERVICE_KEY = "repdev.service"


def derive_run_label(template_path: str) -> str:
    """
    Builds the ownership label for a template.

    The value is the URL-safe base64 of the absolute template path, so the
    same path always yields the same label and distinct paths never collide.

    :param template_path: Absolute or relative path to the template file.
    :return: A label of the form ``repdev.template=<encoded path>``.
    """
    resolved = os.path.abspath(template_path)
    encoded = base64.urlsafe_b64encode(resolved.encode("utf-8")).decode("ascii").rstrip("=")
    return f"{OWNERSHIP_KEY}={encoded}"


def split_label(label: str) -> Dict[str, str]:
    """
    Turns ``key=value`` into the mapping used when creating a container.
    """
    key, _, value = label.partition("=")
    return {key: value}
