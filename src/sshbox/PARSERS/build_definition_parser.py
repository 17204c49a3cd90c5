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
Parser for sshbox build definition YAML files.
"""
import os
from typing import Any, Dict, Optional

import yaml
from pydantic import ValidationError

from ..MODELS.image_spec import ImageSpec
from ..UTILS.string_interpolation import EnvironmentInterpolator


class BuildDefinitionError(ValueError):
    """The build definition document is malformed."""


class BuildDefinitionParser:
    """
    Parser for build definition documents such as::

        base_image: ubuntu:22.04
        packages: [openssh-server, git]
        user: dev
        password_policy: locked
        exposed_port: 22
    """
    def __init__(self, context: Optional[Dict[str, str]] = None):
        """
        Initializes the parser with an optional environment context for interpolation.

        :param context: A dictionary of environment variables for interpolation.
        """
        self.context = context if context is not None else dict(os.environ)

    def parse(self, path: str) -> ImageSpec:
        """
        Parses a build definition from a path.

        :param path: Path to the YAML file.
        :return: The resulting image spec.
        """
        with open(path, 'r') as f:
            content = f.read()
        return self.parse_from_string(content)

    def parse_from_string(self, content: str) -> ImageSpec:
        """
        Parses a build definition from a string.

        :param content: YAML content.
        :return: The resulting image spec.
        """
        content = EnvironmentInterpolator.interpolate(content, self.context)
        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise BuildDefinitionError(f"Invalid YAML: {e}") from e
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise BuildDefinitionError("Build definition must be a mapping")
        return self.from_dict(data)

    def from_dict(self, data: Dict[str, Any]) -> ImageSpec:
        fields: Dict[str, Any] = {}
        if 'base_image' in data or 'base' in data:
            fields['base_image'] = data.get('base_image', data.get('base'))
        if 'packages' in data:
            fields['packages'] = self._to_set(data['packages'])
        if 'user' in data:
            fields['user_account'] = data['user']
        if 'exposed_port' in data:
            fields['exposed_port'] = data['exposed_port']
        if 'tag' in data:
            fields['tag'] = data['tag']
        fields['password_hash'] = self._parse_password_policy(data.get('password_policy'))

        try:
            return ImageSpec(**fields)
        except ValidationError as e:
            raise BuildDefinitionError(str(e)) from e

    def _parse_password_policy(self, policy: Any) -> Optional[str]:
        """
        Accepts `locked`, a missing value, or a mapping with a crypt(3) `hash`.
        """
        if policy is None or policy == 'locked':
            return None
        if isinstance(policy, dict):
            value = policy.get('hash')
            if value:
                return str(value)
            # ${VAR} expanded to nothing
            return None
        raise BuildDefinitionError(f"Unknown password policy: {policy!r}")

    def _to_set(self, val: Any) -> set:
        if val is None:
            return set()
        if isinstance(val, str):
            return {val}
        return {str(v) for v in val}
