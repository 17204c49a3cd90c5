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
Shell-style variable interpolation for build definition files.
"""
import re
from typing import Dict

# ${VAR}, ${VAR:-default} or ${VAR:+value}
VARIABLE_PATTERN = re.compile(r'\$\{([A-Za-z_][A-Za-z0-9_]*)(?::(-|\+)([^}]*))?\}')


class EnvironmentInterpolator:
    """
    Expands ${...} references against an environment mapping.
    """
    @staticmethod
    def interpolate(template: str, context: Dict[str, str]) -> str:
        """
        Interpolates variables in the template string.

        :param template: Text containing ${VAR} placeholders.
        :param context: Variables available for substitution.
        :return: The interpolated text.
        """
        def replace(match):
            name, modifier, alt_value = match.group(1), match.group(2), match.group(3)
            value = context.get(name)

            if modifier == '-':
                return value if value else alt_value
            if modifier == '+':
                return alt_value if value else ''
            return value or ''

        return VARIABLE_PATTERN.sub(replace, template)
