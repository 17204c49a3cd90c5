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

import pytest
import yaml

from sshbox.MODELS.image_spec import PasswordPolicy
from sshbox.PARSERS.build_definition_parser import BuildDefinitionError, BuildDefinitionParser
from sshbox.UTILS.string_interpolation import EnvironmentInterpolator


def test_parse(tmp_path):
    definition = {
        'base_image': 'ubuntu:22.04',
        'packages': ['git', 'curl'],
        'user': 'alice',
        'password_policy': 'locked',
        'exposed_port': 2200,
        'tag': 'sshbox/alice:dev',
    }
    path = tmp_path / "sshbox.yml"
    with open(path, 'w') as f:
        yaml.dump(definition, f)

    spec = BuildDefinitionParser(context={}).parse(str(path))

    assert spec.base_image == 'ubuntu:22.04'
    assert spec.packages == {'git', 'curl', 'openssh-server'}
    assert spec.user_account == 'alice'
    assert spec.password_policy == PasswordPolicy.LOCKED
    assert spec.exposed_port == 2200
    assert spec.image_tag == 'sshbox/alice:dev'


def test_password_hash_from_environment():
    content = "user: dev\npassword_policy:\n  hash: '${DEV_HASH}'\n"
    spec = BuildDefinitionParser(context={'DEV_HASH': '$6$salt$xyz'}).parse_from_string(content)
    assert spec.password_hash == '$6$salt$xyz'
    assert spec.password_policy == PasswordPolicy.HASHED


def test_unset_hash_means_locked():
    content = "password_policy:\n  hash: '${DEV_HASH}'\n"
    spec = BuildDefinitionParser(context={}).parse_from_string(content)
    assert spec.password_policy == PasswordPolicy.LOCKED


def test_empty_document_uses_defaults():
    spec = BuildDefinitionParser(context={}).parse_from_string("")
    assert spec.base_image == 'ubuntu:22.04'
    assert spec.user_account == 'dev'


def test_invalid_documents():
    parser = BuildDefinitionParser(context={})
    with pytest.raises(BuildDefinitionError):
        parser.parse_from_string("- a\n- b\n")
    with pytest.raises(BuildDefinitionError):
        parser.parse_from_string("password_policy: sometimes\n")
    with pytest.raises(BuildDefinitionError):
        parser.parse_from_string("exposed_port: 70000\n")


def test_interpolation_modifiers():
    ctx = {'A': 'x', 'EMPTY': ''}
    assert EnvironmentInterpolator.interpolate("${A}-${B:-def}-${A:+set}-${EMPTY:+no}", ctx) == "x-def-set-"
    assert EnvironmentInterpolator.interpolate("${MISSING}", ctx) == ""
