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
Models for SSH keypairs on the local filesystem.
"""
from pathlib import Path
from pydantic import BaseModel, ConfigDict


class KeyPair(BaseModel):
    """
    An SSH keypair created by the key manager. Immutable once created.
    """
    model_config = ConfigDict(frozen=True)

    private_key_path: Path
    public_key_path: Path
    algorithm: str = "ed25519"

    def public_key(self) -> str:
        """
        Returns the single-line public key as written by ssh-keygen.
        """
        return self.public_key_path.read_text().strip()
