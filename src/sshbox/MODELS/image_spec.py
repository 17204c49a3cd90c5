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
Models describing the inputs of an SSH development image build.
"""
import re
from enum import Enum
from typing import Optional, Set
from pydantic import BaseModel, Field, field_validator

DEFAULT_PACKAGES = {"openssh-server"}
# useradd NAME_REGEX default; no leading hyphen
ACCOUNT_PATTERN = re.compile(r"^[a-z_][a-z0-9_-]*\Z")


class PasswordPolicy(str, Enum):
    """
    How password logins are handled for the image's user account.
    """
    LOCKED = "locked"  # key only
    HASHED = "hashed"


class ImageSpec(BaseModel):
    """
    Declarative build inputs for an image that runs sshd.
    """
    base_image: str = "ubuntu:22.04"
    packages: Set[str] = Field(default_factory=lambda: set(DEFAULT_PACKAGES))
    user_account: str = "dev"
    password_hash: Optional[str] = None
    exposed_port: int = 22
    tag: Optional[str] = None

    @field_validator("packages")
    @classmethod
    def include_sshd(cls, v: Set[str]) -> Set[str]:
        return set(v) | DEFAULT_PACKAGES

    @field_validator("user_account")
    @classmethod
    def valid_account(cls, v: str) -> str:
        if v == "root" or not ACCOUNT_PATTERN.match(v):
            raise ValueError(f"Invalid user account name: {v!r}")
        return v

    @field_validator("password_hash")
    @classmethod
    def crypt_hash(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and (not v.startswith("$") or any(c in v for c in "'\n: ")):
            raise ValueError("password_hash must be a crypt(3) hash such as $6$salt$...")
        return v or None

    @field_validator("exposed_port")
    @classmethod
    def valid_port(cls, v: int) -> int:
        if not 0 < v < 65536:
            raise ValueError(f"Port out of range: {v}")
        return v

    @property
    def password_policy(self) -> PasswordPolicy:
        if self.password_hash:
            return PasswordPolicy.HASHED
        return PasswordPolicy.LOCKED

    @property
    def image_tag(self) -> str:
        return self.tag or f"sshbox/{self.user_account}:latest"

    def sorted_packages(self) -> list:
        return sorted(self.packages)
