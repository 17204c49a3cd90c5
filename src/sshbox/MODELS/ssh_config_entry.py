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
Models for OpenSSH client configuration entries.
"""
from typing import Dict, Optional
from pydantic import BaseModel, field_validator


class SSHConfigEntry(BaseModel):
    """
    One `Host` block in the user's ssh client configuration.
    """
    alias: str
    hostname: str = "127.0.0.1"
    port: int = 22
    user: str
    identity_file: Optional[str] = None

    # Container host keys change on every rebuild.
    extra_options: Dict[str, str] = {
        "StrictHostKeyChecking": "no",
        "UserKnownHostsFile": "/dev/null",
    }

    @field_validator("alias")
    @classmethod
    def single_token(cls, v: str) -> str:
        if not v or any(c.isspace() for c in v) or any(c in v for c in "*?!"):
            raise ValueError(f"Host alias must be a single literal name: {v!r}")
        return v

    def render(self) -> str:
        """
        Renders the entry as an OpenSSH `Host` block.
        """
        lines = [
            f"Host {self.alias}",
            f"    HostName {self.hostname}",
            f"    Port {self.port}",
            f"    User {self.user}",
        ]
        if self.identity_file:
            lines.append(f"    IdentityFile {self.identity_file}")
            lines.append("    IdentitiesOnly yes")
        for key, value in self.extra_options.items():
            lines.append(f"    {key} {value}")
        return "\n".join(lines) + "\n"
