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
Runtime settings, read from SSHBOX_* environment variables and an optional .env file.
"""
from pathlib import Path
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Settings shared by the CLI and the pipeline.
    """
    model_config = SettingsConfigDict(
        env_prefix="SSHBOX_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    state_dir: Path = Field(
        default=Path.home() / ".sshbox",
        description="Where the container index and logs are kept",
    )
    ssh_config_path: Path = Field(
        default=Path.home() / ".ssh" / "config",
        description="Client configuration file that receives Host entries",
    )
    ssh_host: str = Field(default="127.0.0.1", description="Address the SSH port is published on")
    poll_interval: float = Field(default=1.0, description="Seconds between readiness probes")
    handshake_timeout: float = Field(default=5.0, description="Timeout of a single SSH handshake")
    ready_timeout: float = Field(default=30.0, description="Default time to wait for sshd")
    container_prefix: str = Field(default="sshbox", description="Prefix for generated container names")
    log_level: str = Field(default="INFO")

    @property
    def index_file(self) -> Path:
        return self.state_dir / "containers.json"

    @property
    def log_file(self) -> Path:
        return self.state_dir / "logs" / "sshbox.log"
