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
Models for running SSH containers, including port and volume bindings.
"""
from enum import Enum
from typing import List, Optional, Set
from pydantic import BaseModel, Field


class ContainerState(str, Enum):
    """
    Lifecycle state of a tracked container.
    """
    RUNNING = "running"
    STOPPED = "stopped"
    REMOVED = "removed"


class PortMapping(BaseModel):
    """
    A `hostPort:containerPort` binding. A host port of None means "pick one".
    """
    host_port: Optional[int] = None
    container_port: int = 22

    @classmethod
    def parse(cls, value: str) -> "PortMapping":
        """
        Parses `hostPort:containerPort` or a bare `containerPort`.

        :param value: The port mapping string.
        :return: A PortMapping instance.
        """
        parts = value.strip().split(':')
        try:
            if len(parts) == 2:
                host = int(parts[0]) if parts[0] else None
                return cls(host_port=host, container_port=int(parts[1]))
            if len(parts) == 1:
                return cls(container_port=int(parts[0]))
        except ValueError:
            pass
        raise ValueError(f"Invalid port mapping: {value!r}")

    def __str__(self) -> str:
        return f"{self.host_port or ''}:{self.container_port}"


class VolumeMount(BaseModel):
    """
    A `hostPath:containerPath[:ro]` binding.
    """
    source: str
    target: str
    read_only: bool = False

    @classmethod
    def parse(cls, value: str) -> "VolumeMount":
        parts = value.split(':')
        if len(parts) == 2 and all(parts):
            return cls(source=parts[0], target=parts[1])
        if len(parts) == 3 and parts[0] and parts[1] and parts[2] in ("ro", "rw"):
            return cls(source=parts[0], target=parts[1], read_only=(parts[2] == 'ro'))
        raise ValueError(f"Invalid volume mount: {value!r}")

    def __str__(self) -> str:
        suffix = ":ro" if self.read_only else ""
        return f"{self.source}:{self.target}{suffix}"


class ContainerHandle(BaseModel):
    """
    A container started by the container runner.
    """
    id: str
    name: str
    image_id: str = ""
    host_port: int
    container_port: int = 22
    user: str = "dev"
    ports: List[PortMapping] = Field(default_factory=list)
    mount_map: List[VolumeMount] = Field(default_factory=list)
    state: ContainerState = ContainerState.RUNNING

    @property
    def host_ports(self) -> Set[int]:
        """Every host port this container publishes, the SSH port included."""
        return {self.host_port} | {m.host_port for m in self.ports if m.host_port is not None}

    @property
    def is_active(self) -> bool:
        return self.state != ContainerState.REMOVED

    @property
    def short_id(self) -> str:
        return self.id[:12]
