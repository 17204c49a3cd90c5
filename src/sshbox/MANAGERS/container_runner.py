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
Lifecycle management for SSH containers: start, stop, remove and inspect.
"""
import logging
import os
import re
import uuid
from typing import List, Optional

from docker.errors import APIError, DockerException, ImageNotFound

from ..errors import ContainerError, PortInUseError
from ..MODELS.container_handle import ContainerHandle, ContainerState, PortMapping, VolumeMount
from ..REGISTRY.handle_store import HandleStore
from ..RUNTIME.docker_runtime import DockerRuntime
from ..UTILS.port_finder import get_free_port, is_port_free

logger = logging.getLogger(__name__)

PORT_CONFLICT_MARKERS = ("port is already allocated", "address already in use")
# "Bind for 0.0.0.0:8080 failed: port is already allocated"
BIND_FAILURE_PATTERN = re.compile(r":(\d+) failed")


class ContainerRunner:
    """
    Starts containers and tracks them so host ports stay unique among
    active containers.
    """
    def __init__(self,
                 runtime: Optional[DockerRuntime] = None,
                 store: Optional[HandleStore] = None,
                 name_prefix: str = "sshbox"):
        """
        :param runtime: The container runtime.
        :param store: Index of tracked handles; in-memory when omitted.
        :param name_prefix: Prefix for generated container names.
        """
        self.runtime = runtime or DockerRuntime()
        self.store = store or HandleStore()
        self.name_prefix = name_prefix

    def start(self,
              image_id: str,
              ports: List[PortMapping],
              mounts: Optional[List[VolumeMount]] = None,
              name: Optional[str] = None,
              user: str = "dev") -> ContainerHandle:
        """
        Starts a detached container from `image_id`.

        :param image_id: Image id or tag.
        :param ports: Port mappings; the first one is the SSH mapping.
        :param mounts: Volume mounts.
        :param name: Container name, generated when omitted.
        :param user: Account the container is logged into.
        :return: A handle in the running state.
        :raises PortInUseError: If a requested host port is already taken.
        :raises ContainerError: On any other runtime failure.
        """
        if not ports:
            raise ContainerError("At least one port mapping is required")
        mounts = mounts or []

        taken = set()
        for active in self.store.active():
            taken |= active.host_ports
        resolved: List[PortMapping] = []
        for mapping in ports:
            host_port = mapping.host_port
            if host_port is None:
                host_port = get_free_port(exclude=taken)
            elif host_port in taken:
                owner = self.store.owner_of_port(host_port)
                raise PortInUseError(host_port, owner=owner.name if owner else None)
            taken.add(host_port)
            resolved.append(PortMapping(host_port=host_port, container_port=mapping.container_port))

        name = name or self._generate_name()
        existing = self.store.get(name)
        if existing is not None and existing.is_active:
            raise ContainerError(f"Container name {name} is already tracked")

        port_spec = {f"{m.container_port}/tcp": m.host_port for m in resolved}
        volume_spec = {
            os.path.abspath(os.path.expanduser(m.source)): {"bind": m.target, "mode": "ro" if m.read_only else "rw"}
            for m in mounts
        }

        logger.info("Starting container %s from %s (%s)", name, image_id,
                    ", ".join(str(m) for m in resolved))
        try:
            container_id = self.runtime.run(
                image_id,
                name=name,
                ports=port_spec,
                volumes=volume_spec,
                labels={"io.sshbox.managed": "true"},
            )
        except ImageNotFound as e:
            raise ContainerError(f"Image {image_id} not found", e) from e
        except APIError as e:
            explanation = str(getattr(e, "explanation", "") or e).lower()
            if any(marker in explanation for marker in PORT_CONFLICT_MARKERS):
                raise PortInUseError(_conflicting_port(explanation, resolved), cause=e) from e
            raise ContainerError(f"Container start failed: {e}", e) from e
        except DockerException as e:
            raise ContainerError(f"Container runtime unavailable: {e}", e) from e

        handle = ContainerHandle(
            id=container_id,
            name=name,
            image_id=image_id,
            host_port=resolved[0].host_port,
            container_port=resolved[0].container_port,
            user=user,
            ports=resolved,
            mount_map=mounts,
            state=ContainerState.RUNNING,
        )
        self.store.put(handle)
        return handle

    def _generate_name(self) -> str:
        while True:
            name = f"{self.name_prefix}-{uuid.uuid4().hex[:8]}"
            if self.store.get(name) is None:
                return name

    def stop(self, handle: ContainerHandle) -> ContainerHandle:
        """
        Stops the container. Stopping a stopped or removed container is a no-op.
        """
        if handle.state != ContainerState.RUNNING:
            logger.debug("Container %s is already %s", handle.name, handle.state.value)
            return handle
        try:
            self.runtime.stop(handle.id)
        except DockerException as e:
            raise ContainerError(f"Failed to stop container {handle.name}: {e}", e) from e
        handle.state = ContainerState.STOPPED
        self.store.put(handle)
        logger.info("Stopped container %s", handle.name)
        return handle

    def remove(self, handle: ContainerHandle) -> ContainerHandle:
        """
        Removes the container, stopping it first. Removing twice is a no-op.
        """
        if handle.state == ContainerState.REMOVED:
            return handle
        if handle.state == ContainerState.RUNNING:
            self.stop(handle)
        try:
            self.runtime.remove(handle.id)
        except DockerException as e:
            raise ContainerError(f"Failed to remove container {handle.name}: {e}", e) from e
        handle.state = ContainerState.REMOVED
        self.store.delete(handle.name)
        logger.info("Removed container %s", handle.name)
        return handle

    def inspect(self, handle: ContainerHandle) -> ContainerState:
        """
        Refreshes the handle's state from the runtime.
        """
        if handle.state == ContainerState.REMOVED:
            return handle.state
        try:
            status = self.runtime.status(handle.id)
        except DockerException as e:
            raise ContainerError(f"Failed to inspect container {handle.name}: {e}", e) from e

        if status is None:
            handle.state = ContainerState.REMOVED
            self.store.delete(handle.name)
        else:
            handle.state = ContainerState.RUNNING if status == "running" else ContainerState.STOPPED
            self.store.put(handle)
        return handle.state

    def get(self, name_or_id: str) -> Optional[ContainerHandle]:
        return self.store.get(name_or_id)

    def list_handles(self) -> List[ContainerHandle]:
        return self.store.list()


def _conflicting_port(explanation: str, resolved: List[PortMapping]) -> int:
    """
    Picks the host port a backend bind failure refers to: the one named in
    the message, else the first one that cannot be bound locally.
    """
    match = BIND_FAILURE_PATTERN.search(explanation)
    if match:
        return int(match.group(1))
    for mapping in resolved:
        if not is_port_free(mapping.host_port):
            return mapping.host_port
    return resolved[0].host_port
