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
Thin synchronous wrapper around the Docker SDK used by the builders and managers.
"""
import io
import logging
from typing import Dict, List, Optional, Tuple

import docker
from docker.errors import APIError, NotFound

logger = logging.getLogger(__name__)


class DockerRuntime:
    """
    Container runtime control surface: build, run, stop, remove, exec.

    Every container-level method treats a missing container as a no-op or a
    None result; other Docker errors propagate to the caller.
    """
    def __init__(self, client: Optional[docker.DockerClient] = None):
        self._client = client

    @property
    def client(self) -> docker.DockerClient:
        if self._client is None:
            self._client = docker.from_env()
        return self._client

    # -------------------------------
    # Images
    # -------------------------------
    def build_image(self, dockerfile: str, tag: str, labels: Optional[Dict[str, str]] = None) -> Tuple[str, List[str]]:
        """
        Builds an image from Dockerfile text with an empty build context.

        :return: (image id, build log lines)
        """
        image, stream = self.client.images.build(
            fileobj=io.BytesIO(dockerfile.encode("utf-8")),
            tag=tag,
            labels=labels or {},
            rm=True,
            forcerm=True,
        )
        log_lines = [chunk["stream"].rstrip() for chunk in stream if chunk.get("stream")]
        return image.id, log_lines

    # -------------------------------
    # Containers
    # -------------------------------
    def run(self,
            image: str,
            *,
            name: str,
            ports: Dict[str, int],
            volumes: Dict[str, Dict[str, str]],
            labels: Optional[Dict[str, str]] = None) -> str:
        """
        Creates and starts a detached container and returns its id. A container
        that was created but failed to start is removed before the error propagates.

        :param ports: {"22/tcp": host_port}
        :param volumes: {host_path: {"bind": container_path, "mode": "rw"}}
        """
        container = self.client.containers.create(
            image,
            name=name,
            ports=ports,
            volumes=volumes,
            labels=labels or {},
        )
        try:
            container.start()
        except APIError:
            logger.debug("Removing container %s after failed start", name)
            container.remove(force=True)
            raise
        return container.id

    def status(self, container_id: str) -> Optional[str]:
        """
        Returns the container's status ("running", "exited", ...) or None if it does not exist.
        """
        try:
            container = self.client.containers.get(container_id)
            container.reload()
            return container.status
        except NotFound:
            return None

    def stop(self, container_id: str, timeout: int = 10) -> None:
        try:
            self.client.containers.get(container_id).stop(timeout=timeout)
        except NotFound:
            logger.debug("Container %s already gone", container_id)

    def remove(self, container_id: str) -> None:
        try:
            self.client.containers.get(container_id).remove(force=True)
        except NotFound:
            logger.debug("Container %s already removed", container_id)

    def exec(self, container_id: str, command: List[str], user: str = "root") -> Tuple[int, str]:
        """
        Runs a command inside a container.

        :return: (exit code, combined output)
        :raises docker.errors.NotFound: If the container does not exist.
        """
        container = self.client.containers.get(container_id)
        result = container.exec_run(command, user=user, demux=False)
        output = result.output.decode("utf-8", "replace") if result.output else ""
        return result.exit_code, output
