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
End-to-end provisioning of an SSH development container.
"""
import logging
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field

from ..errors import ContainerError, ReadinessTimeoutError, SshboxError, Stage, StageError
from ..BUILDERS.image_builder import ImageBuilder
from ..MODELS.container_handle import ContainerHandle, PortMapping, VolumeMount
from ..MODELS.image_spec import ImageSpec
from ..MODELS.key_pair import KeyPair
from ..MODELS.ssh_config_entry import SSHConfigEntry
from .access_configurator import AccessConfigurator
from .container_runner import ContainerRunner
from .health_checker import HealthChecker, Ready, TimedOut
from .key_manager import KeyManager

logger = logging.getLogger(__name__)


class PipelineRequest(BaseModel):
    """
    Inputs for one `up` run.
    """
    key_path: Path
    passphrase: Optional[str] = None
    reuse_key: bool = True
    spec: ImageSpec = Field(default_factory=ImageSpec)
    ports: List[PortMapping] = Field(default_factory=lambda: [PortMapping(host_port=2222, container_port=22)])
    mounts: List[VolumeMount] = Field(default_factory=list)
    name: Optional[str] = None
    alias: Optional[str] = None
    ready_timeout: float = 30.0


class PipelineResult(BaseModel):
    """
    Everything the pipeline produced.
    """
    key_pair: KeyPair
    image_id: str
    handle: ContainerHandle
    ssh_entry: SSHConfigEntry
    attempts: int = 0


class Pipeline:
    """
    Runs KeyManager, ImageBuilder, ContainerRunner, AccessConfigurator and
    HealthChecker in order, each step gated on the previous one. Completed
    side effects are kept when a later stage fails.
    """
    def __init__(self,
                 key_manager: KeyManager,
                 image_builder: ImageBuilder,
                 container_runner: ContainerRunner,
                 access_configurator: AccessConfigurator,
                 health_checker: HealthChecker):
        self.key_manager = key_manager
        self.image_builder = image_builder
        self.container_runner = container_runner
        self.access_configurator = access_configurator
        self.health_checker = health_checker

    def run(self, request: PipelineRequest) -> PipelineResult:
        """
        Provisions a container end to end.

        :raises StageError: Naming the failed stage and its cause.
        """
        with _stage(Stage.KEYS):
            if request.reuse_key:
                key_pair = self.key_manager.ensure_key_pair(request.key_path, passphrase=request.passphrase)
            else:
                key_pair = self.key_manager.generate_key_pair(request.key_path, passphrase=request.passphrase)

        with _stage(Stage.BUILD):
            image_id = self.image_builder.build(request.spec)

        with _stage(Stage.RUN):
            ports = list(request.ports)
            if not ports:
                raise ContainerError("At least one port mapping is required")
            if ports[0].container_port != request.spec.exposed_port:
                logger.warning("SSH mapping targets port %d but sshd listens on %d",
                               ports[0].container_port, request.spec.exposed_port)
            handle = self.container_runner.start(
                image_id,
                ports,
                request.mounts,
                name=request.name,
                user=request.spec.user_account,
            )

        with _stage(Stage.ACCESS):
            self.access_configurator.authorize(handle, key_pair.public_key())

        with _stage(Stage.HEALTH):
            outcome = self.health_checker.wait_ready(handle, request.ready_timeout)
            if isinstance(outcome, TimedOut):
                raise ReadinessTimeoutError(
                    f"sshd in {handle.name} did not answer within {request.ready_timeout:.0f}s "
                    f"({outcome.attempts} attempts, last error: {outcome.last_error or 'none'})"
                )

        entry = SSHConfigEntry(
            alias=request.alias or handle.name,
            hostname=self.health_checker.host,
            port=handle.host_port,
            user=request.spec.user_account,
            identity_file=str(key_pair.private_key_path),
        )
        with _stage(Stage.ACCESS):
            self.access_configurator.write_client_config(entry)

        attempts = outcome.attempts if isinstance(outcome, Ready) else 0
        return PipelineResult(key_pair=key_pair, image_id=image_id, handle=handle,
                              ssh_entry=entry, attempts=attempts)


class _stage:
    """Re-raises sshbox and OS errors from a pipeline step as StageError."""

    def __init__(self, stage: Stage):
        self.stage = stage

    def __enter__(self):
        logger.info("Stage %s", self.stage.value)
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc is None or isinstance(exc, StageError):
            return False
        if isinstance(exc, (SshboxError, OSError)):
            raise StageError(self.stage.value, exc) from exc
        return False
