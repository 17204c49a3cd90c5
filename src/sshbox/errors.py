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
Error taxonomy for the sshbox pipeline stages.
"""
from enum import Enum, IntEnum
from typing import Optional


class Stage(str, Enum):
    """Stage names used in error reports."""

    KEYS = "keys"
    BUILD = "build"
    RUN = "run"
    ACCESS = "access"
    HEALTH = "health"


class ExitCode(IntEnum):
    """
    Process exit codes, one per failed stage.
    """
    OK = 0
    KEYS = 10
    BUILD = 20
    RUN = 30
    ACCESS = 40
    HEALTH = 50

    @classmethod
    def for_stage(cls, stage: str) -> "ExitCode":
        return cls[stage.upper()]


class SshboxError(Exception):
    """Base class for every error raised by sshbox."""

    stage: str = ""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class KeyGenerationError(SshboxError):
    """The keypair could not be generated or validated."""

    stage = Stage.KEYS.value


class BuildError(SshboxError):
    """The build backend rejected the image build."""

    stage = Stage.BUILD.value

    def __init__(self, message: str, cause: Optional[BaseException] = None, log: str = ""):
        super().__init__(message, cause)
        self.log = log


class ContainerError(SshboxError):
    """The container runtime failed to create or control a container."""

    stage = Stage.RUN.value


class PortInUseError(ContainerError):
    """The requested host port is already taken."""

    def __init__(self, port: int, owner: Optional[str] = None, cause: Optional[BaseException] = None):
        if owner:
            message = f"Host port {port} is already used by container {owner}"
        else:
            message = f"Host port {port} is already in use"
        super().__init__(message, cause)
        self.port = port
        self.owner = owner


class AccessDeniedError(SshboxError):
    """The container could not be reached to install keys."""

    stage = Stage.ACCESS.value


class ReadinessTimeoutError(SshboxError):
    """The SSH service did not answer a handshake in time."""

    stage = Stage.HEALTH.value


class StageError(SshboxError):
    """
    Wraps the failure of one pipeline stage so the operator sees which
    step failed along with the underlying cause.
    """

    def __init__(self, stage: str, cause: BaseException):
        stage = Stage(stage).value
        super().__init__(f"{stage} stage failed: {cause}", cause)
        self.stage = stage

    @property
    def exit_code(self) -> ExitCode:
        return ExitCode.for_stage(self.stage)
