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
Installs public keys inside containers and maintains local ssh client config entries.
"""
import logging
import os
import shlex
from pathlib import Path
from typing import Optional

from docker.errors import DockerException, NotFound

from ..errors import AccessDeniedError
from ..MODELS.container_handle import ContainerHandle
from ..MODELS.ssh_config_entry import SSHConfigEntry
from ..PARSERS.ssh_config_parser import ConfigBlock, SSHConfigParser
from ..RUNTIME.docker_runtime import DockerRuntime

logger = logging.getLogger(__name__)

AUTHORIZE_SCRIPT = """\
set -e
home=$(getent passwd {user} | cut -d: -f6)
[ -n "$home" ] || {{ echo "no such user: {user}" >&2; exit 3; }}
mkdir -p "$home/.ssh"
touch "$home/.ssh/authorized_keys"
grep -qxF {key} "$home/.ssh/authorized_keys" || printf '%s\\n' {key} >> "$home/.ssh/authorized_keys"
chmod 700 "$home/.ssh"
chmod 600 "$home/.ssh/authorized_keys"
chown -R {user}:{user} "$home/.ssh"
"""


def render_authorize_script(user: str, public_key: str) -> str:
    """
    Shell script that appends `public_key` to `user`'s authorized_keys once.
    """
    return AUTHORIZE_SCRIPT.format(user=shlex.quote(user), key=shlex.quote(public_key))


class AccessConfigurator:
    """
    Grants key-based access to a running container and points the local
    ssh client at it.
    """
    def __init__(self,
                 runtime: Optional[DockerRuntime] = None,
                 ssh_config_path: Optional[Path] = None):
        """
        :param runtime: The container runtime used for exec.
        :param ssh_config_path: Client configuration file, ~/.ssh/config by default.
        """
        self.runtime = runtime or DockerRuntime()
        self.ssh_config_path = Path(ssh_config_path or Path.home() / ".ssh" / "config").expanduser()

    def authorize(self, handle: ContainerHandle, public_key: str, user: Optional[str] = None) -> None:
        """
        Adds `public_key` to `user`'s authorized_keys inside the container.
        Adding the same key again leaves a single line.

        :raises AccessDeniedError: If the container is unreachable or the exec fails.
        """
        key = public_key.strip()
        if not key or "\n" in key:
            raise AccessDeniedError("Public key must be a single non-empty line")
        user = user or handle.user

        try:
            status = self.runtime.status(handle.id)
        except DockerException as e:
            raise AccessDeniedError(f"Container {handle.name} is unreachable: {e}", e) from e
        if status != "running":
            raise AccessDeniedError(f"Container {handle.name} is not running (status: {status or 'missing'})")

        script = render_authorize_script(user, key)
        try:
            exit_code, output = self.runtime.exec(handle.id, ["sh", "-c", script], user="root")
        except NotFound as e:
            raise AccessDeniedError(f"Container {handle.name} disappeared", e) from e
        except DockerException as e:
            raise AccessDeniedError(f"Could not exec in container {handle.name}: {e}", e) from e

        if exit_code != 0:
            raise AccessDeniedError(
                f"Installing the key in {handle.name} failed with exit code {exit_code}: {output.strip()}"
            )
        logger.info("Authorized key for %s in container %s", user, handle.name)

    def write_client_config(self, entry: SSHConfigEntry) -> None:
        """
        Appends the entry to the client config, replacing any block with the same alias.
        """
        content = self.ssh_config_path.read_text() if self.ssh_config_path.exists() else ""
        blocks = SSHConfigParser.parse_from_string(content)

        new_block = ConfigBlock(keyword="Host", patterns=[entry.alias], lines=[entry.render()])
        replaced = False
        for index, block in enumerate(blocks):
            if block.matches_alias(entry.alias):
                if block.lines and not block.lines[-1].strip():
                    new_block.lines.append("\n")
                blocks[index] = new_block
                replaced = True
                break
        if not replaced:
            if content and not content.endswith("\n\n"):
                blocks[-1].lines.append("\n" if content.endswith("\n") else "\n\n")
            blocks.append(new_block)

        self._write(SSHConfigParser.render(blocks))
        logger.info("%s ssh config entry %s in %s",
                    "Updated" if replaced else "Added", entry.alias, self.ssh_config_path)

    def remove_client_config(self, alias: str) -> bool:
        """
        Removes the block for `alias`. Returns False when there was none.
        """
        if not self.ssh_config_path.exists():
            return False
        blocks = SSHConfigParser.parse_from_string(self.ssh_config_path.read_text())
        kept = [b for b in blocks if not b.matches_alias(alias)]
        if len(kept) == len(blocks):
            return False
        self._write(SSHConfigParser.render(kept))
        return True

    def _write(self, content: str) -> None:
        # a symlinked config is written through to its target
        target = self.ssh_config_path.resolve()
        ssh_dir = target.parent
        if not ssh_dir.exists():
            ssh_dir.mkdir(parents=True)
            os.chmod(ssh_dir, 0o700)
        tmp_path = target.with_name(target.name + ".sshbox.tmp")
        tmp_path.write_text(content)
        os.chmod(tmp_path, 0o600)
        os.replace(tmp_path, target)
