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
SSH keypair generation and validation through ssh-keygen.
"""
import logging
import os
import subprocess
from pathlib import Path
from typing import Callable, List, Optional

from ..errors import KeyGenerationError
from ..MODELS.key_pair import KeyPair

logger = logging.getLogger(__name__)

SUPPORTED_ALGORITHMS = ("ed25519", "rsa", "ecdsa")
PUBLIC_KEY_PREFIXES = ("ssh-ed25519", "ssh-rsa", "ecdsa-sha2-")


def _run_subprocess(args: List[str]) -> subprocess.CompletedProcess:
    return subprocess.run(args, check=True, capture_output=True, text=True)


class KeyManager:
    """
    Creates and validates keypairs used to log into sshbox containers.
    """
    def __init__(self, runner: Callable[[List[str]], subprocess.CompletedProcess] = _run_subprocess):
        """
        :param runner: Subprocess runner, replaceable in tests.
        """
        self.runner = runner

    def generate_key_pair(self,
                          path,
                          passphrase: Optional[str] = None,
                          overwrite: bool = False,
                          algorithm: str = "ed25519",
                          comment: Optional[str] = None) -> KeyPair:
        """
        Generates a new keypair at `path` and `path.pub`.

        :param path: Location of the private key.
        :param passphrase: Optional passphrase; None means an unencrypted key.
        :param overwrite: Replace an existing keypair instead of failing.
        :param algorithm: ssh-keygen key type.
        :param comment: Key comment, defaults to `sshbox@<name>`.
        :return: The created KeyPair.
        :raises KeyGenerationError: If the keypair exists or ssh-keygen fails.
        """
        if algorithm not in SUPPORTED_ALGORITHMS:
            raise KeyGenerationError(f"Unsupported key algorithm: {algorithm}")

        private_path = Path(path).expanduser()
        public_path = private_path.with_name(private_path.name + ".pub")

        existing = [p for p in (private_path, public_path) if p.exists()]
        if existing:
            if not overwrite:
                raise KeyGenerationError(
                    f"Key file {existing[0]} already exists; pass overwrite to replace it"
                )
            for p in existing:
                logger.debug("Removing existing key file %s", p)
                p.unlink()

        parent = private_path.parent
        if not parent.exists():
            parent.mkdir(parents=True)
            os.chmod(parent, 0o700)

        args = [
            "ssh-keygen", "-q",
            "-t", algorithm,
            "-N", passphrase or "",
            "-C", comment or f"sshbox@{private_path.name}",
            "-f", str(private_path),
        ]
        logger.info("Generating %s keypair at %s", algorithm, private_path)
        try:
            self.runner(args)
        except subprocess.CalledProcessError as e:
            raise KeyGenerationError(
                f"ssh-keygen failed with exit code {e.returncode}: {(e.stderr or '').strip()}", e
            ) from e
        except OSError as e:
            raise KeyGenerationError(f"Could not run ssh-keygen: {e}", e) from e

        if not private_path.exists() or not public_path.exists():
            raise KeyGenerationError(f"ssh-keygen did not produce {private_path} and {public_path}")

        os.chmod(private_path, 0o600)
        os.chmod(public_path, 0o644)
        return KeyPair(private_key_path=private_path, public_key_path=public_path, algorithm=algorithm)

    def load_key_pair(self, path) -> KeyPair:
        """
        Validates an existing keypair and returns it.

        :raises KeyGenerationError: If either file is missing or the public key is malformed.
        """
        private_path = Path(path).expanduser()
        public_path = private_path.with_name(private_path.name + ".pub")
        for p in (private_path, public_path):
            if not p.is_file():
                raise KeyGenerationError(f"Key file {p} does not exist")

        fields = public_path.read_text().split()
        if len(fields) < 2 or not fields[0].startswith(PUBLIC_KEY_PREFIXES):
            raise KeyGenerationError(f"{public_path} is not an OpenSSH public key")

        key_type = fields[0]
        if key_type.startswith("ecdsa-"):
            algorithm = "ecdsa"
        else:
            algorithm = key_type[len("ssh-"):]
        return KeyPair(private_key_path=private_path, public_key_path=public_path, algorithm=algorithm)

    def ensure_key_pair(self, path, passphrase: Optional[str] = None, algorithm: str = "ed25519") -> KeyPair:
        """
        Reuses a valid keypair at `path`, generating one when none exists.
        """
        private_path = Path(path).expanduser()
        if private_path.exists():
            logger.info("Reusing existing keypair %s", private_path)
            return self.load_key_pair(private_path)
        return self.generate_key_pair(private_path, passphrase=passphrase, algorithm=algorithm)
