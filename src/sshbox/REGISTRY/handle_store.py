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
Local index of the containers sshbox has started.
"""
import json
import logging
from pathlib import Path
from typing import Dict, List, Optional

from ..MODELS.container_handle import ContainerHandle

logger = logging.getLogger(__name__)


class HandleStore:
    """
    Keeps tracked ContainerHandles in a JSON index so separate CLI
    invocations share the same view. Passing no path keeps the index in memory.
    """

    def __init__(self, index_file: Optional[Path] = None):
        self.index_file = Path(index_file) if index_file else None
        self._handles: Dict[str, ContainerHandle] = self._load_index()

    def _load_index(self) -> Dict[str, ContainerHandle]:
        """Load the index from disk."""
        if not self.index_file or not self.index_file.exists():
            return {}
        try:
            with open(self.index_file, 'r') as f:
                raw = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            logger.warning("Ignoring unreadable container index %s: %s", self.index_file, e)
            return {}
        return {name: ContainerHandle.model_validate(data) for name, data in raw.get("containers", {}).items()}

    def _save_index(self) -> None:
        """Save the index to disk."""
        if not self.index_file:
            return
        self.index_file.parent.mkdir(parents=True, exist_ok=True)
        data = {"containers": {name: h.model_dump(mode="json") for name, h in self._handles.items()}}
        with open(self.index_file, 'w') as f:
            json.dump(data, f, indent=2)

    def put(self, handle: ContainerHandle) -> None:
        self._handles[handle.name] = handle
        self._save_index()

    def get(self, name_or_id: str) -> Optional[ContainerHandle]:
        """
        Looks a handle up by name, full id or id prefix.
        """
        if name_or_id in self._handles:
            return self._handles[name_or_id]
        matches = [h for h in self._handles.values() if h.id.startswith(name_or_id)]
        if len(matches) == 1:
            return matches[0]
        return None

    def delete(self, name: str) -> None:
        if self._handles.pop(name, None) is not None:
            self._save_index()

    def list(self) -> List[ContainerHandle]:
        return list(self._handles.values())

    def active(self) -> List[ContainerHandle]:
        return [h for h in self._handles.values() if h.is_active]

    def owner_of_port(self, host_port: int) -> Optional[ContainerHandle]:
        for handle in self.active():
            if host_port in handle.host_ports:
                return handle
        return None
