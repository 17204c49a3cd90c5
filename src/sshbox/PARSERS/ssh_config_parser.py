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
Parser for OpenSSH client configuration files, block by block.
"""
import re
from dataclasses import dataclass, field
from typing import List, Optional

BLOCK_START = re.compile(r'^\s*(Host|Match)\s+(.*?)\s*$', re.IGNORECASE)


@dataclass
class ConfigBlock:
    """A `Host`/`Match` block, or the leading global section (keyword None)."""

    keyword: Optional[str]
    patterns: List[str]
    lines: List[str] = field(default_factory=list)

    def matches_alias(self, alias: str) -> bool:
        return (self.keyword or "").lower() == "host" and self.patterns == [alias]

    def text(self) -> str:
        return "".join(self.lines)


class SSHConfigParser:
    """
    Splits an ssh_config document into blocks while keeping every line
    verbatim, so untouched blocks are written back unchanged.
    """
    @staticmethod
    def parse_from_string(content: str) -> List[ConfigBlock]:
        blocks = [ConfigBlock(keyword=None, patterns=[])]
        for line in content.splitlines(keepends=True):
            match = BLOCK_START.match(line)
            if match:
                blocks.append(ConfigBlock(
                    keyword=match.group(1),
                    patterns=match.group(2).split(),
                    lines=[line],
                ))
            else:
                blocks[-1].lines.append(line)
        return blocks

    @staticmethod
    def render(blocks: List[ConfigBlock]) -> str:
        parts = []
        for block in blocks:
            text = block.text()
            if not text:
                continue
            if parts and not parts[-1].endswith("\n"):
                parts[-1] += "\n"
            parts.append(text)
        return "".join(parts)
