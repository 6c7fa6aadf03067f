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
Base image reference parsing.
Splits references like 'python:3.9-slim' into registry, repository and tag,
and derives the interpreter version and distribution variant from the tag.
"""

import re
from typing import Optional
from dataclasses import dataclass

TAG_PATTERN = re.compile(r'^(?P<version>\d+(?:\.\d+){0,2}(?:(?:a|b|rc)\d+)?)(?:-(?P<variant>[A-Za-z0-9.-]+))?$')


@dataclass
class BaseImage:
    """
    Parsed base image reference.

    Examples:
        - python:3.9-slim -> docker.io/library/python:3.9-slim (python 3.9, slim)
        - python:3.12.1-bookworm -> python 3.12.1, bookworm
        - ghcr.io/org/runtime:1.0 -> no python version
    """

    registry: str
    repository: str
    tag: Optional[str] = None
    digest: Optional[str] = None

    DEFAULT_REGISTRY = "docker.io"
    DEFAULT_TAG = "latest"

    @classmethod
    def parse(cls, reference: str) -> "BaseImage":
        """
        Parse an image reference string.

        Args:
            reference: Image reference string (e.g., 'python:3.9-slim')

        Returns:
            Parsed BaseImage object.
        """
        reference = (reference or "").strip()
        if not reference:
            raise ValueError("Empty image reference")

        digest = None
        if "@" in reference:
            reference, digest = reference.rsplit("@", 1)

        tag = None
        last_colon = reference.rfind(":")
        # A colon followed by a slash belongs to a registry port
        if last_colon != -1 and "/" not in reference[last_colon + 1:]:
            tag = reference[last_colon + 1:]
            reference = reference[:last_colon]

        parts = reference.split("/")
        first = parts[0]
        if len(parts) > 1 and ("." in first or ":" in first or first == "localhost"):
            registry = first
            repository = "/".join(parts[1:])
        else:
            registry = cls.DEFAULT_REGISTRY
            repository = reference if len(parts) > 1 else f"library/{reference}"

        if not repository or repository.endswith("/"):
            raise ValueError(f"Invalid image reference: {reference}")

        if not tag and not digest:
            tag = cls.DEFAULT_TAG

        return cls(registry=registry, repository=repository, tag=tag, digest=digest)

    @property
    def full_name(self) -> str:
        """Get full image name with registry."""
        name = f"{self.registry}/{self.repository}"
        if self.digest:
            return f"{name}@{self.digest}"
        return f"{name}:{self.tag}"

    @property
    def short_name(self) -> str:
        """Get short image name (without registry for official images)."""
        if self.registry != self.DEFAULT_REGISTRY:
            return self.full_name
        repo = self.repository
        if repo.startswith("library/"):
            repo = repo[len("library/"):]
        if self.digest:
            return f"{repo}@{self.digest}"
        return f"{repo}:{self.tag}"

    @property
    def is_python(self) -> bool:
        return self.repository.rsplit("/", 1)[-1] == "python"

    @property
    def python_version(self) -> Optional[str]:
        """Interpreter version the tag pins, e.g. '3.9' for python:3.9-slim."""
        if not self.is_python or not self.tag:
            return None
        match = TAG_PATTERN.match(self.tag)
        return match.group("version") if match else None

    @property
    def variant(self) -> Optional[str]:
        """Distribution variant of the tag, e.g. 'slim' or 'bookworm'."""
        if not self.tag:
            return None
        match = TAG_PATTERN.match(self.tag)
        if match:
            return match.group("variant")
        return None

    @property
    def uses_apt(self) -> bool:
        """Whether the distribution is Debian based and so has apt-get."""
        variant = self.variant or ""
        return "alpine" not in variant and "windowsservercore" not in variant

    def matches_python(self, reported: str) -> bool:
        """
        Checks an interpreter's reported version against the pinned one.

        'Python 3.9.18' matches a 3.9 pin; a tag without a version matches anything.
        """
        expected = self.python_version
        if expected is None:
            return True
        found = re.search(r'(\d+(?:\.\d+)*)', reported or "")
        if not found:
            return False
        actual = found.group(1).split(".")
        return actual[:len(expected.split("."))] == expected.split(".")

    def __str__(self) -> str:
        return self.short_name
