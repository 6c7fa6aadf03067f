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
Model of the build-time inputs of a runtime image.
"""
import re
from typing import Dict, List
from pydantic import BaseModel, Field, field_validator, model_validator

DEFAULT_BASE_IMAGE = "python:3.9-slim"
DEFAULT_SYSTEM_PACKAGES = ["wget", "gnupg", "unzip"]
DEFAULT_BROWSER_PACKAGE = "google-chrome-stable"
DEFAULT_SIGNING_KEY_URL = "https://dl-ssl.google.com/linux/linux_signing_key.pub"
DEFAULT_REPOSITORY_LINE = "deb [arch=amd64] http://dl.google.com/linux/chrome/deb/ stable main"
DEFAULT_REPOSITORY_LIST = "/etc/apt/sources.list.d/google.list"
DEFAULT_PORT = 10000
DEFAULT_ENTRY_FILE = "sbd_server.py"

# ENV and LABEL keys are written unquoted
KEY_PATTERN = re.compile(r"[A-Za-z_][A-Za-z0-9_.-]*")


class BuildRecipe(BaseModel):
    """
    Everything needed to assemble the image: base runtime, OS packages,
    browser repository, dependency manifest, source layout, port and command.
    """
    name: str = "sbd-server"
    base_image: str = DEFAULT_BASE_IMAGE

    # Installed in this order, before the browser
    system_packages: List[str] = Field(default_factory=lambda: list(DEFAULT_SYSTEM_PACKAGES))
    browser_package: str = DEFAULT_BROWSER_PACKAGE
    signing_key_url: str = DEFAULT_SIGNING_KEY_URL
    repository_line: str = DEFAULT_REPOSITORY_LINE
    repository_list: str = DEFAULT_REPOSITORY_LIST

    working_directory: str = "/app"
    dependency_manifest: str = "requirements.txt"

    environment: Dict[str, str] = Field(default_factory=lambda: {"PORT": str(DEFAULT_PORT)})
    exposed_ports: List[int] = Field(default_factory=lambda: [DEFAULT_PORT])
    command: List[str] = Field(default_factory=lambda: ["python", DEFAULT_ENTRY_FILE])

    labels: Dict[str, str] = {}

    @classmethod
    def default(cls) -> "BuildRecipe":
        """Returns the recipe of the bin-collection server image."""
        return cls()

    @field_validator("base_image", "browser_package", "working_directory", "dependency_manifest")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must not be empty")
        return value.strip()

    @field_validator("system_packages")
    @classmethod
    def _unique_packages(cls, value: List[str]) -> List[str]:
        seen = set()
        for pkg in value:
            if not pkg or any(c.isspace() for c in pkg):
                raise ValueError(f"invalid package name: {pkg!r}")
            if pkg in seen:
                raise ValueError(f"duplicate package: {pkg}")
            seen.add(pkg)
        return value

    @field_validator("signing_key_url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        if not value.startswith(("https://", "http://")):
            raise ValueError("signing key URL must be http(s)")
        return value

    @field_validator("repository_line")
    @classmethod
    def _check_repository_line(cls, value: str) -> str:
        # apt one-line format: "deb [options] uri suite [component...]"
        parts = value.split()
        if not parts or parts[0] not in ("deb", "deb-src"):
            raise ValueError("repository line must start with 'deb' or 'deb-src'")
        # It is written through a quoted shell echo
        if any(c in value for c in "'\"`$\\"):
            raise ValueError("repository line must not contain quotes, '$' or backslashes")
        return value

    @field_validator("exposed_ports")
    @classmethod
    def _check_ports(cls, value: List[int]) -> List[int]:
        for port in value:
            if not 1 <= port <= 65535:
                raise ValueError(f"port out of range: {port}")
        return value

    @field_validator("environment", "labels")
    @classmethod
    def _check_keys(cls, value: Dict[str, str]) -> Dict[str, str]:
        for key in value:
            if not KEY_PATTERN.fullmatch(key):
                raise ValueError(f"invalid key: {key!r}")
        return value

    @field_validator("command")
    @classmethod
    def _check_command(cls, value: List[str]) -> List[str]:
        if not value:
            raise ValueError("command must not be empty")
        return value

    @model_validator(mode="after")
    def _browser_not_in_utilities(self) -> "BuildRecipe":
        if self.browser_package in self.system_packages:
            raise ValueError(
                f"{self.browser_package} is installed from its own repository, "
                "do not list it in system_packages"
            )
        return self

    @property
    def all_packages(self) -> List[str]:
        """OS packages in installation order."""
        return self.system_packages + [self.browser_package]

    @property
    def declared_port(self) -> int:
        """The advertised service port."""
        if "PORT" in self.environment:
            return int(self.environment["PORT"])
        return self.exposed_ports[0] if self.exposed_ports else DEFAULT_PORT
