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
Exceptions raised by the image builder.

Every failure is fatal to the build. The subclasses only exist so the CLI
can say what went wrong.
"""
from typing import Any, Dict, Optional


class RibError(Exception):
    """Base exception for all builder errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert the exception to a dictionary for machine-readable output."""
        result = {"error": self.message, "type": self.__class__.__name__}
        if self.details:
            result["details"] = self.details
        return result


class RecipeError(RibError):
    """Raised when a build recipe or builder setting is invalid."""
    pass


class ManifestError(RibError):
    """Raised when the dependency manifest is missing or malformed."""

    def __init__(self, message: str, path: Optional[str] = None, line: Optional[int] = None):
        details = {}
        if path:
            details["path"] = path
        if line is not None:
            details["line"] = line
        super().__init__(message, details)
        self.path = path
        self.line = line


class ContextError(RibError):
    """Raised when the build context lacks a file the recipe needs."""
    pass


class BuildError(RibError):
    """Raised when a build step fails."""

    def __init__(self,
                 message: str,
                 step_index: Optional[int] = None,
                 exit_code: Optional[int] = None,
                 output: str = ""):
        details = {}
        if step_index is not None:
            details["step"] = step_index
        if exit_code is not None:
            details["exit_code"] = exit_code
        super().__init__(message, details)
        self.step_index = step_index
        self.exit_code = exit_code
        self.output = output


class BackendUnavailableError(BuildError):
    """Raised when the container build tool cannot be executed at all."""
    pass


class VerificationError(RibError):
    """Raised when a built image does not satisfy its recipe."""
    pass
