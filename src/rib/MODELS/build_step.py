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
Models for planned and executed build steps.
"""
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel

from ..errors import BuildError
from .container_image import ContainerImage

# Instructions that add a filesystem layer; the rest only change image config
LAYER_INSTRUCTIONS = {"RUN", "COPY", "ADD"}


class StepStatus(str, Enum):
    """
    Outcome of a single build step.
    """
    PENDING = "pending"
    CACHED = "cached"
    BUILT = "built"
    FAILED = "failed"
    SKIPPED = "skipped"


class BuildStep(BaseModel):
    """
    One instruction of the build, with the cache key of the layer it produces.
    """
    index: int
    instruction: str
    arguments: List[str]
    raw: str = ""
    inputs_digest: str = ""
    cache_key: str = ""
    status: StepStatus = StepStatus.PENDING

    @property
    def creates_layer(self) -> bool:
        return self.instruction in LAYER_INSTRUCTIONS

    @property
    def description(self) -> str:
        return f"{self.instruction} {' '.join(self.arguments)}"


class BuildPlan(BaseModel):
    """
    Ordered steps of a build together with the Dockerfile they came from.
    """
    steps: List[BuildStep] = []
    dockerfile: str = ""

    def step_for(self, instruction: str, occurrence: int = 0) -> Optional[BuildStep]:
        """
        Returns the n-th step with the given instruction.

        :param instruction: Instruction keyword, e.g. "COPY".
        :param occurrence: Zero-based occurrence index.
        :return: The step, or None if there are not that many.
        """
        matches = [s for s in self.steps if s.instruction == instruction]
        if occurrence < len(matches):
            return matches[occurrence]
        return None

    def count(self, status: StepStatus) -> int:
        return sum(1 for s in self.steps if s.status == status)


class BuildResult(BaseModel):
    """
    Outcome of a build: either a complete image or the step that failed.
    """
    success: bool
    plan: BuildPlan
    image: Optional[ContainerImage] = None
    failed_step: Optional[int] = None
    error: Optional[str] = None
    exit_code: Optional[int] = None
    output: str = ""

    def raise_for_status(self) -> None:
        """Raises BuildError if the build did not succeed."""
        if not self.success:
            raise BuildError(self.error or "Build failed", step_index=self.failed_step,
                             exit_code=self.exit_code, output=self.output)

    @property
    def cached_steps(self) -> int:
        return self.plan.count(StepStatus.CACHED)

    @property
    def built_steps(self) -> int:
        return self.plan.count(StepStatus.BUILT)
