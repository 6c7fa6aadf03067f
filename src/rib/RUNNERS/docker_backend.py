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
Adapter for the docker command line tool.
Builds images from a Dockerfile, inspects them and runs throwaway containers.
"""
import json
import logging
import os
import re
import tempfile
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from ..errors import BuildError
from .command_runner import CommandRunner, CommandResult

logger = logging.getLogger(__name__)

# BuildKit progress: "#8 [4/6] COPY requirements.txt ." / "#8 CACHED"
BUILDKIT_STEP = re.compile(r'^#(?P<id>\d+) \[(?:[\w.-]+ )?\d+/\d+\] (?P<text>.+?)\s*$')
BUILDKIT_CACHED = re.compile(r'^#(?P<id>\d+) CACHED\s*$')
BUILDKIT_ERROR = re.compile(r'^(?:#\d+ )?ERROR:? \[(?:[\w.-]+ )?\d+/\d+\] (?P<text>.+?)\s*$')
BUILDKIT_STEP_ERROR = re.compile(r'^#(?P<id>\d+) ERROR: ')
BUILDKIT_SUMMARY = re.compile(r'^\s*> \[(?:[\w.-]+ )?\d+/\d+\] (?P<text>.+?):\s*$')
# Classic builder: "Step 5/9 : RUN pip install ..." / " ---> Using cache"
CLASSIC_STEP = re.compile(r'^Step \d+/\d+ : (?P<text>.+?)\s*$')
CLASSIC_CACHED = re.compile(r'^\s*---> Using cache\s*$')


@dataclass
class BuildOutcome:
    """What the container tool reported about a build."""
    exit_code: int
    output: str
    image_id: Optional[str] = None
    failed_instruction: Optional[str] = None
    cached_instructions: Set[str] = field(default_factory=set)
    started_instructions: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


def normalize_instruction(text: str) -> str:
    """Collapses whitespace so tool output can be compared with plan steps."""
    return re.sub(r'\s+', ' ', text).strip()


class BuildOutputReader:
    """
    Follows build output line by line and keeps track of which
    instructions started, which were served from cache and which failed.
    """
    def __init__(self, outcome: BuildOutcome):
        self.outcome = outcome
        self._buildkit_ids: Dict[str, str] = {}
        self._current: Optional[str] = None

    def feed(self, line: str):
        logger.info("%s", line)
        match = BUILDKIT_STEP.match(line)
        if match:
            text = normalize_instruction(match.group("text"))
            self._buildkit_ids[match.group("id")] = text
            if text not in self.outcome.started_instructions:
                self.outcome.started_instructions.append(text)
            return
        match = BUILDKIT_CACHED.match(line)
        if match and match.group("id") in self._buildkit_ids:
            self.outcome.cached_instructions.add(self._buildkit_ids[match.group("id")])
            return
        match = BUILDKIT_ERROR.match(line) or BUILDKIT_SUMMARY.match(line)
        if match:
            if self.outcome.failed_instruction is None:
                self.outcome.failed_instruction = normalize_instruction(match.group("text"))
            return
        match = BUILDKIT_STEP_ERROR.match(line)
        if match and match.group("id") in self._buildkit_ids:
            if self.outcome.failed_instruction is None:
                self.outcome.failed_instruction = self._buildkit_ids[match.group("id")]
            return
        match = CLASSIC_STEP.match(line)
        if match:
            self._current = normalize_instruction(match.group("text"))
            self.outcome.started_instructions.append(self._current)
            return
        if CLASSIC_CACHED.match(line) and self._current:
            self.outcome.cached_instructions.add(self._current)

    def finish(self):
        # Classic builder: the failing step is the last one that started
        if not self.outcome.ok and self.outcome.failed_instruction is None and self._current:
            self.outcome.failed_instruction = self._current


class DockerBackend:
    """
    Drives `docker build`, `docker image inspect` and `docker run`.
    """
    def __init__(self, binary: str = "docker", timeout: Optional[float] = None,
                 runner: Optional[CommandRunner] = None):
        """
        :param binary: The docker executable.
        :param timeout: Seconds allowed for a single build.
        :param runner: Command runner to use; mainly for tests.
        """
        self.binary = binary
        self.runner = runner or CommandRunner(name="docker", timeout=timeout)

    def build(self, dockerfile_path: str, context_dir: str, tag: str,
              labels: Optional[Dict[str, str]] = None,
              no_cache: bool = False) -> BuildOutcome:
        """
        Builds an image. A failing build is returned, not raised, so the
        caller can attribute the failure to a step.

        :param dockerfile_path: Path to the Dockerfile.
        :param context_dir: The build context directory.
        :param tag: Tag for the resulting image.
        :param labels: Extra image labels.
        :param no_cache: Ignore the tool's layer cache.
        :return: The BuildOutcome.
        """
        fd, iid_file = tempfile.mkstemp(prefix="rib-iid-")
        os.close(fd)
        try:
            command = [self.binary, "build", "--progress=plain", "--iidfile", iid_file,
                       "-f", dockerfile_path, "-t", tag]
            for key, value in sorted((labels or {}).items()):
                command += ["--label", f"{key}={value}"]
            if no_cache:
                command.append("--no-cache")
            command.append(context_dir)

            outcome = BuildOutcome(exit_code=0, output="")
            reader = BuildOutputReader(outcome)
            result = self.runner.run(command, on_line=reader.feed)
            outcome.exit_code = result.exit_code
            outcome.output = result.output
            reader.finish()

            if outcome.ok:
                with open(iid_file, 'r', encoding='utf-8') as f:
                    outcome.image_id = f.read().strip() or None
            return outcome
        finally:
            if os.path.exists(iid_file):
                os.remove(iid_file)

    def inspect(self, image: str) -> Dict[str, Any]:
        """
        Returns the image's inspect document.

        :raises BuildError: If the image does not exist.
        """
        result = self.runner.run([self.binary, "image", "inspect", image])
        if not result.ok:
            raise BuildError(f"Cannot inspect image {image}: {result.output.strip()}",
                             exit_code=result.exit_code, output=result.output)
        try:
            data = json.loads(result.output)
        except json.JSONDecodeError as e:
            raise BuildError(f"Unexpected inspect output for {image}") from e
        if isinstance(data, list):
            if not data:
                raise BuildError(f"Image not found: {image}")
            data = data[0]
        return data

    def run(self, image: str, command: List[str],
            entrypoint: Optional[str] = None,
            env: Optional[Dict[str, str]] = None) -> CommandResult:
        """
        Runs a command in a throwaway container and returns its result.
        """
        full = [self.binary, "run", "--rm"]
        if entrypoint is not None:
            full += ["--entrypoint", entrypoint]
        for key, value in sorted((env or {}).items()):
            full += ["-e", f"{key}={value}"]
        full.append(image)
        full += command
        return self.runner.run(full)
