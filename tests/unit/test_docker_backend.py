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
Unit tests for the docker command line adapter.
"""
import json
import time

import pytest

from rib.errors import BackendUnavailableError, BuildError
from rib.RUNNERS.command_runner import CommandResult, CommandRunner
from rib.RUNNERS.docker_backend import BuildOutcome, BuildOutputReader, DockerBackend

BUILDKIT_SUCCESS = """\
#0 building with "default" instance using docker driver
#1 [internal] load build definition from Dockerfile
#1 DONE 0.0s
#5 [1/6] FROM docker.io/library/python:3.9-slim@sha256:5f0192a4f58a6ce99f732fe05e3b3d00f12ae62e183886bca3ebe3d202686c7f
#5 CACHED
#6 [2/6] RUN apt-get update && apt-get install -y     wget     gnupg     unzip
#6 CACHED
#7 [3/6] WORKDIR /app
#7 CACHED
#8 [4/6] COPY requirements.txt .
#8 CACHED
#9 [5/6] RUN pip install --no-cache-dir -r requirements.txt
#9 CACHED
#10 [6/6] COPY . .
#10 DONE 0.1s
#11 exporting to image
#11 writing image sha256:9a8b7c done
"""

BUILDKIT_FAILURE = """\
#8 [4/6] COPY requirements.txt .
#8 DONE 0.0s
#9 [5/6] RUN pip install --no-cache-dir -r requirements.txt
#9 1.203 ERROR: Could not find a version that satisfies the requirement requests==99.0
#9 ERROR: process "/bin/sh -c pip install --no-cache-dir -r requirements.txt" did not complete successfully: exit code: 1
------
 > [5/6] RUN pip install --no-cache-dir -r requirements.txt:
------
"""

CLASSIC_FAILURE = """\
Step 1/9 : FROM python:3.9-slim
 ---> 2d9a
Step 2/9 : RUN apt-get update && apt-get install -y wget
 ---> Using cache
 ---> 8f1e
Step 3/9 : WORKDIR /app
 ---> Running in 77aa
Step 4/9 : COPY requirements.txt .
COPY failed: file not found in build context
"""


def read(output, exit_code):
    outcome = BuildOutcome(exit_code=exit_code, output=output)
    reader = BuildOutputReader(outcome)
    for line in output.splitlines():
        reader.feed(line)
    reader.finish()
    return outcome


class FakeRunner:
    """Plays back canned output and records the commands it was given."""

    def __init__(self, output="", exit_code=0, image_id="sha256:9a8b7c"):
        self.output = output
        self.exit_code = exit_code
        self.image_id = image_id
        self.commands = []

    def run(self, command, env=None, working_dir=None, on_line=None):
        self.commands.append(command)
        if on_line is not None:
            for line in self.output.splitlines():
                on_line(line)
        if "--iidfile" in command and self.exit_code == 0:
            with open(command[command.index("--iidfile") + 1], 'w', encoding='utf-8') as f:
                f.write(self.image_id)
        return CommandResult(command=command, exit_code=self.exit_code, output=self.output)


class TestBuildOutputReader:
    """Tests for following build output."""

    def test_buildkit_cached_steps(self):
        outcome = read(BUILDKIT_SUCCESS, 0)
        assert "WORKDIR /app" in outcome.cached_instructions
        assert "COPY . ." not in outcome.cached_instructions
        assert "RUN apt-get update && apt-get install -y wget gnupg unzip" in outcome.started_instructions
        assert outcome.failed_instruction is None

    def test_buildkit_failure(self):
        outcome = read(BUILDKIT_FAILURE, 1)
        assert outcome.failed_instruction == "RUN pip install --no-cache-dir -r requirements.txt"

    def test_classic_failure_is_last_started_step(self):
        outcome = read(CLASSIC_FAILURE, 1)
        assert outcome.failed_instruction == "COPY requirements.txt ."
        assert outcome.cached_instructions == {"RUN apt-get update && apt-get install -y wget"}


class TestDockerBackend:
    """Tests for DockerBackend commands."""

    def test_build_command_and_image_id(self, tmp_path):
        runner = FakeRunner(output=BUILDKIT_SUCCESS)
        backend = DockerBackend(runner=runner)
        outcome = backend.build("out/Dockerfile", str(tmp_path), "sbd-server:latest",
                                labels={"maintainer": "ops"}, no_cache=True)

        command = runner.commands[0]
        assert command[:3] == ["docker", "build", "--progress=plain"]
        assert command[command.index("-f") + 1] == "out/Dockerfile"
        assert command[command.index("-t") + 1] == "sbd-server:latest"
        assert command[command.index("--label") + 1] == "maintainer=ops"
        assert "--no-cache" in command
        assert command[-1] == str(tmp_path)
        assert outcome.ok
        assert outcome.image_id == "sha256:9a8b7c"

    def test_failed_build_is_returned(self, tmp_path):
        backend = DockerBackend(runner=FakeRunner(output=BUILDKIT_FAILURE, exit_code=1))
        outcome = backend.build("Dockerfile", str(tmp_path), "sbd-server:latest")
        assert not outcome.ok
        assert outcome.image_id is None
        assert outcome.failed_instruction.startswith("RUN pip install")

    def test_inspect(self):
        document = [{"Id": "sha256:9a8b7c", "Config": {"Env": ["PORT=10000"]}}]
        backend = DockerBackend(runner=FakeRunner(output=json.dumps(document)))
        assert backend.inspect("sbd-server:latest")["Config"]["Env"] == ["PORT=10000"]

    def test_inspect_missing_image(self):
        backend = DockerBackend(runner=FakeRunner(output="Error: No such image: nope", exit_code=1))
        with pytest.raises(BuildError, match="No such image"):
            backend.inspect("nope")

    def test_run_command(self):
        runner = FakeRunner(output="Python 3.9.18\n")
        result = DockerBackend(binary="podman", runner=runner).run(
            "sbd-server:latest", ["--version"], entrypoint="python", env={"PORT": "10000"}
        )
        assert result.ok
        assert runner.commands[0] == [
            "podman", "run", "--rm", "--entrypoint", "python", "-e", "PORT=10000",
            "sbd-server:latest", "--version",
        ]


def test_missing_binary():
    runner = CommandRunner(name="docker")
    with pytest.raises(BackendUnavailableError):
        runner.run(["rib-no-such-binary-on-path", "build"])


def test_streaming_command_is_killed_at_timeout():
    lines = []
    runner = CommandRunner(name="docker", timeout=0.5)
    started = time.monotonic()
    with pytest.raises(BuildError, match="timed out"):
        runner.run(["sleep", "5"], on_line=lines.append)
    assert time.monotonic() - started < 4


def test_streaming_command_forwards_lines():
    lines = []
    result = CommandRunner(timeout=10).run(["printf", "one\\ntwo\\n"], on_line=lines.append)
    assert result.ok
    assert lines == ["one", "two"]
    assert result.output == "one\ntwo\n"
