"""
Shared fixtures: a build context laid out like the bin-collection server
and stand-ins for the docker command line tool.
"""
import pytest

from rib.CONFIG.settings import BuilderSettings
from rib.RUNNERS.command_runner import CommandResult
from rib.RUNNERS.docker_backend import BuildOutcome

ORIGINAL_DOCKERFILE = """\
# Use an official Python runtime as a parent image
FROM python:3.9-slim

# Install system dependencies (Chrome + Utilities)
RUN apt-get update && apt-get install -y \\
    wget \\
    gnupg \\
    unzip \\
    && wget -q -O - https://dl-ssl.google.com/linux/linux_signing_key.pub | apt-key add - \\
    && sh -c 'echo "deb [arch=amd64] http://dl.google.com/linux/chrome/deb/ stable main" >> /etc/apt/sources.list.d/google.list' \\
    && apt-get update \\
    && apt-get install -y google-chrome-stable \\
    && rm -rf /var/lib/apt/lists/*

# Set the working directory
WORKDIR /app

# Copy requirements and install Python dependencies
COPY requirements.txt .
RUN pip install --no-cache-dir -r requirements.txt

# Copy the rest of the application code
COPY . .

# Expose the port
ENV PORT=10000
EXPOSE 10000

# Command to run the application
CMD ["python", "sbd_server.py"]
"""

REQUIREMENTS = """\
# bin collection lookup
requests==2.31.0
beautifulsoup4>=4.12
selenium==4.15.2
"""


class FakeBackend:
    """Records calls and answers like docker would."""

    def __init__(self):
        self.outcome = BuildOutcome(exit_code=0, output="", image_id="sha256:0123abcd")
        self.inspect_data = {}
        self.run_results = {}
        self.builds = []
        self.runs = []

    def build(self, dockerfile_path, context_dir, tag, labels=None, no_cache=False):
        with open(dockerfile_path, 'r', encoding='utf-8') as f:
            dockerfile = f.read()
        self.builds.append({
            "dockerfile": dockerfile,
            "context_dir": context_dir,
            "tag": tag,
            "labels": labels,
            "no_cache": no_cache,
        })
        return self.outcome

    def inspect(self, image):
        return self.inspect_data

    def run(self, image, command, entrypoint=None, env=None):
        self.runs.append((entrypoint, list(command)))
        exit_code, output = self.run_results.get((entrypoint, tuple(command)), (1, ""))
        return CommandResult(command=[entrypoint or ""] + list(command), exit_code=exit_code, output=output)


@pytest.fixture
def build_context(tmp_path):
    """A build context with a manifest, the server script and a helper module."""
    context = tmp_path / "context"
    context.mkdir()
    (context / "requirements.txt").write_text(REQUIREMENTS)
    (context / "sbd_server.py").write_text("print('serving')\n")
    (context / "uk_bin_collection").mkdir()
    (context / "uk_bin_collection" / "council.py").write_text("COUNCIL = 'Wiltshire'\n")
    return str(context)


@pytest.fixture
def settings(tmp_path):
    return BuilderSettings(
        cache_dir=str(tmp_path / "cache"),
        output_dir=str(tmp_path / "out"),
    )


@pytest.fixture
def fake_backend():
    return FakeBackend()


@pytest.fixture
def original_dockerfile(tmp_path):
    """The hand-written Dockerfile of the server, with its manifest next to it."""
    directory = tmp_path / "original"
    directory.mkdir()
    (directory / "requirements.txt").write_text(REQUIREMENTS)
    path = directory / "Dockerfile"
    path.write_text(ORIGINAL_DOCKERFILE)
    return str(path)

