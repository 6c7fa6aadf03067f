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
Execution of external commands with output capture and log forwarding.
"""
import logging
import subprocess
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from ..errors import BackendUnavailableError, BuildError

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Exit code and combined output of a finished command."""
    command: List[str]
    exit_code: int
    output: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class CommandRunner:
    """
    Runs one external command at a time and waits for it.
    """
    def __init__(self, name: str = "command", timeout: Optional[float] = None):
        """
        Initializes the command runner.

        Args:
            name (str): Label used in log lines.
            timeout (Optional[float]): Seconds before a command is killed.
        """
        self.name = name
        self.timeout = timeout

    def run(self,
            command: List[str],
            env: Optional[Dict[str, str]] = None,
            working_dir: Optional[str] = None,
            on_line: Optional[Callable[[str], None]] = None) -> CommandResult:
        """
        Runs a command to completion. Non-zero exit codes are returned, not raised.

        Args:
            command (List[str]): Command and arguments to execute.
            env (Optional[Dict[str, str]]): Environment for the process; inherits when None.
            working_dir (Optional[str]): Directory to start the process in.
            on_line (Optional[Callable]): Called with each output line as it arrives.

        Returns:
            CommandResult: Exit code and output.

        Raises:
            BackendUnavailableError: If the executable cannot be started.
            BuildError: If the command exceeds the timeout.
        """
        logger.debug("[%s] Running: %s", self.name, " ".join(command))

        try:
            process = subprocess.Popen(
                command,
                env=env,
                cwd=working_dir,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                # Avoid shell=True for security reasons (CWE-78)
                shell=False
            )
        except FileNotFoundError as e:
            raise BackendUnavailableError(f"{command[0]} is not installed or not on PATH") from e
        except PermissionError as e:
            raise BackendUnavailableError(f"{command[0]} cannot be executed: {e}") from e

        lines = []
        reader = None
        try:
            if on_line is None:
                output, _ = process.communicate(timeout=self.timeout)
                lines.append(output or "")
            else:
                reader = threading.Thread(
                    target=self._forward_lines,
                    args=(process.stdout, lines, on_line),
                    name=f"{self.name}-output",
                    daemon=True
                )
                reader.start()
                process.wait(timeout=self.timeout)
                reader.join()
        except subprocess.TimeoutExpired:
            logger.error("[%s] Timed out after %ss, killing", self.name, self.timeout)
            process.kill()
            process.wait()
            if reader is not None:
                # Children of the killed process may still hold the pipe open
                reader.join(timeout=1)
            raise BuildError(f"{command[0]} timed out after {self.timeout}s", output="".join(lines))
        finally:
            if process.stdout and (reader is None or not reader.is_alive()):
                process.stdout.close()

        result = CommandResult(command=list(command), exit_code=process.returncode, output="".join(lines))
        if not result.ok:
            logger.debug("[%s] Exit code %d", self.name, result.exit_code)
        return result

    @staticmethod
    def _forward_lines(stream, lines: List[str], on_line: Callable[[str], None]):
        for line in stream:
            lines.append(line)
            on_line(line.rstrip("\n"))
