"""
Utilities for resolving the command a container starts with.
"""
import os
import re
from typing import List, Optional

INTERPRETER_PATTERN = re.compile(r"python\d*(\.\d+)?")


class EntrypointExecutor:
    """
    Handles the merging of ENTRYPOINT and CMD instructions according to Docker rules,
    and locates the script the interpreter is asked to run.
    """
    def get_full_command(self, entrypoint: List[str], cmd: List[str]) -> List[str]:
        """
        Combines entrypoint and cmd into a single command list.

        :param entrypoint: The ENTRYPOINT list.
        :param cmd: The CMD list.
        :return: The full command list.
        """
        # With an ENTRYPOINT, CMD only supplies its arguments
        if entrypoint:
            return entrypoint + cmd
        return cmd

    def get_entry_file(self, command: List[str]) -> Optional[str]:
        """
        Returns the script an interpreter command targets.

        :param command: Full command, e.g. ["python", "sbd_server.py"].
        :return: The script path, or None if the command is not
                 "interpreter [options] script".
        """
        if not command or not INTERPRETER_PATTERN.fullmatch(os.path.basename(command[0])):
            return None
        for arg in command[1:]:
            if arg in ("-m", "-c"):
                return None
            if not arg.startswith("-"):
                return arg
        return None

    def resolve_entry_file(self, command: List[str], working_dir: str, context_dir: str) -> Optional[str]:
        """
        Maps the entry script to its location in the build context, given
        that the context is copied into the working directory.

        :param command: Full command.
        :param working_dir: Image working directory (e.g. /app).
        :param context_dir: Local build context directory.
        :return: Local path of the script, or None when not applicable.
        """
        entry = self.get_entry_file(command)
        if entry is None:
            return None
        if os.path.isabs(entry):
            try:
                entry = os.path.relpath(entry, working_dir)
            except ValueError:
                return None
            if entry.startswith(".."):
                # Outside the copied tree; nothing local to check
                return None
        return os.path.join(context_dir, entry)
