"""
Parsers for Dockerfiles, extracting instructions and arguments.
"""
import json
import re
import shlex
from typing import List
from ..MODELS.dockerfile_ast import Instruction, DockerfileAST

INSTRUCTION_PATTERN = re.compile(r'^\s*([A-Za-z]+)(?:\s+(.*))?$')


class DockerfileParser:
    """
    Parser for Dockerfile instructions.
    """
    def parse(self, dockerfile_path: str) -> List[Instruction]:
        """
        Parses a Dockerfile from a file path.

        Args:
            dockerfile_path (str): Path to the Dockerfile.

        Returns:
            List[Instruction]: List of parsed instructions.
        """
        with open(dockerfile_path, 'r', encoding='utf-8') as f:
            content = f.read()
        return self.parse_from_string(content)

    def parse_ast(self, content: str) -> DockerfileAST:
        """
        Parses Dockerfile content into a DockerfileAST.
        """
        return DockerfileAST(instructions=self.parse_from_string(content))

    def parse_from_string(self, content: str) -> List[Instruction]:
        """
        Parses a Dockerfile from a string content.

        Comment lines are dropped, also in the middle of a continued
        instruction. A trailing backslash joins the next line.

        Args:
            content (str): Content of the Dockerfile.

        Returns:
            List[Instruction]: List of parsed instructions.
        """
        instructions = []
        buffer = []
        start_line = 0

        for lineno, line in enumerate(content.splitlines(), start=1):
            if re.match(r'^\s*#', line):
                continue
            if not buffer:
                if not line.strip():
                    continue
                start_line = lineno

            stripped = line.rstrip()
            if stripped.endswith('\\'):
                buffer.append(stripped[:-1].strip())
                continue

            buffer.append(line.strip())
            inst = self._make_instruction(" ".join(p for p in buffer if p), start_line)
            if inst is not None:
                instructions.append(inst)
            buffer = []

        # Dangling continuation at end of file
        if buffer:
            inst = self._make_instruction(" ".join(p for p in buffer if p), start_line)
            if inst is not None:
                instructions.append(inst)

        return instructions

    def _make_instruction(self, logical_line: str, line: int):
        match = INSTRUCTION_PATTERN.match(logical_line)
        if not match:
            return None

        inst = match.group(1).upper()
        args_str = (match.group(2) or "").strip()
        exec_form = False

        # JSON/exec form vs shell form
        if args_str.startswith('[') and args_str.endswith(']'):
            try:
                parsed = json.loads(args_str)
            except json.JSONDecodeError:
                parsed = None
            if isinstance(parsed, list) and all(isinstance(a, str) for a in parsed):
                args = parsed
                exec_form = True
            else:
                args = [args_str]
        elif inst in ("ENV", "LABEL", "ARG"):
            args = self._split_pairs(args_str)
        elif inst in ("EXPOSE", "COPY", "ADD", "VOLUME"):
            args = args_str.split()
        else:
            args = [args_str] if args_str else []

        return Instruction(
            instruction=inst,
            arguments=args,
            raw=logical_line,
            line=line,
            exec_form=exec_form,
        )

    @staticmethod
    def _split_pairs(args_str: str) -> List[str]:
        """
        Splits ENV/LABEL arguments. KEY=VALUE pairs may be quoted; the legacy
        "KEY VALUE" form becomes a single KEY=VALUE item.
        """
        if not args_str:
            return []
        first = args_str.split(None, 1)[0]
        if '=' not in first:
            parts = args_str.split(None, 1)
            if len(parts) == 2:
                return [f"{parts[0]}={parts[1]}"]
            return parts
        try:
            return shlex.split(args_str)
        except ValueError:
            # Unbalanced quotes
            return re.findall(r'(\S+=\S+)', args_str)
