"""
Models for parsed Dockerfile instructions.
"""
from typing import List
from pydantic import BaseModel


class Instruction(BaseModel):
    """
    Represents a single instruction in a Dockerfile.
    """
    instruction: str
    arguments: List[str]
    raw: str
    line: int = 0
    exec_form: bool = False

    @property
    def text(self) -> str:
        """Arguments joined back into one string."""
        return " ".join(self.arguments)


class DockerfileAST(BaseModel):
    """
    Represents the complete list of instructions of a Dockerfile.
    """
    instructions: List[Instruction] = []

    def find(self, name: str) -> List[Instruction]:
        """Returns all instructions with the given keyword, in file order."""
        return [i for i in self.instructions if i.instruction == name]

    def last(self, name: str):
        """Returns the last instruction with the given keyword, or None."""
        found = self.find(name)
        return found[-1] if found else None
