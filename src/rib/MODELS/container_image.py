"""
Models representing built runtime images and their configuration.
"""
from typing import List, Dict, Optional
from pydantic import BaseModel


class LayerRecord(BaseModel):
    """
    A filesystem layer produced by one build step.
    """
    cache_key: str
    instruction: str
    created: str = ""


class ContainerImage(BaseModel):
    """
    Represents a runtime image definition, either planned from a recipe,
    translated from a Dockerfile, or reported back by the build tool.
    """
    name: str
    base_image: str
    image_id: Optional[str] = None

    python_version: Optional[str] = None
    pip_requirements: List[str] = []
    system_dependencies: List[str] = []

    env_vars: Dict[str, str] = {}

    working_directory: Optional[str] = None
    exposed_ports: List[int] = []

    cmd: List[str] = []
    entrypoint: List[str] = []

    run_instructions: List[str] = []
    layers: List[LayerRecord] = []

    labels: Dict[str, str] = {}
