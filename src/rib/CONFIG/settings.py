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
Builder settings, merged from defaults, a .env file and RIB_* environment variables.
"""
import os
from pathlib import Path
from typing import Dict, Optional

from dotenv import dotenv_values
from pydantic import BaseModel, ValidationError, field_validator

from ..errors import RecipeError

ENV_PREFIX = "RIB_"


class BuilderSettings(BaseModel):
    """
    Settings of the builder itself, as opposed to the image recipe.
    """
    cache_dir: str = str(Path.home() / ".rib" / "cache")
    output_dir: str = str(Path.home() / ".rib" / "build")
    docker_binary: str = "docker"
    build_timeout: float = 1800.0
    check_entry_file: bool = True
    log_level: str = "INFO"

    @field_validator("build_timeout")
    @classmethod
    def _positive_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("build_timeout must be positive")
        return value

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        value = value.upper()
        if value not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level: {value}")
        return value

    @classmethod
    def load(cls,
             env_file: Optional[str] = ".env",
             environ: Optional[Dict[str, str]] = None) -> "BuilderSettings":
        """
        Loads settings. Process environment overrides the .env file, which
        overrides the defaults.

        :param env_file: Path to a .env file; ignored when absent.
        :param environ: Environment to read instead of os.environ.
        :return: The settings.
        :raises RecipeError: If a value does not validate.
        """
        merged: Dict[str, str] = {}
        if env_file and os.path.isfile(env_file):
            merged.update({k: v for k, v in dotenv_values(env_file).items() if v is not None})
        merged.update(os.environ if environ is None else environ)

        values = {}
        for key, value in merged.items():
            if key.startswith(ENV_PREFIX):
                field = key[len(ENV_PREFIX):].lower()
                if field in cls.model_fields:
                    values[field] = value

        try:
            return cls(**values)
        except ValidationError as e:
            problems = "; ".join(
                f"{ENV_PREFIX}{str(err['loc'][0]).upper()}: {err['msg']}" for err in e.errors()
            )
            raise RecipeError(f"Invalid builder settings: {problems}") from e
