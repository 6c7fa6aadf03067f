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
Parsers for build recipes, from a YAML recipe file or an existing Dockerfile.
"""
import logging
import os
import re
import shlex
from typing import Any, Dict, List, Optional

import yaml
from pydantic import ValidationError

from ..errors import RecipeError
from ..MODELS.build_recipe import BuildRecipe
from ..UTILS.string_interpolation import EnvironmentInterpolator
from .dockerfile_parser import DockerfileParser

logger = logging.getLogger(__name__)

RECIPE_KEYS = set(BuildRecipe.model_fields.keys())


class RecipeParser:
    """
    Loads BuildRecipe instances.
    """
    def __init__(self, context: Optional[Dict[str, str]] = None):
        """
        Initializes the parser with an optional environment context for interpolation.

        :param context: A dictionary of environment variables for interpolation.
        """
        self.context = context if context is not None else dict(os.environ)

    def parse(self, recipe_path: str) -> BuildRecipe:
        """
        Parses a recipe file from a path.

        :param recipe_path: Path to the YAML recipe.
        :return: The validated recipe.
        :raises RecipeError: If the file is missing or invalid.
        """
        if not os.path.isfile(recipe_path):
            raise RecipeError(f"Recipe file not found: {recipe_path}")
        with open(recipe_path, 'r', encoding='utf-8') as f:
            content = f.read()
        return self.parse_from_string(content, source=recipe_path)

    def parse_from_string(self, content: str, source: str = "<string>") -> BuildRecipe:
        """
        Parses a recipe from YAML text. Keys that are absent take the
        defaults of the bin-collection server image.

        :param content: YAML content of the recipe.
        :param source: Name used in error messages.
        :return: The validated recipe.
        """
        try:
            content = EnvironmentInterpolator.interpolate(content, self.context)
        except KeyError as e:
            raise RecipeError(f"{source}: {e.args[0]}") from e

        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise RecipeError(f"{source}: invalid YAML: {e}") from e

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise RecipeError(f"{source}: recipe must be a mapping")

        unknown = set(data) - RECIPE_KEYS
        if unknown:
            raise RecipeError(f"{source}: unknown recipe keys: {', '.join(sorted(str(k) for k in unknown))}")

        return self.from_mapping(self._normalize(data), source)

    @staticmethod
    def from_mapping(data: Dict[str, Any], source: str = "<mapping>") -> BuildRecipe:
        """Validates a plain mapping into a recipe."""
        try:
            return BuildRecipe(**data)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            raise RecipeError(f"{source}: {problems}") from e

    def _normalize(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Coerces YAML conveniences: a command given as a string, env values
        given as numbers, ports given as strings like "10000/tcp".
        """
        data = dict(data)
        if isinstance(data.get('command'), str):
            try:
                data['command'] = shlex.split(data['command'])
            except ValueError as e:
                raise RecipeError(f"command: {e}") from e
        if isinstance(data.get('environment'), dict):
            data['environment'] = {str(k): str(v) for k, v in data['environment'].items()}
        elif isinstance(data.get('environment'), list):
            env = {}
            for item in data['environment']:
                if '=' not in str(item):
                    raise RecipeError(f"environment entry must be KEY=VALUE: {item}")
                k, v = str(item).split('=', 1)
                env[k] = v
            data['environment'] = env
        if isinstance(data.get('exposed_ports'), list):
            data['exposed_ports'] = [self._port(p) for p in data['exposed_ports']]
        return data

    @staticmethod
    def _port(value: Any) -> Any:
        if isinstance(value, str):
            value = value.split('/', 1)[0]
            if value.isdigit():
                return int(value)
        return value

    def from_dockerfile(self, dockerfile_path: str) -> BuildRecipe:
        """
        Recovers a recipe from a Dockerfile laid out like the ones the
        renderer writes. Instructions the recipe cannot express are logged
        and ignored.

        :param dockerfile_path: Path to the Dockerfile.
        :return: The recovered recipe.
        """
        if not os.path.isfile(dockerfile_path):
            raise RecipeError(f"Dockerfile not found: {dockerfile_path}")
        instructions = DockerfileParser().parse(dockerfile_path)

        data: Dict[str, Any] = {}
        env: Dict[str, str] = {}
        ports: List[int] = []

        for inst in instructions:
            cmd = inst.instruction
            args = inst.arguments
            if cmd == "FROM" and args:
                data['base_image'] = args[0].split()[0]
            elif cmd == "WORKDIR" and args:
                data['working_directory'] = args[0]
            elif cmd == "ENV":
                for arg in args:
                    if '=' in arg:
                        k, v = arg.split('=', 1)
                        env[k] = v
            elif cmd == "EXPOSE":
                for arg in args:
                    port = self._port(arg)
                    if isinstance(port, int):
                        ports.append(port)
            elif cmd == "CMD":
                try:
                    data['command'] = args if inst.exec_form else shlex.split(inst.text)
                except ValueError as e:
                    raise RecipeError(f"{dockerfile_path}:{inst.line}: CMD: {e}") from e
            elif cmd == "RUN":
                self.scan_run(inst.text, data)
            elif cmd == "COPY":
                if len(args) == 2 and args[0] != "." and 'dependency_manifest' not in data:
                    data['dependency_manifest'] = args[0]
            elif cmd == "LABEL":
                labels = data.setdefault('labels', {})
                for arg in args:
                    if '=' in arg:
                        k, v = arg.split('=', 1)
                        labels[k] = v
            else:
                logger.warning("Ignoring %s at line %d: not expressible in a recipe", cmd, inst.line)

        if env:
            data['environment'] = env
        if ports:
            data['exposed_ports'] = ports
        return self.from_mapping(data, dockerfile_path)

    @staticmethod
    def scan_run(script: str, data: Dict[str, Any]):
        """Pulls package lists, key URL and repository line out of a RUN script."""
        installs = re.findall(r'apt-get install(?:\s+-\S+)*\s+((?:[A-Za-z0-9][\w.+-]*\s*)+)', script)
        if installs:
            utilities = installs[0].split()
            data['system_packages'] = utilities
            if len(installs) > 1:
                browser = installs[-1].split()
                if browser:
                    data['browser_package'] = browser[0]

        key = re.search(r'wget\s+(?:-\S*\s+)*(https?://\S+)', script)
        if key:
            data['signing_key_url'] = key.group(1)

        repo = re.search(r'echo\s+"?((?:deb|deb-src)\s[^"]+?)"?\s*>>\s*(\S+?)[\'"]?(?:\s|$)', script)
        if repo:
            data['repository_line'] = repo.group(1).strip()
            data['repository_list'] = repo.group(2)
