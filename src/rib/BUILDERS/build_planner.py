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
Planning of build steps and their layer cache keys.

A step's key covers its parent's key, its own instruction text and, for
COPY, the content of the files it copies. A change therefore invalidates
the changed step and everything after it, never anything before.
"""
import logging
import os
from typing import List, Optional, Sequence

from ..errors import ContextError
from ..MODELS.build_recipe import BuildRecipe
from ..MODELS.build_step import BuildPlan, BuildStep
from ..PARSERS.dockerfile_parser import DockerfileParser
from ..UTILS.hashing import digest_bytes, digest_tree, list_context_files
from .dockerfile_renderer import DockerfileRenderer

logger = logging.getLogger(__name__)


class BuildPlanner:
    """
    Turns a recipe and a build context into an ordered BuildPlan.
    """
    def __init__(self, renderer: Optional[DockerfileRenderer] = None):
        self.renderer = renderer or DockerfileRenderer()
        self.parser = DockerfileParser()

    def plan(self, recipe: BuildRecipe, context_dir: str, exclude: Sequence[str] = ()) -> BuildPlan:
        """
        Renders the recipe and computes every step's cache key.

        :param recipe: The recipe.
        :param context_dir: The build context directory.
        :param exclude: Context-relative directories left out of COPY digests.
        :return: The plan, all steps pending.
        :raises ContextError: If a COPY source is missing from the context.
        """
        dockerfile = self.renderer.render(recipe)
        return self.plan_dockerfile(dockerfile, context_dir, exclude)

    def plan_dockerfile(self, dockerfile: str, context_dir: str, exclude: Sequence[str] = ()) -> BuildPlan:
        """
        Computes steps and cache keys for arbitrary Dockerfile text.
        """
        context_files = None
        steps = []
        parent = ""

        for index, inst in enumerate(self.parser.parse_from_string(dockerfile)):
            inputs = ""
            if inst.instruction in ("COPY", "ADD"):
                if context_files is None:
                    context_files = list_context_files(context_dir, exclude)
                inputs = self._copy_digest(inst.arguments, context_dir, context_files)

            key = digest_bytes(parent, inst.instruction, *inst.arguments, inputs)
            steps.append(BuildStep(
                index=index,
                instruction=inst.instruction,
                arguments=inst.arguments,
                raw=inst.raw,
                inputs_digest=inputs,
                cache_key=key,
            ))
            parent = key

        logger.debug("Planned %d steps", len(steps))
        return BuildPlan(steps=steps, dockerfile=dockerfile)

    def _copy_digest(self, arguments: List[str], context_dir: str, context_files: List[str]) -> str:
        # Flags like --chown=... precede the sources; the last argument is the destination
        paths = [a for a in arguments if not a.startswith("--")]
        if len(paths) < 2:
            raise ContextError(f"COPY needs a source and a destination: {' '.join(arguments)}")

        selected = set()
        for source in paths[:-1]:
            matched = self._select(source, context_files)
            if not matched and os.path.normpath(source) != ".":
                raise ContextError(
                    f"COPY source not found in build context: {source}",
                    {"context": context_dir, "source": source},
                )
            selected.update(matched)
        return digest_tree(context_dir, selected)

    @staticmethod
    def _select(source: str, context_files: List[str]) -> List[str]:
        source = os.path.normpath(source).replace(os.sep, "/").lstrip("/")
        if source in (".", ""):
            return list(context_files)
        prefix = source.rstrip("/") + "/"
        return [f for f in context_files if f == source or f.startswith(prefix)]
