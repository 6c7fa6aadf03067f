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
Builders for turning recipes into runtime images.
"""
import logging
import os
from typing import List, Optional

from ..errors import BuildError
from ..CONFIG.settings import BuilderSettings
from ..MODELS.build_recipe import BuildRecipe
from ..MODELS.build_step import BuildPlan, BuildResult, BuildStep, StepStatus
from ..MODELS.container_image import ContainerImage, LayerRecord
from ..PARSERS.dockerfile_parser import DockerfileParser
from ..PARSERS.manifest_parser import DependencyManifest, ManifestParser
from ..PARSERS.recipe_parser import RecipeParser
from ..REGISTRY.base_image import BaseImage
from ..REGISTRY.layer_cache import LayerCache
from ..RUNNERS.docker_backend import BuildOutcome, DockerBackend, normalize_instruction
from .build_planner import BuildPlanner
from .context_validator import ContextValidator
from .dockerfile_renderer import DockerfileRenderer

logger = logging.getLogger(__name__)


class ImageBuilder:
    """
    Validates a build context, renders and plans the recipe, drives the
    container tool and records the layers it produced.
    """
    def __init__(self,
                 settings: Optional[BuilderSettings] = None,
                 backend: Optional[DockerBackend] = None,
                 cache: Optional[LayerCache] = None):
        """
        Initializes the ImageBuilder.

        :param settings: Builder settings; loaded from the environment when omitted.
        :param backend: Container tool adapter.
        :param cache: Layer index.
        """
        self.settings = settings or BuilderSettings.load()
        self.backend = backend or DockerBackend(
            binary=self.settings.docker_binary, timeout=self.settings.build_timeout
        )
        self.cache = cache or LayerCache(self.settings.cache_dir)
        self.renderer = DockerfileRenderer()
        self.planner = BuildPlanner(self.renderer)
        self.validator = ContextValidator(check_entry_file=self.settings.check_entry_file)

    def dry_run(self, recipe: BuildRecipe, context_dir: str) -> BuildPlan:
        """
        Plans a build and marks the steps whose layers are already recorded.
        Nothing is executed.

        :param recipe: The recipe.
        :param context_dir: The build context directory.
        :return: The plan.
        """
        self.validator.validate(recipe, context_dir)
        plan = self.planner.plan(recipe, context_dir, self._builder_dirs(context_dir))
        for step in plan.steps:
            if self.cache.has_layer(step.cache_key):
                step.status = StepStatus.CACHED
        return plan

    def build(self,
              recipe: BuildRecipe,
              context_dir: str,
              tag: Optional[str] = None,
              no_cache: bool = False) -> BuildResult:
        """
        Builds the image. Validation problems raise before any step runs;
        a failing step is reported in the returned result.

        :param recipe: The recipe.
        :param context_dir: The build context directory.
        :param tag: Image tag; defaults to "<recipe name>:latest".
        :param no_cache: Rebuild every step.
        :return: The BuildResult.
        """
        tag = tag or f"{recipe.name}:latest"
        manifest = self.validator.validate(recipe, context_dir)
        plan = self.planner.plan(recipe, context_dir, self._builder_dirs(context_dir))

        dockerfile_path = os.path.join(self.settings.output_dir, recipe.name, "Dockerfile")
        os.makedirs(os.path.dirname(dockerfile_path), exist_ok=True)
        with open(dockerfile_path, 'w', encoding='utf-8') as f:
            f.write(plan.dockerfile)

        logger.info("Building %s from %s (%d steps)", tag, context_dir, len(plan.steps))
        outcome = self.backend.build(
            dockerfile_path, context_dir, tag, labels=recipe.labels, no_cache=no_cache
        )
        failed_index = self._apply_outcome(plan, outcome, no_cache)

        # Steps before a failure still left layers in the tool's cache
        self.cache.record_many(
            [(s.cache_key, s.instruction) for s in plan.steps
             if s.status in (StepStatus.BUILT, StepStatus.CACHED)],
            image=tag,
        )

        if failed_index is not None:
            step = plan.steps[failed_index]
            message = f"Step {failed_index + 1}/{len(plan.steps)} failed: {step.description}"
            logger.error("%s (exit code %d)", message, outcome.exit_code)
            return BuildResult(success=False, plan=plan, failed_step=failed_index,
                               error=message, output=outcome.output, exit_code=outcome.exit_code)

        logger.info("Built %s: %d steps cached, %d built",
                    tag, plan.count(StepStatus.CACHED), plan.count(StepStatus.BUILT))
        image = self._image_from_plan(recipe, tag, plan, manifest, outcome.image_id)
        return BuildResult(success=True, plan=plan, image=image, exit_code=0)

    def _builder_dirs(self, context_dir: str) -> List[str]:
        """
        Returns the builder's own directories that lie inside the context.
        Their contents change between runs and must not enter cache keys.
        """
        context = os.path.realpath(context_dir)
        inside = []
        for directory in (self.settings.output_dir, self.settings.cache_dir):
            rel = os.path.relpath(os.path.realpath(directory), context)
            if rel != "." and rel != ".." and not rel.startswith(".." + os.sep):
                inside.append(rel)
        return inside

    def _apply_outcome(self, plan: BuildPlan, outcome: BuildOutcome, no_cache: bool) -> Optional[int]:
        """
        Sets each step's status from the tool's report. Returns the index of
        the failed step, if any.
        """
        reported = bool(outcome.started_instructions)
        failed_index = None

        if not outcome.ok:
            failed_index = self._find_step(plan, outcome.failed_instruction)
            if failed_index is None and reported:
                started = [s.index for s in plan.steps if self._was_started(s, outcome)]
                failed_index = started[-1] if started else 0
            elif failed_index is None:
                # Nothing attributable in the output: blame the first step
                # without a recorded layer
                failed_index = next(
                    (s.index for s in plan.steps if not self.cache.has_layer(s.cache_key)), 0
                )

        for step in plan.steps:
            if failed_index is not None and step.index > failed_index:
                step.status = StepStatus.SKIPPED
            elif failed_index is not None and step.index == failed_index:
                step.status = StepStatus.FAILED
            elif reported and self._was_started(step, outcome):
                cached = any(self._same(step, text) for text in outcome.cached_instructions)
                step.status = StepStatus.CACHED if cached else StepStatus.BUILT
            elif not no_cache and self.cache.has_layer(step.cache_key):
                step.status = StepStatus.CACHED
            else:
                step.status = StepStatus.BUILT
        return failed_index

    def _find_step(self, plan: BuildPlan, text: Optional[str]) -> Optional[int]:
        if not text:
            return None
        for step in plan.steps:
            if self._same(step, text):
                return step.index
        return None

    def _was_started(self, step: BuildStep, outcome: BuildOutcome) -> bool:
        return any(self._same(step, text) for text in outcome.started_instructions)

    @staticmethod
    def _same(step: BuildStep, text: str) -> bool:
        text = normalize_instruction(text)
        if step.instruction == "FROM":
            # The tool reports the resolved reference, e.g. docker.io/library/python:3.9-slim@sha256:...
            base = BaseImage.parse(step.arguments[0]).full_name if step.arguments else ""
            reported = text[len("FROM "):].split("@", 1)[0] if text.startswith("FROM ") else ""
            try:
                return bool(reported) and BaseImage.parse(reported).full_name == base
            except ValueError:
                return False
        return text in (normalize_instruction(step.description), normalize_instruction(step.raw))

    def _image_from_plan(self, recipe: BuildRecipe, tag: str, plan: BuildPlan,
                         manifest: DependencyManifest, image_id: Optional[str]) -> ContainerImage:
        base = BaseImage.parse(recipe.base_image)
        return ContainerImage(
            name=tag,
            base_image=recipe.base_image,
            image_id=image_id,
            python_version=base.python_version,
            pip_requirements=[str(r) for r in manifest.requirements],
            system_dependencies=recipe.all_packages,
            env_vars=dict(recipe.environment),
            working_directory=recipe.working_directory,
            exposed_ports=list(recipe.exposed_ports),
            cmd=list(recipe.command),
            run_instructions=[s.arguments[0] for s in plan.steps if s.instruction == "RUN" and s.arguments],
            layers=[
                LayerRecord(cache_key=s.cache_key, instruction=s.instruction)
                for s in plan.steps if s.creates_layer
            ],
            labels=dict(recipe.labels),
        )

    def inspect_dockerfile(self, dockerfile_path: str, image_name: str) -> ContainerImage:
        """
        Translates an existing Dockerfile into a ContainerImage without
        building it. Requirements are read from the manifest the Dockerfile
        installs with pip, when that file sits next to the Dockerfile.

        :param dockerfile_path: Path to the Dockerfile.
        :param image_name: Name to assign to the resulting image.
        :return: A ContainerImage instance.
        """
        if not os.path.isfile(dockerfile_path):
            raise BuildError(f"Dockerfile not found: {dockerfile_path}")
        instructions = DockerfileParser().parse(dockerfile_path)
        context_dir = os.path.dirname(os.path.abspath(dockerfile_path))

        image = ContainerImage(name=image_name, base_image="")

        for inst in instructions:
            cmd = inst.instruction
            args = inst.arguments

            if cmd == "FROM" and args:
                image.base_image = args[0].split()[0]
                try:
                    image.python_version = BaseImage.parse(image.base_image).python_version
                except ValueError:
                    image.python_version = None
            elif cmd == "WORKDIR" and args:
                image.working_directory = args[0]
            elif cmd == "ENV":
                for arg in args:
                    if '=' in arg:
                        k, v = arg.split('=', 1)
                        image.env_vars[k] = v
            elif cmd == "EXPOSE":
                for arg in args:
                    port = arg.split('/', 1)[0]
                    if port.isdigit():
                        image.exposed_ports.append(int(port))
            elif cmd == "LABEL":
                for arg in args:
                    if '=' in arg:
                        k, v = arg.split('=', 1)
                        image.labels[k] = v
            elif cmd == "RUN":
                script = inst.text
                image.run_instructions.append(script)
                found = {}
                RecipeParser.scan_run(script, found)
                for pkg in found.get('system_packages', []) + ([found['browser_package']] if 'browser_package' in found else []):
                    if pkg not in image.system_dependencies:
                        image.system_dependencies.append(pkg)
                image.pip_requirements.extend(self._pip_requirements(script, context_dir))
            elif cmd == "CMD":
                image.cmd = args
            elif cmd == "ENTRYPOINT":
                image.entrypoint = args

        return image

    @staticmethod
    def _pip_requirements(script: str, context_dir: str):
        """Requirements named by 'pip install -r <file>' in a RUN script."""
        tokens = script.split()
        found = []
        for i, token in enumerate(tokens[:-1]):
            if token in ("-r", "--requirement") and "pip" in tokens[:i]:
                path = os.path.join(context_dir, tokens[i + 1])
                if os.path.isfile(path):
                    manifest = ManifestParser().parse(path)
                    found.extend(str(r) for r in manifest.requirements)
                else:
                    logger.warning("Manifest %s named in RUN is not next to the Dockerfile", tokens[i + 1])
        return found
