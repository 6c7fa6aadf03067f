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
Pre-flight checks of a build context against its recipe.
Every check runs before the first build step, so a bad manifest or a
missing file stops the build before anything is installed or copied.
"""
import logging
import os

from ..errors import ContextError, ManifestError, RecipeError
from ..MODELS.build_recipe import BuildRecipe
from ..PARSERS.manifest_parser import DependencyManifest, ManifestParser
from ..REGISTRY.base_image import BaseImage
from ..RUNNERS.entrypoint_executor import EntrypointExecutor
from ..UTILS.hashing import is_ignored, load_ignore_patterns

logger = logging.getLogger(__name__)


class ContextValidator:
    """
    Validates that a build context can satisfy a recipe.
    """
    def __init__(self, check_entry_file: bool = True):
        """
        :param check_entry_file: Require the script named by the command to
                                 exist in the context.
        """
        self.check_entry_file = check_entry_file
        self.manifest_parser = ManifestParser()
        self.entrypoints = EntrypointExecutor()

    def validate(self, recipe: BuildRecipe, context_dir: str) -> DependencyManifest:
        """
        Runs all checks.

        :param recipe: The recipe.
        :param context_dir: The build context directory.
        :return: The parsed dependency manifest.
        :raises RecipeError: If the recipe is inconsistent.
        :raises ContextError: If the context or a required file is missing.
        :raises ManifestError: If the manifest is missing or malformed.
        """
        self.check_recipe(recipe)

        if not os.path.isdir(context_dir):
            raise ContextError(f"Build context not found: {context_dir}")

        manifest = self.check_manifest(recipe, context_dir)

        if self.check_entry_file:
            self.check_entry(recipe, context_dir)

        logger.info("Build context %s is valid (%d requirements)", context_dir, len(manifest.requirements))
        return manifest

    @staticmethod
    def check_recipe(recipe: BuildRecipe):
        try:
            BaseImage.parse(recipe.base_image)
        except ValueError as e:
            raise RecipeError(f"Invalid base image: {e}") from e

        port = recipe.environment.get("PORT")
        if port is not None:
            if not port.isdecimal():
                raise RecipeError(f"PORT must be a number, got {port!r}")
            if not 1 <= int(port) <= 65535:
                raise RecipeError(f"PORT out of range: {port}")
            if recipe.exposed_ports and int(port) not in recipe.exposed_ports:
                raise RecipeError(
                    f"PORT={port} is not among the exposed ports {recipe.exposed_ports}"
                )

    def check_manifest(self, recipe: BuildRecipe, context_dir: str) -> DependencyManifest:
        path = os.path.join(context_dir, recipe.dependency_manifest)
        rel = os.path.relpath(path, context_dir)
        if rel.startswith(".."):
            raise ContextError(f"Dependency manifest is outside the build context: {recipe.dependency_manifest}")
        if is_ignored(rel, load_ignore_patterns(context_dir)):
            raise ContextError(f"Dependency manifest is excluded by .dockerignore: {rel}")
        # Raises ManifestError when missing or malformed
        manifest = self.manifest_parser.parse(path)
        if manifest.included_files:
            # Only the manifest itself is copied before the install step
            included = os.path.relpath(manifest.included_files[0], context_dir)
            raise ManifestError(
                f"{recipe.dependency_manifest} includes {included}, which is not in the image at install time",
                path=path,
            )
        local = self._local_references(manifest)
        if local:
            raise ManifestError(
                f"{recipe.dependency_manifest} refers to {local}, which is not in the image at install time",
                path=path,
            )
        return manifest

    def check_entry(self, recipe: BuildRecipe, context_dir: str):
        entry = self.entrypoints.resolve_entry_file(recipe.command, recipe.working_directory, context_dir)
        if entry is None:
            return
        rel = os.path.relpath(entry, context_dir)
        if not os.path.isfile(entry):
            raise ContextError(
                f"Entry file {rel} named by the command is not in the build context",
                {"command": recipe.command},
            )
        if is_ignored(rel, load_ignore_patterns(context_dir)):
            raise ContextError(f"Entry file {rel} is excluded by .dockerignore")

    @staticmethod
    def _local_references(manifest: DependencyManifest):
        """Returns the first constraint file or editable path that is a local file."""
        for option in manifest.options:
            tokens = option.replace("=", " ", 1).split()
            if tokens[0] in ("-c", "--constraint") and len(tokens) > 1 and "://" not in tokens[1]:
                return tokens[1]
        for req in manifest.requirements:
            if req.url and "://" not in req.url:
                return req.url
        return None
