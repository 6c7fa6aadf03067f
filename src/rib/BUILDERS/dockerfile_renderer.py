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
Renders a build recipe as a Dockerfile.
"""
import json
import logging
import os
import re

from jinja2 import Environment, StrictUndefined

from ..errors import RecipeError
from ..MODELS.build_recipe import BuildRecipe
from ..REGISTRY.base_image import BaseImage

logger = logging.getLogger(__name__)

# The manifest is copied and installed before the source tree so that
# source-only changes reuse the package layers.
DOCKERFILE_TEMPLATE = """\
# Use an official Python runtime as a parent image
FROM {{ base_image }}

# Install system dependencies (browser + utilities)
RUN apt-get update && apt-get install -y \\
{%- for pkg in system_packages %}
    {{ pkg }} \\
{%- endfor %}
    && wget -q -O - {{ signing_key_url }} | apt-key add - \\
    && sh -c 'echo "{{ repository_line }}" >> {{ repository_list }}' \\
    && apt-get update \\
    && apt-get install -y {{ browser_package }} \\
    && rm -rf /var/lib/apt/lists/*

# Set the working directory
WORKDIR {{ working_directory }}

# Copy requirements and install Python dependencies
COPY {{ dependency_manifest }} .
RUN pip install --no-cache-dir -r {{ manifest_name }}

# Copy the rest of the application code
COPY . .
{% if labels %}
{%- for key, value in labels.items() %}
LABEL {{ key }}={{ value | dockerquote }}
{%- endfor %}
{% endif %}
{%- if environment %}
# Runtime configuration
{%- for key, value in environment.items() %}
ENV {{ key }}={{ value | dockerquote }}
{%- endfor %}
{%- endif %}
{%- for port in exposed_ports %}
EXPOSE {{ port }}
{%- endfor %}

# Command to run the application
CMD {{ command }}
"""


PLAIN_VALUE = re.compile(r'^[\w./:@%+,=-]+$')


def dockerquote(value: str) -> str:
    """Leaves simple ENV/LABEL values bare and double-quotes the rest."""
    value = str(value)
    if PLAIN_VALUE.match(value):
        return value
    return json.dumps(value)


class DockerfileRenderer:
    """
    Turns a BuildRecipe into Dockerfile text. Output is deterministic for a
    given recipe, so rendered files can be compared byte for byte.
    """
    def __init__(self):
        env = Environment(undefined=StrictUndefined, keep_trailing_newline=True, autoescape=False)
        env.filters["dockerquote"] = dockerquote
        self.template = env.from_string(DOCKERFILE_TEMPLATE)

    def render(self, recipe: BuildRecipe) -> str:
        """
        Renders the Dockerfile.

        :param recipe: The recipe.
        :return: Dockerfile content.
        :raises RecipeError: If the base image cannot provide apt-get.
        """
        base = BaseImage.parse(recipe.base_image)
        if not base.uses_apt:
            raise RecipeError(f"Base image {recipe.base_image} has no apt-get; use a Debian based image")

        return self.template.render(
            base_image=recipe.base_image,
            system_packages=recipe.system_packages,
            signing_key_url=recipe.signing_key_url,
            repository_line=recipe.repository_line,
            repository_list=recipe.repository_list,
            browser_package=recipe.browser_package,
            working_directory=recipe.working_directory,
            dependency_manifest=recipe.dependency_manifest,
            manifest_name=os.path.basename(recipe.dependency_manifest),
            labels=recipe.labels,
            environment=recipe.environment,
            exposed_ports=recipe.exposed_ports,
            command=json.dumps(recipe.command),
        )

    def write(self, recipe: BuildRecipe, output_path: str) -> str:
        """
        Renders the Dockerfile and writes it to disk.

        :param recipe: The recipe.
        :param output_path: Destination file.
        :return: The path written.
        """
        content = self.render(recipe)
        directory = os.path.dirname(output_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(output_path, 'w', encoding='utf-8') as f:
            f.write(content)
        logger.info("Wrote Dockerfile to %s", output_path)
        return output_path
