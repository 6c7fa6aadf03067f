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
Command Line Interface for RIB.
"""
import json
import os

import click
import yaml

from ..errors import RecipeError, RibError
from ..BUILDERS.dockerfile_renderer import DockerfileRenderer
from ..BUILDERS.image_builder import ImageBuilder
from ..CONFIG.settings import BuilderSettings
from ..MODELS.build_recipe import BuildRecipe
from ..MODELS.build_step import StepStatus
from ..PARSERS.manifest_parser import ManifestParser
from ..PARSERS.recipe_parser import RecipeParser
from ..REGISTRY.layer_cache import LayerCache
from ..RUNNERS.docker_backend import DockerBackend
from ..UTILS.logging_setup import configure_logging
from ..VERIFY.image_verifier import verify_image

DEFAULT_RECIPE = 'rib.yml'


def _fail(error: RibError):
    click.echo(f"Error: {error.message}", err=True)
    raise SystemExit(1)


def _os_error(error: OSError) -> RibError:
    if error.filename:
        return RibError(f"Cannot access {error.filename}: {error.strerror}")
    return RibError(str(error))


def _load_recipe(ctx) -> BuildRecipe:
    path = ctx.obj['recipe_path']
    if os.path.exists(path):
        return RecipeParser().parse(path)
    if path != DEFAULT_RECIPE:
        raise RecipeError(f"Recipe file not found: {path}")
    return BuildRecipe.default()


@click.group()
@click.option('--recipe', '-r', default=DEFAULT_RECIPE, help='Recipe file path')
@click.option('--context', '-C', 'context_dir', default='.', help='Build context directory')
@click.option('--env-file', default='.env', help='Builder settings file')
@click.option('--verbose', '-v', is_flag=True, help='Log debug output')
@click.pass_context
def cli(ctx, recipe, context_dir, env_file, verbose):
    """
    RIB - Runtime Image Builder.

    Builds and verifies the container image of the bin-collection server.
    """
    ctx.ensure_object(dict)
    ctx.obj['recipe_path'] = recipe
    ctx.obj['context_dir'] = context_dir
    try:
        settings = BuilderSettings.load(env_file=env_file)
    except RibError as e:
        _fail(e)
    configure_logging("DEBUG" if verbose else settings.log_level)
    ctx.obj['settings'] = settings


@cli.command()
@click.option('--out', '-o', default=None, help='Write the Dockerfile here instead of stdout')
@click.pass_context
def render(ctx, out):
    """Render the recipe as a Dockerfile."""
    try:
        recipe = _load_recipe(ctx)
        renderer = DockerfileRenderer()
        if out:
            renderer.write(recipe, out)
            click.echo(f"Dockerfile written to {out}")
        else:
            click.echo(renderer.render(recipe), nl=False)
    except RibError as e:
        _fail(e)
    except OSError as e:
        _fail(_os_error(e))


@cli.command()
@click.pass_context
def plan(ctx):
    """Show build steps and which layers are cached."""
    try:
        recipe = _load_recipe(ctx)
        builder = ImageBuilder(settings=ctx.obj['settings'])
        build_plan = builder.dry_run(recipe, ctx.obj['context_dir'])
    except RibError as e:
        _fail(e)
    except OSError as e:
        _fail(_os_error(e))

    click.echo(f"{'STEP':6} {'STATUS':8} INSTRUCTION")
    click.echo("-" * 60)
    for step in build_plan.steps:
        status = step.status.value if step.status == StepStatus.CACHED else "rebuild"
        click.echo(f"{step.index + 1:<6} {status:8} {step.description[:70]}")


@cli.command()
@click.option('--tag', '-t', default=None, help='Image tag (default: <name>:latest)')
@click.option('--no-cache', is_flag=True, help='Rebuild every step')
@click.option('--verify', 'run_verify', is_flag=True, help='Verify the image after building')
@click.pass_context
def build(ctx, tag, no_cache, run_verify):
    """Build the image."""
    settings = ctx.obj['settings']
    try:
        recipe = _load_recipe(ctx)
        builder = ImageBuilder(settings=settings)
        result = builder.build(recipe, ctx.obj['context_dir'], tag=tag, no_cache=no_cache)
    except RibError as e:
        _fail(e)
    except OSError as e:
        _fail(_os_error(e))

    for step in result.plan.steps:
        click.echo(f"[{step.index + 1}/{len(result.plan.steps)}] {step.status.value:8} {step.description[:70]}")

    if not result.success:
        click.echo(f"Build failed: {result.error}", err=True)
        raise SystemExit(1)

    click.echo(f"Built {result.image.name} ({result.cached_steps} cached, {result.built_steps} built)")
    if result.image.image_id:
        click.echo(result.image.image_id)

    if run_verify:
        ctx.invoke(verify, tag=result.image.name, strict=True)


@cli.command()
@click.option('--tag', '-t', default=None, help='Image tag (default: <name>:latest)')
@click.option('--strict', is_flag=True, help='Exit with an error if a check fails')
@click.pass_context
def verify(ctx, tag, strict):
    """Check a built image against the recipe."""
    settings = ctx.obj['settings']
    try:
        recipe = _load_recipe(ctx)
        manifest = _context_manifest(recipe, ctx.obj['context_dir'])
        backend = DockerBackend(binary=settings.docker_binary, timeout=settings.build_timeout)
        report = verify_image(backend, tag or f"{recipe.name}:latest", recipe, manifest, strict=False)
    except RibError as e:
        _fail(e)
    except OSError as e:
        _fail(_os_error(e))

    for check in report.checks:
        mark = "SKIP" if check.skipped else ("PASS" if check.passed else "FAIL")
        click.echo(f"{mark:5} {check.name:14} {check.detail}")

    if strict and not report.passed:
        raise SystemExit(1)


def _context_manifest(recipe, context_dir):
    """Parses the recipe's manifest from the context, if it is there."""
    path = os.path.join(context_dir, recipe.dependency_manifest)
    if not os.path.isfile(path):
        return None
    return ManifestParser().parse(path)


@cli.command()
@click.argument('dockerfile', type=click.Path())
@click.option('--name', '-n', default='image', help='Name to give the image')
@click.option('--as-recipe', is_flag=True, help='Print a recipe YAML instead of the image model')
@click.pass_context
def inspect(ctx, dockerfile, name, as_recipe):
    """Describe an existing Dockerfile."""
    try:
        if as_recipe:
            recipe = RecipeParser().from_dockerfile(dockerfile)
            click.echo(yaml.safe_dump(recipe.model_dump(), sort_keys=False), nl=False)
        else:
            image = ImageBuilder(settings=ctx.obj['settings']).inspect_dockerfile(dockerfile, name)
            click.echo(json.dumps(image.model_dump(), indent=2))
    except RibError as e:
        _fail(e)
    except OSError as e:
        _fail(_os_error(e))


@cli.group()
@click.pass_context
def cache(ctx):
    """Manage the local layer index."""
    try:
        ctx.obj['cache'] = LayerCache(ctx.obj['settings'].cache_dir)
    except OSError as e:
        _fail(_os_error(e))


@cache.command('ls')
@click.pass_context
def cache_ls(ctx):
    """List recorded layers"""
    layers = ctx.obj['cache'].list_layers()
    click.echo(f"{'KEY':20} {'INSTRUCTION':12} {'IMAGE':25} CREATED")
    for layer in layers:
        key = layer.cache_key.split(":", 1)[-1][:16]
        click.echo(f"{key:20} {layer.instruction:12} {layer.image:25} {layer.created}")


@cache.command('prune')
@click.option('--days', type=int, default=None, help='Remove layers older than this many days')
@click.option('--image', default=None, help='Remove layers recorded for this image tag')
@click.pass_context
def cache_prune(ctx, days, image):
    """Remove old layer records"""
    if days is None and image is None:
        click.echo("Nothing to prune: give --days or --image.")
        return
    removed = ctx.obj['cache'].prune(max_age_days=days, image=image)
    click.echo(f"Removed {removed} layer records.")


@cache.command('clear')
@click.pass_context
def cache_clear(ctx):
    """Forget all layer records"""
    removed = ctx.obj['cache'].clear()
    click.echo(f"Removed {removed} layer records.")


def main():
    """
    Main entry point for the CLI.
    """
    cli(obj={})


if __name__ == '__main__':
    main()
