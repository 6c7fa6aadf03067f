"""
Unit tests for pre-flight checks of a build context.
"""
import os

import pytest

from rib.errors import ContextError, ManifestError, RecipeError
from rib.BUILDERS.context_validator import ContextValidator
from rib.MODELS.build_recipe import BuildRecipe


def write(context, rel_path, content):
    with open(os.path.join(context, rel_path), 'w', encoding='utf-8') as f:
        f.write(content)


def test_valid_context_returns_manifest(build_context):
    manifest = ContextValidator().validate(BuildRecipe.default(), build_context)
    assert manifest.names() == ["requests", "beautifulsoup4", "selenium"]


def test_missing_context(tmp_path):
    with pytest.raises(ContextError, match="not found"):
        ContextValidator().validate(BuildRecipe.default(), str(tmp_path / "nowhere"))


def test_missing_manifest(build_context):
    os.remove(os.path.join(build_context, "requirements.txt"))
    with pytest.raises(ManifestError, match="not found"):
        ContextValidator().validate(BuildRecipe.default(), build_context)


def test_malformed_manifest(build_context):
    write(build_context, "requirements.txt", "requests==2.31.0\nselenium ==\n")
    with pytest.raises(ManifestError) as excinfo:
        ContextValidator().validate(BuildRecipe.default(), build_context)
    assert excinfo.value.line == 2


def test_manifest_with_include_is_rejected(build_context):
    write(build_context, "base.txt", "requests==2.31.0\n")
    write(build_context, "requirements.txt", "-r base.txt\n")
    with pytest.raises(ManifestError, match="base.txt"):
        ContextValidator().validate(BuildRecipe.default(), build_context)


def test_manifest_outside_context(build_context):
    recipe = BuildRecipe(dependency_manifest="../requirements.txt")
    with pytest.raises(ContextError, match="outside the build context"):
        ContextValidator().validate(recipe, build_context)


def test_manifest_dockerignored(build_context):
    write(build_context, ".dockerignore", "*.txt\n")
    with pytest.raises(ContextError, match=".dockerignore"):
        ContextValidator().validate(BuildRecipe.default(), build_context)


def test_missing_entry_file(build_context):
    os.remove(os.path.join(build_context, "sbd_server.py"))
    with pytest.raises(ContextError, match="sbd_server.py"):
        ContextValidator().validate(BuildRecipe.default(), build_context)


def test_entry_check_can_be_disabled(build_context):
    os.remove(os.path.join(build_context, "sbd_server.py"))
    ContextValidator(check_entry_file=False).validate(BuildRecipe.default(), build_context)


def test_entry_file_dockerignored(build_context):
    write(build_context, ".dockerignore", "sbd_server.py\n")
    with pytest.raises(ContextError, match="excluded"):
        ContextValidator().validate(BuildRecipe.default(), build_context)


def test_module_command_has_no_entry_file(build_context):
    os.remove(os.path.join(build_context, "sbd_server.py"))
    recipe = BuildRecipe(command=["python", "-m", "sbd_server"])
    ContextValidator().validate(recipe, build_context)


@pytest.mark.parametrize("environment, ports", [
    ({"PORT": "8080"}, [10000]),
    ({"PORT": "ten"}, [10000]),
])
def test_port_must_be_exposed(build_context, environment, ports):
    recipe = BuildRecipe(environment=environment, exposed_ports=ports)
    with pytest.raises(RecipeError, match="PORT"):
        ContextValidator().validate(recipe, build_context)


@pytest.mark.parametrize("port", ["0", "99999"])
def test_port_range_is_checked_without_exposed_ports(build_context, port):
    recipe = BuildRecipe(environment={"PORT": port}, exposed_ports=[])
    with pytest.raises(RecipeError, match="out of range"):
        ContextValidator().validate(recipe, build_context)


@pytest.mark.parametrize("content", [
    "-c constraints.txt\nrequests==2.31.0\n",
    "--constraint=constraints.txt\nrequests==2.31.0\n",
    "-e .\n",
    "-e ./uk_bin_collection\n",
])
def test_local_files_referenced_by_manifest_are_rejected(build_context, content):
    write(build_context, "constraints.txt", "requests<3\n")
    write(build_context, "requirements.txt", content)
    with pytest.raises(ManifestError, match="not in the image at install time"):
        ContextValidator().validate(BuildRecipe.default(), build_context)


def test_remote_constraints_and_vcs_editables_are_allowed(build_context):
    write(build_context, "requirements.txt",
          "-c https://example.org/constraints.txt\n"
          "-e git+https://example.org/ubc.git#egg=uk_bin_collection\n")
    manifest = ContextValidator().validate(BuildRecipe.default(), build_context)
    assert manifest.names() == ["uk-bin-collection"]


def test_versioned_interpreter_entry_file_is_checked(build_context):
    os.remove(os.path.join(build_context, "sbd_server.py"))
    recipe = BuildRecipe(command=["python3.9", "sbd_server.py"])
    with pytest.raises(ContextError, match="sbd_server.py"):
        ContextValidator().validate(recipe, build_context)
