"""
Unit tests for recipe loading.
"""
import pytest

from rib.errors import RecipeError
from rib.MODELS.build_recipe import BuildRecipe
from rib.PARSERS.recipe_parser import RecipeParser


def test_empty_recipe_is_the_default():
    recipe = RecipeParser(context={}).parse_from_string("")
    assert recipe == BuildRecipe.default()


def test_overrides_and_conveniences():
    content = """
name: sbd-staging
base_image: python:3.11-slim
system_packages: [wget, gnupg, unzip, curl]
environment:
  PORT: 8080
  LOG_LEVEL: debug
exposed_ports: ["8080/tcp"]
command: python -u sbd_server.py
"""
    recipe = RecipeParser(context={}).parse_from_string(content)
    assert recipe.name == "sbd-staging"
    assert recipe.system_packages == ["wget", "gnupg", "unzip", "curl"]
    assert recipe.environment == {"PORT": "8080", "LOG_LEVEL": "debug"}
    assert recipe.exposed_ports == [8080]
    assert recipe.command == ["python", "-u", "sbd_server.py"]
    assert recipe.declared_port == 8080


def test_environment_as_list():
    recipe = RecipeParser(context={}).parse_from_string("environment: [PORT=10000, TZ=Europe/London]")
    assert recipe.environment == {"PORT": "10000", "TZ": "Europe/London"}


def test_interpolation():
    parser = RecipeParser(context={"PY": "3.10", "TAG": "stable"})
    recipe = parser.parse_from_string(
        "base_image: python:${PY}-slim\nname: sbd-$TAG\nlabels:\n  cost: $$5\n"
    )
    assert recipe.base_image == "python:3.10-slim"
    assert recipe.name == "sbd-stable"
    assert recipe.labels == {"cost": "$5"}


def test_interpolation_missing_variable():
    with pytest.raises(RecipeError, match="PY"):
        RecipeParser(context={}).parse_from_string("base_image: python:${PY}-slim")


def test_unknown_key():
    with pytest.raises(RecipeError, match="unknown recipe keys: browser"):
        RecipeParser(context={}).parse_from_string("browser: chromium")


def test_not_a_mapping():
    with pytest.raises(RecipeError, match="mapping"):
        RecipeParser(context={}).parse_from_string("- python:3.9-slim")


def test_invalid_yaml():
    with pytest.raises(RecipeError, match="invalid YAML"):
        RecipeParser(context={}).parse_from_string("name: [unclosed")


def test_validation_errors_are_recipe_errors():
    with pytest.raises(RecipeError, match="exposed_ports"):
        RecipeParser(context={}).parse_from_string("exposed_ports: [70000]")


def test_missing_file(tmp_path):
    with pytest.raises(RecipeError, match="not found"):
        RecipeParser(context={}).parse(str(tmp_path / "rib.yml"))


def test_from_dockerfile_recovers_default_recipe(original_dockerfile):
    recipe = RecipeParser(context={}).from_dockerfile(original_dockerfile)
    assert recipe == BuildRecipe.default()


def test_from_dockerfile_missing(tmp_path):
    with pytest.raises(RecipeError):
        RecipeParser(context={}).from_dockerfile(str(tmp_path / "Dockerfile"))


def test_scan_run():
    found = {}
    RecipeParser.scan_run(
        "apt-get update && apt-get install -y --no-install-recommends curl ca-certificates "
        "&& wget -qO- https://example.org/key.asc | apt-key add - "
        "&& echo \"deb https://example.org/apt stable main\" >> /etc/apt/sources.list.d/example.list "
        "&& apt-get install -y chromium",
        found,
    )
    assert found == {
        "system_packages": ["curl", "ca-certificates"],
        "browser_package": "chromium",
        "signing_key_url": "https://example.org/key.asc",
        "repository_line": "deb https://example.org/apt stable main",
        "repository_list": "/etc/apt/sources.list.d/example.list",
    }
