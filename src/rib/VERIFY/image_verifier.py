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
Checks a built image against the recipe it was built from.

Each check runs a throwaway container or reads the image configuration:
interpreter version, installed packages, browser on PATH, PORT variable,
exposed port and the entry point's target file.
"""
import logging
import posixpath
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..errors import RibError, VerificationError
from ..MODELS.build_recipe import BuildRecipe
from ..PARSERS.manifest_parser import DependencyManifest, canonical_name
from ..REGISTRY.base_image import BaseImage
from ..RUNNERS.docker_backend import DockerBackend
from ..RUNNERS.entrypoint_executor import EntrypointExecutor

logger = logging.getLogger(__name__)


@dataclass
class CheckResult:
    """Outcome of one verification check."""
    name: str
    passed: bool
    detail: str = ""
    skipped: bool = False


@dataclass
class VerificationReport:
    """All check outcomes for one image."""
    image: str
    checks: List[CheckResult] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return all(c.passed or c.skipped for c in self.checks)

    @property
    def failures(self) -> List[CheckResult]:
        return [c for c in self.checks if not c.passed and not c.skipped]

    def add(self, name: str, passed: bool, detail: str = "", skipped: bool = False) -> CheckResult:
        result = CheckResult(name=name, passed=passed, detail=detail, skipped=skipped)
        self.checks.append(result)
        level = logging.INFO if passed or skipped else logging.WARNING
        logger.log(level, "%s: %s %s", name, "skipped" if skipped else ("ok" if passed else "FAILED"), detail)
        return result

    def raise_for_failures(self) -> None:
        if not self.passed:
            names = ", ".join(c.name for c in self.failures)
            raise VerificationError(f"Image {self.image} failed checks: {names}",
                                    {"failures": {c.name: c.detail for c in self.failures}})


def parse_freeze(output: str) -> Dict[str, str]:
    """
    Maps canonical package names to versions from `pip freeze` output.
    """
    installed = {}
    for line in output.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        if "==" in line:
            name, version = line.split("==", 1)
            installed[canonical_name(name)] = version.strip()
        elif " @ " in line:
            name = line.split(" @ ", 1)[0]
            installed[canonical_name(name)] = ""
    return installed


class ImageVerifier:
    """
    Runs the verification checks through a container backend.
    """
    def __init__(self, backend: DockerBackend):
        self.backend = backend
        self.entrypoints = EntrypointExecutor()

    def verify(self, image: str, recipe: BuildRecipe,
               manifest: Optional[DependencyManifest] = None) -> VerificationReport:
        """
        Verifies an image.

        :param image: Image tag or id.
        :param recipe: The recipe the image was built from.
        :param manifest: Parsed dependency manifest; the package check is
                         skipped without it.
        :return: The report. Failing checks do not raise.
        """
        report = VerificationReport(image=image)
        config = self.backend.inspect(image).get("Config") or {}

        self.check_python(image, recipe, report)
        self.check_packages(image, manifest, report)
        self.check_browser(image, recipe, report)
        self.check_port(image, recipe, config, report)
        self.check_entrypoint(image, recipe, config, report)
        return report

    def _shell(self, image: str, script: str):
        return self.backend.run(image, ["-c", script], entrypoint="sh")

    def check_python(self, image: str, recipe: BuildRecipe, report: VerificationReport):
        base = BaseImage.parse(recipe.base_image)
        result = self.backend.run(image, ["--version"], entrypoint="python")
        reported = result.output.strip()
        if not result.ok:
            report.add("python", False, f"python --version exited {result.exit_code}")
        elif base.python_version is None:
            report.add("python", True, f"{reported} (base image pins no version)")
        else:
            report.add("python", base.matches_python(reported),
                       f"expected {base.python_version}, found {reported}")

    def check_packages(self, image: str, manifest: Optional[DependencyManifest],
                       report: VerificationReport):
        if manifest is None:
            report.add("packages", True, "no manifest given", skipped=True)
            return
        result = self.backend.run(image, ["-m", "pip", "freeze", "--all"], entrypoint="python")
        if not result.ok:
            report.add("packages", False, f"pip freeze exited {result.exit_code}")
            return

        installed = parse_freeze(result.output)
        missing = []
        wrong = []
        for req in manifest.requirements:
            if req.marker:
                # Environment markers may legitimately exclude the package
                continue
            if req.key not in installed:
                missing.append(req.name)
                continue
            pinned = req.pinned_version
            if pinned and "*" not in pinned and installed[req.key] != pinned:
                wrong.append(f"{req.name}=={installed[req.key]} (wanted {pinned})")

        problems = []
        if missing:
            problems.append("missing: " + ", ".join(missing))
        if wrong:
            problems.append("version mismatch: " + ", ".join(wrong))
        report.add("packages", not problems,
                   "; ".join(problems) or f"{len(manifest.requirements)} requirements installed")

    def check_browser(self, image: str, recipe: BuildRecipe, report: VerificationReport):
        binary = recipe.browser_package
        if not re.fullmatch(r'[\w.+-]+', binary):
            report.add("browser", False, f"unexpected binary name {binary!r}")
            return
        result = self._shell(image, f"command -v {binary}")
        if result.ok and result.output.strip():
            report.add("browser", True, result.output.strip())
        else:
            report.add("browser", False, f"{binary} is not on PATH")

    def check_port(self, image: str, recipe: BuildRecipe, config: dict, report: VerificationReport):
        expected = recipe.environment.get("PORT")
        if expected is None:
            report.add("port", True, "recipe declares no PORT", skipped=True)
        else:
            env = dict(item.split("=", 1) for item in (config.get("Env") or []) if "=" in item)
            result = self.backend.run(image, ["PORT"], entrypoint="printenv")
            running = result.output.strip() if result.ok else None
            report.add("port", env.get("PORT") == expected and running == expected,
                       f"expected PORT={expected}, image has {env.get('PORT')}, container sees {running}")

        exposed = set(config.get("ExposedPorts") or {})
        wanted = {f"{p}/tcp" for p in recipe.exposed_ports}
        missing = sorted(wanted - exposed)
        report.add("exposed_ports", not missing,
                   f"missing {', '.join(missing)}" if missing else ", ".join(sorted(wanted)))

    def check_entrypoint(self, image: str, recipe: BuildRecipe, config: dict, report: VerificationReport):
        command = self.entrypoints.get_full_command(config.get("Entrypoint") or [], config.get("Cmd") or [])
        if command != recipe.command:
            report.add("entrypoint", False, f"image runs {command}, recipe says {recipe.command}")
            return

        entry = self.entrypoints.get_entry_file(command)
        if entry is None:
            report.add("entrypoint", True, " ".join(command))
            return
        workdir = config.get("WorkingDir") or recipe.working_directory
        target = entry if posixpath.isabs(entry) else posixpath.join(workdir, entry)
        result = self.backend.run(image, ["-f", target], entrypoint="test")
        report.add("entrypoint", result.ok,
                   f"{target} present" if result.ok else f"{target} missing in image")


def verify_image(backend: DockerBackend, image: str, recipe: BuildRecipe,
                 manifest: Optional[DependencyManifest] = None,
                 strict: bool = False) -> VerificationReport:
    """
    Convenience wrapper: verify and optionally raise on failures.

    :raises VerificationError: When strict and a check failed.
    """
    try:
        report = ImageVerifier(backend).verify(image, recipe, manifest)
    except RibError as e:
        raise VerificationError(f"Cannot verify {image}: {e.message}") from e
    if strict:
        report.raise_for_failures()
    return report
