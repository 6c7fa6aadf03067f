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
Parser for pip dependency manifests (requirements.txt).

Understands requirement lines, comments, line continuations, environment
markers, URL requirements and the pip options that may appear in a
manifest. Anything else is reported as malformed with its line number.
"""
import os
import re
from dataclasses import dataclass, field
from typing import List, Optional, Set

from ..errors import ManifestError

# PEP 508 name, optional [extras], optional version specifiers
REQUIREMENT_PATTERN = re.compile(
    r'^(?P<name>[A-Za-z0-9](?:[A-Za-z0-9._-]*[A-Za-z0-9])?)'
    r'\s*(?:\[(?P<extras>[A-Za-z0-9._,\s-]*)\])?'
    r'\s*(?P<spec>(?:(?:===|~=|==|!=|<=|>=|<|>)\s*[A-Za-z0-9.*+!_-]+\s*,?\s*)*)$'
)
URL_REQUIREMENT_PATTERN = re.compile(r'^(?P<name>[A-Za-z0-9][A-Za-z0-9._-]*)\s*@\s*(?P<url>\S+)$')
EGG_PATTERN = re.compile(r'#egg=(?P<name>[A-Za-z0-9][A-Za-z0-9._-]*)')

# Options pip accepts inside a requirements file
OPTIONS_WITH_VALUE = {
    "-i", "--index-url", "--extra-index-url", "-f", "--find-links",
    "--trusted-host", "-c", "--constraint", "--no-binary", "--only-binary",
    "--hash",
}
OPTIONS_FLAGS = {"--no-index", "--pre", "--prefer-binary", "--require-hashes"}
INCLUDE_OPTIONS = {"-r", "--requirement"}
EDITABLE_OPTIONS = {"-e", "--editable"}


def canonical_name(name: str) -> str:
    """Normalizes a distribution name the way the package index does."""
    return re.sub(r'[-_.]+', '-', name).lower()


@dataclass
class Requirement:
    """A single requirement from the manifest."""
    name: str
    specifier: str = ""
    extras: List[str] = field(default_factory=list)
    marker: str = ""
    url: str = ""
    line: int = 0
    source: str = ""

    @property
    def key(self) -> str:
        return canonical_name(self.name)

    @property
    def pinned_version(self) -> Optional[str]:
        """The exact version when the requirement is pinned with ==."""
        match = re.fullmatch(r'==\s*([A-Za-z0-9.+!_-]+)', self.specifier.strip())
        return match.group(1) if match else None

    def __str__(self) -> str:
        text = self.name
        if self.extras:
            text += f"[{','.join(self.extras)}]"
        if self.url:
            text += f" @ {self.url}"
        text += self.specifier
        if self.marker:
            text += f"; {self.marker}"
        return text


@dataclass
class DependencyManifest:
    """Parsed content of a manifest and the files it includes."""
    path: str
    requirements: List[Requirement] = field(default_factory=list)
    options: List[str] = field(default_factory=list)
    included_files: List[str] = field(default_factory=list)

    def names(self) -> List[str]:
        return [r.key for r in self.requirements]

    def get(self, name: str) -> Optional[Requirement]:
        key = canonical_name(name)
        for req in self.requirements:
            if req.key == key:
                return req
        return None


class ManifestParser:
    """
    Parser for requirements files.
    """
    def parse(self, manifest_path: str) -> DependencyManifest:
        """
        Parses a manifest from a path, following -r includes.

        :param manifest_path: Path to the requirements file.
        :return: The parsed manifest.
        :raises ManifestError: If the file is missing or a line is malformed.
        """
        manifest = DependencyManifest(path=manifest_path)
        self._parse_file(manifest_path, manifest, set())
        return manifest

    def parse_from_string(self, content: str, source: str = "<string>") -> DependencyManifest:
        """
        Parses manifest content. Include directives are resolved relative
        to the current directory.
        """
        manifest = DependencyManifest(path=source)
        self._parse_content(content, source, os.getcwd(), manifest, set())
        return manifest

    def _parse_file(self, path: str, manifest: DependencyManifest, seen: Set[str]):
        real = os.path.realpath(path)
        if real in seen:
            raise ManifestError(f"Recursive include of {path}", path=path)
        if not os.path.isfile(path):
            raise ManifestError(f"Dependency manifest not found: {path}", path=path)
        seen.add(real)
        try:
            with open(path, 'r', encoding='utf-8') as f:
                content = f.read()
        except UnicodeDecodeError as e:
            raise ManifestError(f"Dependency manifest is not valid UTF-8: {path}", path=path) from e
        if path != manifest.path:
            manifest.included_files.append(path)
        self._parse_content(content, path, os.path.dirname(os.path.abspath(path)), manifest, seen)

    def _parse_content(self,
                       content: str,
                       source: str,
                       base_dir: str,
                       manifest: DependencyManifest,
                       seen: Set[str]):
        if '\x00' in content:
            raise ManifestError(f"Dependency manifest contains binary data: {source}", path=source)

        for lineno, line in self._logical_lines(content):
            try:
                tokens = line.split()
                head = tokens[0]
                if head.startswith("-"):
                    self._handle_option(tokens, line, lineno, source, base_dir, manifest, seen)
                    continue
                req = self.parse_requirement(line)
            except (ValueError, IndexError) as e:
                raise ManifestError(f"{source}:{lineno}: {e}", path=source, line=lineno) from e
            req.line = lineno
            req.source = source
            manifest.requirements.append(req)

    def _handle_option(self, tokens, line, lineno, source, base_dir, manifest, seen):
        head = tokens[0]
        # --option=value
        if "=" in head and head.startswith("--"):
            head, value = head.split("=", 1)
            tokens = [head, value] + tokens[1:]

        if head in INCLUDE_OPTIONS:
            if len(tokens) < 2:
                raise ManifestError(f"{source}:{lineno}: {head} needs a file", path=source, line=lineno)
            self._parse_file(os.path.join(base_dir, tokens[1]), manifest, seen)
        elif head in EDITABLE_OPTIONS:
            if len(tokens) < 2:
                raise ManifestError(f"{source}:{lineno}: {head} needs a target", path=source, line=lineno)
            match = EGG_PATTERN.search(tokens[1])
            name = match.group("name") if match else os.path.basename(tokens[1].rstrip("/"))
            manifest.requirements.append(
                Requirement(name=name, url=tokens[1], line=lineno, source=source)
            )
        elif head in OPTIONS_WITH_VALUE:
            if len(tokens) < 2:
                raise ManifestError(f"{source}:{lineno}: {head} needs a value", path=source, line=lineno)
            manifest.options.append(line)
        elif head in OPTIONS_FLAGS:
            manifest.options.append(line)
        else:
            raise ManifestError(f"{source}:{lineno}: unknown option {head}", path=source, line=lineno)

    @staticmethod
    def _logical_lines(content: str):
        """Yields (line number, text) with comments removed and continuations joined."""
        pending = ""
        start = 0
        for lineno, raw in enumerate(content.splitlines(), start=1):
            # A comment needs whitespace before '#' unless it starts the line
            text = re.sub(r'(^|\s)#.*$', '', raw).rstrip()
            if not pending:
                start = lineno
            if text.endswith('\\'):
                pending += text[:-1] + " "
                continue
            text = (pending + text).strip()
            pending = ""
            if text:
                yield start, text
        if pending.strip():
            yield start, pending.strip()

    @staticmethod
    def parse_requirement(line: str) -> Requirement:
        """
        Parses a single requirement line.

        :param line: e.g. "requests[socks]>=2.31,<3; python_version >= '3.8'"
        :return: The parsed Requirement.
        :raises ValueError: If the line is not a valid requirement.
        """
        marker = ""
        if ";" in line:
            line, marker = line.split(";", 1)
            marker = marker.strip()
            if not marker:
                raise ValueError("empty environment marker")
        line = line.strip()

        # Drop --hash and similar per-requirement options
        line = re.split(r'\s+--', line, maxsplit=1)[0].strip()

        url_match = URL_REQUIREMENT_PATTERN.match(line)
        if url_match:
            return Requirement(name=url_match.group("name"), url=url_match.group("url"), marker=marker)

        if "://" in line:
            egg = EGG_PATTERN.search(line)
            if not egg:
                raise ValueError(f"URL requirement without a name: {line}")
            return Requirement(name=egg.group("name"), url=line, marker=marker)

        match = REQUIREMENT_PATTERN.match(line)
        if not match:
            raise ValueError(f"malformed requirement: {line!r}")

        extras = []
        if match.group("extras"):
            extras = [e.strip() for e in match.group("extras").split(",") if e.strip()]
        spec = re.sub(r'\s+', '', match.group("spec") or "").rstrip(",")

        return Requirement(name=match.group("name"), specifier=spec, extras=extras, marker=marker)
