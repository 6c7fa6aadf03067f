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
Unit tests for the dependency manifest parser.
"""
import pytest

from rib.errors import ManifestError
from rib.PARSERS.manifest_parser import ManifestParser, canonical_name


class TestRequirementLines:
    """Tests for single requirement lines."""

    def test_pinned(self):
        req = ManifestParser.parse_requirement("requests==2.31.0")
        assert req.name == "requests"
        assert req.specifier == "==2.31.0"
        assert req.pinned_version == "2.31.0"

    def test_range_with_extras_and_marker(self):
        req = ManifestParser.parse_requirement(
            "requests[socks, security] >= 2.31, <3 ; python_version >= '3.8'"
        )
        assert req.extras == ["socks", "security"]
        assert req.specifier == ">=2.31,<3"
        assert req.marker == "python_version >= '3.8'"
        assert req.pinned_version is None
        assert str(req) == "requests[socks,security]>=2.31,<3; python_version >= '3.8'"

    def test_url_requirement(self):
        req = ManifestParser.parse_requirement("uk_bin_collection @ https://example.org/ubc-1.0.tar.gz")
        assert req.name == "uk_bin_collection"
        assert req.url == "https://example.org/ubc-1.0.tar.gz"

    def test_egg_fragment(self):
        req = ManifestParser.parse_requirement("git+https://example.org/ubc.git#egg=uk_bin_collection")
        assert req.name == "uk_bin_collection"

    def test_hash_option_is_dropped(self):
        req = ManifestParser.parse_requirement("selenium==4.15.2 --hash=sha256:abcdef")
        assert req.specifier == "==4.15.2"

    @pytest.mark.parametrize("line", [
        "requests===",
        "requests >> 2",
        "!requests",
        "requests; ",
        "git+https://example.org/ubc.git",
    ])
    def test_malformed(self, line):
        with pytest.raises(ValueError):
            ManifestParser.parse_requirement(line)


class TestManifestFiles:
    """Tests for whole manifests."""

    def test_comments_blank_lines_and_continuations(self):
        content = (
            "# web scraping\n"
            "\n"
            "requests==2.31.0  # pinned\n"
            "beautifulsoup4 \\\n"
            "    >=4.12\n"
            "--index-url https://pypi.org/simple\n"
        )
        manifest = ManifestParser().parse_from_string(content)
        assert manifest.names() == ["requests", "beautifulsoup4"]
        assert manifest.get("BeautifulSoup4").specifier == ">=4.12"
        assert manifest.get("beautifulsoup4").line == 4
        assert manifest.options == ["--index-url https://pypi.org/simple"]

    def test_hash_in_url_is_not_a_comment(self):
        manifest = ManifestParser().parse_from_string(
            "git+https://example.org/ubc.git#egg=uk_bin_collection\n"
        )
        assert manifest.names() == ["uk-bin-collection"]

    def test_malformed_line_reports_line_number(self):
        with pytest.raises(ManifestError) as excinfo:
            ManifestParser().parse_from_string("requests==2.31.0\nthis is not a requirement\n", source="requirements.txt")
        assert excinfo.value.line == 2
        assert "requirements.txt:2" in excinfo.value.message

    def test_unknown_option(self):
        with pytest.raises(ManifestError, match="unknown option"):
            ManifestParser().parse_from_string("--frobnicate\n")

    def test_missing_file(self, tmp_path):
        with pytest.raises(ManifestError, match="not found"):
            ManifestParser().parse(str(tmp_path / "requirements.txt"))

    def test_binary_content(self, tmp_path):
        path = tmp_path / "requirements.txt"
        path.write_bytes(b"requests\x00\x01\x02")
        with pytest.raises(ManifestError, match="binary"):
            ManifestParser().parse(str(path))

    def test_not_utf8(self, tmp_path):
        path = tmp_path / "requirements.txt"
        path.write_bytes(b"requests==2.31.0\n\xff\xfe\n")
        with pytest.raises(ManifestError, match="UTF-8"):
            ManifestParser().parse(str(path))

    def test_includes_are_followed(self, tmp_path):
        (tmp_path / "base.txt").write_text("requests==2.31.0\n")
        (tmp_path / "requirements.txt").write_text("-r base.txt\nselenium==4.15.2\n")
        manifest = ManifestParser().parse(str(tmp_path / "requirements.txt"))
        assert manifest.names() == ["requests", "selenium"]
        assert manifest.included_files == [str(tmp_path / "base.txt")]
        assert manifest.get("requests").source == str(tmp_path / "base.txt")

    def test_recursive_include(self, tmp_path):
        (tmp_path / "a.txt").write_text("-r b.txt\n")
        (tmp_path / "b.txt").write_text("-r a.txt\n")
        with pytest.raises(ManifestError, match="Recursive"):
            ManifestParser().parse(str(tmp_path / "a.txt"))

    def test_editable(self):
        manifest = ManifestParser().parse_from_string("-e ./uk_bin_collection\n")
        assert manifest.requirements[0].name == "uk_bin_collection"
        assert manifest.requirements[0].url == "./uk_bin_collection"


def test_canonical_name():
    assert canonical_name("Beautiful_Soup.4") == "beautiful-soup-4"
