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
Unit tests for the layer index.
"""
import json

from rib.REGISTRY.layer_cache import LayerCache


class TestLayerCache:
    """Tests for LayerCache."""

    def test_record_and_lookup(self, tmp_path):
        cache = LayerCache(str(tmp_path))
        cache.record("sha256:aa", "RUN", "sbd-server:latest")

        layer = cache.lookup("sha256:aa")
        assert layer.instruction == "RUN"
        assert layer.image == "sbd-server:latest"
        assert layer.created.endswith("Z")
        assert cache.has_layer("sha256:aa")
        assert cache.lookup("sha256:bb") is None

    def test_index_persists(self, tmp_path):
        LayerCache(str(tmp_path)).record_many(
            [("sha256:aa", "FROM"), ("sha256:bb", "RUN")], image="sbd-server:latest"
        )
        cache = LayerCache(str(tmp_path))
        assert len(cache) == 2
        assert [l.cache_key for l in cache.list_layers()] == ["sha256:aa", "sha256:bb"]

    def test_corrupt_index_starts_empty(self, tmp_path):
        (tmp_path / "layers.json").write_text("{not json")
        cache = LayerCache(str(tmp_path))
        assert len(cache) == 0
        cache.record("sha256:aa", "RUN", "sbd-server:latest")
        with open(tmp_path / "layers.json", encoding="utf-8") as f:
            assert "sha256:aa" in json.load(f)["layers"]

    def test_prune_by_image(self, tmp_path):
        cache = LayerCache(str(tmp_path))
        cache.record("sha256:aa", "RUN", "sbd-server:latest")
        cache.record("sha256:bb", "RUN", "sbd-server:dev")
        assert cache.prune(image="sbd-server:dev") == 1
        assert cache.has_layer("sha256:aa")
        assert not cache.has_layer("sha256:bb")

    def test_prune_by_age(self, tmp_path):
        index = {"layers": {
            "sha256:old": {"instruction": "RUN", "image": "a", "created": "2020-01-01T00:00:00Z"},
            "sha256:bad": {"instruction": "RUN", "image": "a", "created": "yesterday"},
        }}
        (tmp_path / "layers.json").write_text(json.dumps(index))
        cache = LayerCache(str(tmp_path))
        cache.record("sha256:new", "COPY", "a")

        assert cache.prune(max_age_days=30) == 2
        assert [l.cache_key for l in cache.list_layers()] == ["sha256:new"]

    def test_clear(self, tmp_path):
        cache = LayerCache(str(tmp_path))
        cache.record_many([("sha256:aa", "FROM"), ("sha256:bb", "RUN")], image="x")
        assert cache.clear() == 2
        assert len(LayerCache(str(tmp_path))) == 0
