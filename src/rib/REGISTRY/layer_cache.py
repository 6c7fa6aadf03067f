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
Local index of built layers.
Records which step cache keys have produced a layer, so a rebuild can tell
which steps the container tool will reuse and which it will rerun.
"""

import json
import logging
from typing import Optional, List, Dict, Any, Tuple
from dataclasses import dataclass, asdict
from pathlib import Path
from datetime import datetime, timezone, timedelta

logger = logging.getLogger(__name__)


@dataclass
class CachedLayer:
    """Information about a recorded layer."""
    cache_key: str
    instruction: str
    image: str
    created: str


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_time(value: str) -> Optional[datetime]:
    try:
        parsed = datetime.fromisoformat(value.rstrip("Z"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class LayerCache:
    """
    Manages the local layer index.
    The index is a single JSON file, rewritten on every change.
    """

    def __init__(self, cache_dir: Optional[str] = None):
        """
        Initialize the layer cache.

        Args:
            cache_dir: Directory for cache storage. Defaults to ~/.rib/cache
        """
        if cache_dir:
            self.cache_dir = Path(cache_dir)
        else:
            self.cache_dir = Path.home() / ".rib" / "cache"

        self.index_file = self.cache_dir / "layers.json"
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self._index = self._load_index()

    def _load_index(self) -> Dict[str, Any]:
        """Load the index from disk; a corrupt index starts over empty."""
        if self.index_file.exists():
            try:
                with open(self.index_file, 'r', encoding='utf-8') as f:
                    data = json.load(f)
                if isinstance(data, dict) and isinstance(data.get("layers"), dict):
                    return data
                logger.warning("Ignoring malformed layer index %s", self.index_file)
            except (json.JSONDecodeError, OSError) as e:
                logger.warning("Ignoring unreadable layer index %s: %s", self.index_file, e)
        return {"layers": {}}

    def _save_index(self) -> None:
        with open(self.index_file, 'w', encoding='utf-8') as f:
            json.dump(self._index, f, indent=2, sort_keys=True)

    def lookup(self, cache_key: str) -> Optional[CachedLayer]:
        """
        Get a recorded layer.

        Args:
            cache_key: Step cache key

        Returns:
            CachedLayer if recorded, None otherwise
        """
        info = self._index["layers"].get(cache_key)
        if info is None:
            return None
        return CachedLayer(
            cache_key=cache_key,
            instruction=info.get("instruction", ""),
            image=info.get("image", ""),
            created=info.get("created", ""),
        )

    def has_layer(self, cache_key: str) -> bool:
        return cache_key in self._index["layers"]

    def record(self, cache_key: str, instruction: str, image: str) -> CachedLayer:
        """
        Record a layer produced by a successful step.

        Args:
            cache_key: Step cache key
            instruction: The instruction that produced it
            image: Tag of the image the layer was built for

        Returns:
            The recorded layer
        """
        layer = CachedLayer(cache_key=cache_key, instruction=instruction, image=image, created=_now())
        entry = asdict(layer)
        del entry["cache_key"]
        self._index["layers"][cache_key] = entry
        self._save_index()
        return layer

    def record_many(self, entries: List[Tuple[str, str]], image: str) -> List[CachedLayer]:
        """
        Record several layers with a single index write.

        Args:
            entries: (cache key, instruction) pairs
            image: Tag of the image the layers were built for
        """
        created = _now()
        layers = []
        for cache_key, instruction in entries:
            layers.append(CachedLayer(cache_key=cache_key, instruction=instruction,
                                      image=image, created=created))
            self._index["layers"][cache_key] = {
                "instruction": instruction, "image": image, "created": created
            }
        self._save_index()
        return layers

    def list_layers(self) -> List[CachedLayer]:
        """
        List all recorded layers, oldest first.
        """
        layers = [self.lookup(key) for key in self._index["layers"]]
        return sorted(layers, key=lambda l: l.created)

    def prune(self, max_age_days: Optional[int] = None, image: Optional[str] = None) -> int:
        """
        Remove layer records.

        Args:
            max_age_days: Remove layers recorded longer ago than this
            image: Remove layers recorded for this image tag

        Returns:
            Number of removed records
        """
        cutoff = None
        if max_age_days is not None:
            cutoff = datetime.now(timezone.utc) - timedelta(days=max_age_days)

        removed = 0
        for key, info in list(self._index["layers"].items()):
            drop = False
            if image is not None and info.get("image") == image:
                drop = True
            if cutoff is not None:
                created = _parse_time(info.get("created", ""))
                if created is None or created < cutoff:
                    drop = True
            if drop:
                del self._index["layers"][key]
                removed += 1

        if removed:
            self._save_index()
        return removed

    def clear(self) -> int:
        """Forget every layer. Returns the number removed."""
        removed = len(self._index["layers"])
        self._index = {"layers": {}}
        self._save_index()
        return removed

    def __len__(self) -> int:
        return len(self._index["layers"])
