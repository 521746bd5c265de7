from __future__ import annotations

"""
On-disk JSON lookups used by the mask resolver.

- token_exceptions.json : { "<tokenId>": rule | [rule, ...] }
- mask_<category>_aliases.json : { "<canonical part>": ["alias", ...] }

Both are read through `JsonFileCache`, which re-reads a file whenever its
(mtime_ns, size) changes, so edits on disk are visible to the next request.
"""

import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from common.types import TokenExceptionRule
from common.utils import alias_file_name


log = logging.getLogger(__name__)

_Stamp = Tuple[int, int]


class JsonFileCache:
    """Read-through JSON cache keyed by file path and stat stamp."""

    def __init__(self) -> None:
        self._entries: Dict[Path, Tuple[_Stamp, Any]] = {}
        self._lock = threading.Lock()

    def load(self, path: Path) -> Optional[Any]:
        """
        Parsed JSON, or None if the file is missing or malformed.
        Malformed files are logged, not raised.
        """
        try:
            st = path.stat()
        except FileNotFoundError:
            with self._lock:
                self._entries.pop(path, None)
            return None
        stamp = (st.st_mtime_ns, st.st_size)

        with self._lock:
            hit = self._entries.get(path)
        if hit is not None and hit[0] == stamp:
            return hit[1]

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            log.error("Failed to parse %s: %s", path.name, e)
            data = None
        with self._lock:
            self._entries[path] = (stamp, data)
        return data

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class TokenExceptionStore:
    def __init__(self, path: Path, cache: Optional[JsonFileCache] = None):
        self.path = Path(path)
        self.cache = cache or JsonFileCache()

    @property
    def exists(self) -> bool:
        return self.path.is_file()

    def load_all(self) -> Dict[str, Any]:
        """Whole file as a dict; {} when absent or malformed."""
        data = self.cache.load(self.path)
        if data is None:
            if not self.path.exists():
                log.warning("%s not found", self.path.name)
            return {}
        if not isinstance(data, dict):
            log.error("%s must contain a JSON object", self.path.name)
            return {}
        return data

    def rules_for(self, token_id: Optional[str]) -> List[TokenExceptionRule]:
        """Ordered rules for one token. A single object is treated as a one-item list."""
        if not token_id:
            return []
        entry = self.load_all().get(str(token_id))
        if not entry:
            return []
        raw = entry if isinstance(entry, list) else [entry]
        rules = [TokenExceptionRule.from_dict(r) for r in raw if isinstance(r, dict)]
        log.info("Loaded %d exception rule(s) for token %s", len(rules), token_id)
        return rules


class AliasStore:
    def __init__(self, alias_dir: Path, cache: Optional[JsonFileCache] = None):
        self.alias_dir = Path(alias_dir)
        self.cache = cache or JsonFileCache()

    def reverse_map(self, trait_type: str) -> Dict[str, str]:
        """alias -> canonical for one category; {} when there is no alias file."""
        data = self.cache.load(self.alias_dir / alias_file_name(trait_type))
        if not isinstance(data, dict):
            return {}
        out: Dict[str, str] = {}
        for canonical, aliases in data.items():
            if isinstance(aliases, list):
                for alias in aliases:
                    out[str(alias)] = canonical
        return out

    def resolve(self, trait_type: str, part_name: str) -> str:
        canonical = self.reverse_map(trait_type).get(part_name)
        if canonical:
            log.info('Alias applied: "%s" -> "%s"', part_name, canonical)
            return canonical
        return part_name
