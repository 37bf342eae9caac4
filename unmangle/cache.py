"""On-disk cache of rename suggestions per chunk."""

import hashlib
import json
import logging
import threading
import time
from pathlib import Path
from typing import Optional

from unmangle.models import RenameSuggestion

logger = logging.getLogger(__name__)

# Default cache directory
_CACHE_DIR = Path(".unmangle_cache")


class SuggestionCache:
    """Caches provider suggestions keyed by provider, model and chunk text."""

    def __init__(self, cache_dir: Optional[Path] = None, ttl_seconds: int = 7 * 24 * 3600):
        self.cache_dir = cache_dir or _CACHE_DIR
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.ttl_seconds = ttl_seconds
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def make_key(provider: str, model: str, temperature: float, code: str) -> str:
        digest = hashlib.sha256()
        for part in (provider, model, f"{temperature:.3f}", code):
            digest.update(part.encode("utf-8"))
            digest.update(b"\0")
        return digest.hexdigest()

    def _entry_file(self, key: str) -> Path:
        return self.cache_dir / f"{key[:2]}" / f"{key}.json"

    def get(self, key: str) -> Optional[list[RenameSuggestion]]:
        """Return cached suggestions, or None when missing, expired or unreadable."""
        entry_file = self._entry_file(key)
        if not entry_file.exists():
            self.misses += 1
            return None

        try:
            data = json.loads(entry_file.read_text(encoding="utf-8"))
            if self.ttl_seconds and time.time() - data["created_at"] > self.ttl_seconds:
                entry_file.unlink(missing_ok=True)
                self.misses += 1
                return None
            suggestions = [RenameSuggestion.from_dict(item) for item in data["suggestions"]]
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning("Ignoring unreadable cache entry %s: %s", entry_file.name, e)
            self.misses += 1
            return None

        self.hits += 1
        return suggestions

    def set(self, key: str, suggestions: list[RenameSuggestion]) -> None:
        entry_file = self._entry_file(key)
        payload = {
            "created_at": time.time(),
            "suggestions": [s.to_dict() for s in suggestions],
        }
        with self._lock:
            entry_file.parent.mkdir(parents=True, exist_ok=True)
            tmp_file = entry_file.with_suffix(".tmp")
            tmp_file.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
            tmp_file.replace(entry_file)

    def clear(self) -> int:
        """Delete all cache entries and return how many were removed."""
        removed = 0
        with self._lock:
            for entry_file in self.cache_dir.glob("*/*.json"):
                entry_file.unlink(missing_ok=True)
                removed += 1
        return removed

    def stats(self) -> dict[str, int]:
        return {"hits": self.hits, "misses": self.misses}
