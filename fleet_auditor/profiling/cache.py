"""
Profile cache stores, keyed by target identity.

The profiler owns expiry; stores only persist and return entries. A store
must treat anything it cannot read back as a miss.
"""
from __future__ import annotations

import abc
import hashlib
import json
import logging
import os
import re
import tempfile
import threading
from pathlib import Path

from fleet_auditor.core.models import CapabilityProfile
from fleet_auditor.core.report import profile_from_dict, to_serializable

logger = logging.getLogger(__name__)


class ProfileCache(abc.ABC):

    @abc.abstractmethod
    def get(self, key: str) -> CapabilityProfile | None:
        """Return the stored profile or None (missing or unreadable)."""

    @abc.abstractmethod
    def put(self, key: str, profile: CapabilityProfile) -> None:
        """Store or overwrite the entry for key."""

    @abc.abstractmethod
    def delete(self, key: str) -> None:
        """Remove the entry for key if present."""


class InMemoryProfileCache(ProfileCache):

    def __init__(self):
        self._entries: dict[str, dict] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> CapabilityProfile | None:
        with self._lock:
            raw = self._entries.get(key)
        if raw is None:
            return None
        # Stored serialized so callers cannot mutate the cached copy.
        return profile_from_dict(raw)

    def put(self, key: str, profile: CapabilityProfile) -> None:
        with self._lock:
            self._entries[key] = to_serializable(profile)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)


class JsonFileProfileCache(ProfileCache):
    """
    One JSON file per target under `directory`.

    Writes go through a temp file and os.replace() so a crashed writer
    leaves either the old entry or the new one, never half of each.
    """

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        safe = re.sub(r"[^A-Za-z0-9_.-]", "_", key)[:80]
        digest = hashlib.sha1(key.encode("utf-8")).hexdigest()[:10]
        return self.directory / f"{safe}-{digest}.json"

    def get(self, key: str) -> CapabilityProfile | None:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            with path.open("r", encoding="utf-8") as f:
                raw = json.load(f)
            if raw.get("key") != key:
                logger.warning("profile cache entry %s belongs to %r, ignoring", path, raw.get("key"))
                return None
            return profile_from_dict(raw["profile"])
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning("unreadable profile cache entry %s (%s: %s), treating as miss",
                           path, type(e).__name__, e)
            return None

    def put(self, key: str, profile: CapabilityProfile) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(key)
        fd, tmp = tempfile.mkstemp(prefix=".profile-", dir=self.directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump({"key": key, "profile": to_serializable(profile)}, f, indent=2)
            os.replace(tmp, path)
        except OSError:
            try:
                os.unlink(tmp)
            except OSError:
                pass
            raise

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            pass
