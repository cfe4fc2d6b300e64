"""Persistence boundary: opaque blobs keyed by resource.

The manager serialises a scope to a JSON string and hands it here under the
scope's key ("global" or "character:<id>"). Backends only store and return
strings; they never interpret them.

File layout for JsonFilePersistence:
  <base>/
    variables/
      global.json
      character_<id>.json
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Protocol
from urllib.parse import quote

logger = logging.getLogger(__name__)


class Persistence(Protocol):
    async def load(self, resource: str) -> str | None: ...

    async def save(self, resource: str, blob: str) -> None: ...

    async def delete(self, resource: str) -> bool: ...


def resource_filename(resource: str) -> str:
    """Map a scope key to its file name.

    "global" → "global.json", "character:alice" → "character_alice.json",
    "character:alice/bob" → "character_alice%2Fbob.json". Distinct resources
    always get distinct names.
    """
    kind, _, ident = resource.partition(":")
    if not ident:
        return f"{_encode(kind)}.json"
    return f"{_encode(kind)}_{_encode(ident)}.json"


_UNSAFE_RE = re.compile(r"[^\w\-]")


def _encode(part: str) -> str:
    # Unicode word characters stay readable (ids are often non-ASCII names);
    # anything else, "%" included, is percent-encoded
    return _UNSAFE_RE.sub(lambda m: quote(m.group(), safe=""), part)


class JsonFilePersistence:
    """One JSON file per resource under <base>/variables/."""

    def __init__(self, base_path: Path | str) -> None:
        self.base_path = Path(base_path)

    @property
    def variables_dir(self) -> Path:
        return self.base_path / "variables"

    def path_for(self, resource: str) -> Path:
        return self.variables_dir / resource_filename(resource)

    async def load(self, resource: str) -> str | None:
        path = self.path_for(resource)
        if not path.is_file():
            return None
        return path.read_text(encoding="utf-8")

    async def save(self, resource: str, blob: str) -> None:
        self.variables_dir.mkdir(parents=True, exist_ok=True)
        self.path_for(resource).write_text(blob, encoding="utf-8")
        logger.debug("saved %s (%d bytes)", resource, len(blob))

    async def delete(self, resource: str) -> bool:
        path = self.path_for(resource)
        if not path.is_file():
            return False
        path.unlink()
        return True


class MemoryPersistence:
    """Dict-backed persistence for tests and embedding."""

    def __init__(self) -> None:
        self.blobs: dict[str, str] = {}

    async def load(self, resource: str) -> str | None:
        return self.blobs.get(resource)

    async def save(self, resource: str, blob: str) -> None:
        self.blobs[resource] = blob

    async def delete(self, resource: str) -> bool:
        return self.blobs.pop(resource, None) is not None
