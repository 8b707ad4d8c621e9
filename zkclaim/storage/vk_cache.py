"""
Verification-key id cache.

One small JSON document per role:

    <storage_dir>/vk/<role>_vk_hash.json   ->   {"vkHash": "<relay key id>"}

Entries are written once per successful registration and never expire.
Concurrent registrations of the same role are last-writer-wins; the relay
issues the same id for the same key, so the outcome is the same either way.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional, Protocol

from ..logging import get_logger
from .fs import read_json, write_json_atomic

log = get_logger(__name__)

VK_ID_FIELD = "vkHash"


class VkIdStore(Protocol):
    def get(self, role: str) -> Optional[str]: ...

    def put(self, role: str, vk_id: str) -> None: ...


class VkCache:
    """File-backed role -> vk id map."""

    def __init__(self, root: Path):
        self.root = Path(root) / "vk"

    @classmethod
    def from_settings(cls, settings) -> "VkCache":
        return cls(settings.storage_dir)

    def path_for(self, role: str) -> Path:
        return self.root / f"{role}_vk_hash.json"

    def get(self, role: str) -> Optional[str]:
        path = self.path_for(role)
        if not path.is_file():
            return None
        try:
            doc = read_json(path)
        except (OSError, ValueError) as e:
            # Unreadable entry is treated as a miss; the next registration rewrites it.
            log.warning("vk_cache_unreadable", role=role, path=str(path), error=str(e))
            return None
        vk_id = doc.get(VK_ID_FIELD) if isinstance(doc, dict) else None
        if not isinstance(vk_id, str) or not vk_id:
            log.warning("vk_cache_malformed", role=role, path=str(path))
            return None
        return vk_id

    def put(self, role: str, vk_id: str) -> None:
        write_json_atomic(self.path_for(role), {VK_ID_FIELD: vk_id})
        log.debug("vk_cache_stored", role=role)


class InMemoryVkCache:
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, role: str) -> Optional[str]:
        return self._data.get(role)

    def put(self, role: str, vk_id: str) -> None:
        self._data[role] = vk_id


__all__ = ["VkIdStore", "VkCache", "InMemoryVkCache", "VK_ID_FIELD"]
