"""Kestrel Delegation - Storage layer with JSON persistence"""

from __future__ import annotations

import json
import os
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiofiles

from kestrel_delegation.core.security import SecurityError, validate_storage_key


class Storage:
    """JSON storage layer, one document per key, written atomically"""

    def __init__(self, base_dir: Path):
        """Initialize storage with base directory"""
        self.base_dir = Path(base_dir)
        self.storage_dir = self.base_dir / "storage"

    def _get_path(self, *keys: str) -> Path:
        """Get full path for a key with path traversal protection"""
        for key in keys:
            validate_storage_key(key)

        path = self.storage_dir.joinpath(*keys)
        try:
            resolved = path.resolve()
            if not str(resolved).startswith(str(self.storage_dir.resolve())):
                raise SecurityError(f"Path traversal attempt detected: {path}")
            return path
        except (OSError, RuntimeError) as e:
            raise SecurityError(f"Invalid path: {path}") from e

    @staticmethod
    def _with_ext(key: List[str]) -> List[str]:
        for segment in key:
            validate_storage_key(segment)
        key_with_ext = list(key)
        if not key_with_ext[-1].endswith(".json"):
            key_with_ext[-1] = key_with_ext[-1] + ".json"
        return key_with_ext

    async def read(self, key: List[str]) -> Optional[Dict[str, Any]]:
        """Read JSON data by key"""
        path = self._get_path(*self._with_ext(key))
        try:
            async with aiofiles.open(path, mode="r", encoding="utf-8") as f:
                content = await f.read()
        except FileNotFoundError:
            return None
        try:
            data: Dict[str, Any] = json.loads(content)
        except json.JSONDecodeError:
            return None
        return data

    async def write(self, key: List[str], data: Dict[str, Any]) -> None:
        """Write JSON data by key.

        The document is written to a sibling temp file and moved into place,
        so readers see either the old or the new document, never a partial one.
        """
        path = self._get_path(*self._with_ext(key))
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
        async with aiofiles.open(tmp_path, mode="w", encoding="utf-8") as f:
            await f.write(json.dumps(data, indent=2, ensure_ascii=False))
        os.replace(tmp_path, path)

    async def remove(self, key: List[str]) -> bool:
        """Remove data by key"""
        try:
            self._get_path(*self._with_ext(key)).unlink()
            return True
        except FileNotFoundError:
            return False

    async def list(self, prefix: List[str]) -> List[List[str]]:
        """List all keys with given prefix"""
        prefix_path = self._get_path(*prefix)
        if not prefix_path.exists():
            return []
        keys = []
        for path in prefix_path.rglob("*.json"):
            if path.name.startswith("."):
                continue
            keys.append(list(path.relative_to(self.storage_dir).parts))
        keys.sort()
        return keys
