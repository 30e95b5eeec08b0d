"""Tests for the JSON Storage base layer."""

import json

import pytest

from kestrel_delegation.core.security import SecurityError, validate_storage_key
from kestrel_delegation.storage.store import Storage


@pytest.fixture
def storage(tmp_path):
    return Storage(tmp_path)


class TestStorage:
    """JSON-per-key persistence with traversal protection."""

    @pytest.mark.asyncio
    async def test_write_then_read(self, storage, tmp_path):
        await storage.write(["delegation", "abc"], {"id": "abc", "status": "pending"})

        assert await storage.read(["delegation", "abc"]) == {"id": "abc", "status": "pending"}
        on_disk = json.loads((tmp_path / "storage" / "delegation" / "abc.json").read_text())
        assert on_disk["status"] == "pending"

    @pytest.mark.asyncio
    async def test_write_leaves_no_temp_files(self, storage, tmp_path):
        await storage.write(["profile", "p1"], {"v": 1})
        await storage.write(["profile", "p1"], {"v": 2})

        files = sorted(p.name for p in (tmp_path / "storage" / "profile").iterdir())

        assert files == ["p1.json"]
        assert await storage.read(["profile", "p1"]) == {"v": 2}

    @pytest.mark.asyncio
    async def test_read_missing_or_corrupt(self, storage, tmp_path):
        assert await storage.read(["profile", "missing"]) is None

        corrupt = tmp_path / "storage" / "profile" / "bad.json"
        corrupt.parent.mkdir(parents=True)
        corrupt.write_text("{not json")

        assert await storage.read(["profile", "bad"]) is None

    @pytest.mark.asyncio
    async def test_remove(self, storage):
        await storage.write(["delegation", "d"], {"status": "pending"})

        assert await storage.remove(["delegation", "d"]) is True
        assert await storage.read(["delegation", "d"]) is None
        assert await storage.remove(["delegation", "d"]) is False

    @pytest.mark.asyncio
    async def test_list_keys(self, storage):
        await storage.write(["message", "d1", "m2"], {})
        await storage.write(["message", "d1", "m1"], {})
        await storage.write(["message", "d2", "m3"], {})

        assert await storage.list(["message", "d1"]) == [
            ["message", "d1", "m1.json"],
            ["message", "d1", "m2.json"],
        ]
        assert await storage.list(["nothing"]) == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("key", ["..", "../etc", "a/b", "a\\b", ""])
    async def test_traversal_rejected(self, storage, key):
        with pytest.raises(SecurityError):
            await storage.write(["profile", key], {})

    def test_validate_storage_key_accepts_ids(self):
        assert validate_storage_key("builtin-researcher") == "builtin-researcher"
