"""Unit tests for dataset persistence."""

import json

from livewatch.storage.persistence import JsonFilePersistence, MemoryPersistence


class TestMemoryPersistence:
    """Test MemoryPersistence."""

    def test_load_returns_copies(self):
        """Test that callers cannot mutate stored datasets in place."""
        persistence = MemoryPersistence()
        value = {"a": [1]}
        persistence.save("data", value)
        value["a"].append(2)

        loaded = persistence.load("data", {})
        loaded["a"].append(3)

        assert persistence.load("data", {}) == {"a": [1]}
        assert persistence.load("missing", {"x": 1}) == {"x": 1}
        assert persistence.save_count == 1


class TestJsonFilePersistence:
    """Test JsonFilePersistence."""

    def test_creates_directory(self, tmp_path):
        """Test that the data directory is created."""
        data_dir = tmp_path / "nested" / "data"
        JsonFilePersistence(data_dir)

        assert data_dir.is_dir()

    def test_save_without_loop_writes_inline(self, tmp_path):
        """Test synchronous saving outside of an event loop."""
        persistence = JsonFilePersistence(tmp_path)

        persistence.save("entities", {"1": {"name": "Alice"}})

        assert json.loads((tmp_path / "entities.json").read_text(encoding="utf-8")) == {
            "1": {"name": "Alice"}
        }
        assert persistence.load("entities", {}) == {"1": {"name": "Alice"}}

    async def test_write_behind_coalesces_and_flushes(self, tmp_path):
        """Test that the latest payload wins and flush waits for it."""
        persistence = JsonFilePersistence(tmp_path)

        for n in range(5):
            persistence.save("group-subs", {"G1": {"entity_ids": list(range(n))}})
        await persistence.flush()

        assert persistence.load("group-subs", {}) == {"G1": {"entity_ids": [0, 1, 2, 3]}}
        assert not (tmp_path / "group-subs.json.tmp").exists()

    async def test_save_snapshots_value(self, tmp_path):
        """Test that mutations after save do not leak into the write."""
        persistence = JsonFilePersistence(tmp_path)
        value = {"ids": [1]}

        persistence.save("data", value)
        value["ids"].append(2)
        await persistence.flush()

        assert persistence.load("data", {}) == {"ids": [1]}

    def test_corrupt_file_falls_back_to_default(self, tmp_path):
        """Test that an unreadable dataset loads as the default."""
        (tmp_path / "entities.json").write_text("{not json", encoding="utf-8")
        persistence = JsonFilePersistence(tmp_path)

        assert persistence.load("entities", {}) == {}
        assert persistence.load("absent", []) == []

    def test_unicode_round_trip(self, tmp_path):
        """Test that non-ASCII names survive."""
        persistence = JsonFilePersistence(tmp_path)

        persistence.save("entities", {"1": {"name": "直播间"}})

        assert "直播间" in (tmp_path / "entities.json").read_text(encoding="utf-8")
        assert persistence.load("entities", {})["1"]["name"] == "直播间"
