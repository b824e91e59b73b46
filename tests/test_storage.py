"""
Unit tests for persisted session storage.
"""

import stat

import pytest

from ekarbot.auth.errors import StorageError
from ekarbot.auth.storage import FileStorage, MemoryStorage


class TestMemoryStorage:
    """Test the in-memory store."""

    def test_set_get_remove(self):
        """Test basic operations."""
        storage = MemoryStorage({"a": "1"})
        storage.set("b", "2")
        storage.remove("a")
        storage.remove("missing")

        assert storage.get("a") is None
        assert storage.get("b") == "2"
        assert storage.keys() == ["b"]


class TestFileStorage:
    """Test the JSON file store."""

    def test_values_survive_new_instance(self, tmp_path):
        """Test that a second instance reads what the first wrote."""
        path = tmp_path / "session.json"
        FileStorage(path).set("sales_agent_token", "abc")

        assert FileStorage(path).get("sales_agent_token") == "abc"

    def test_file_is_owner_only(self, tmp_path):
        """Test file permissions."""
        path = tmp_path / "session.json"
        FileStorage(path).set("k", "v")

        assert stat.S_IMODE(path.stat().st_mode) == 0o600

    def test_last_remove_deletes_file(self, tmp_path):
        """Test that removing the final key removes the file."""
        path = tmp_path / "session.json"
        storage = FileStorage(path)
        storage.set("a", "1")
        storage.set("b", "2")

        storage.remove("a")
        assert path.exists()
        storage.remove("b")
        assert not path.exists()

    def test_corrupt_file_reads_empty(self, tmp_path):
        """Test that a corrupt file is treated as empty."""
        path = tmp_path / "session.json"
        path.write_text("{broken")

        storage = FileStorage(path)
        assert storage.get("k") is None

        storage.set("k", "v")
        assert storage.get("k") == "v"

    def test_non_object_file_reads_empty(self, tmp_path):
        """Test that a JSON list is ignored."""
        path = tmp_path / "session.json"
        path.write_text("[1, 2]")

        assert FileStorage(path).get("0") is None

    def test_unwritable_location(self, tmp_path):
        """Test that write failures raise StorageError."""
        blocker = tmp_path / "blocker"
        blocker.write_text("")

        with pytest.raises(StorageError):
            FileStorage(blocker / "session.json").set("k", "v")
