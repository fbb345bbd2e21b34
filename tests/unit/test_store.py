"""Tests für die Persistenz-Stores."""

import pytest

from hecate.persistence.store import MemoryStore, SQLiteStore


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "sqlite":
        return SQLiteStore(tmp_path / "hecate.db")
    return MemoryStore()


class TestKeyValue:
    """Tests für die Key-Value-Schnittstelle."""

    def test_set_get(self, store):
        """Testet Schreiben und Lesen."""
        store.set("tuning.last_applied", {"plan_hash": "abc", "complete": True})

        assert store.get("tuning.last_applied") == {"plan_hash": "abc", "complete": True}

    def test_missing_key(self, store):
        """Testet unbekannten Schlüssel."""
        assert store.get("missing") is None

    def test_overwrite(self, store):
        """Testet Überschreiben."""
        store.set("key", 1)
        store.set("key", 2)

        assert store.get("key") == 2

    def test_delete(self, store):
        """Testet Löschen."""
        store.set("key", "value")

        assert store.delete("key") is True
        assert store.delete("key") is False
        assert store.get("key") is None

    def test_values_are_copied(self, store):
        """Testet: spätere Änderungen am Objekt wirken nicht auf den Store."""
        value = {"outcomes": {"sysctl": "applied"}}
        store.set("key", value)
        value["outcomes"]["sysctl"] = "failed"

        assert store.get("key")["outcomes"]["sysctl"] == "applied"


class TestSamples:
    """Tests für Performance-Samples."""

    def test_insertion_order(self, store):
        """Testet Reihenfolge der Samples."""
        for score in (0.1, 0.2, 0.3):
            store.add_sample("GPU-0", "training", score)

        assert store.get_samples("GPU-0", "training") == [0.1, 0.2, 0.3]

    def test_limit_keeps_newest(self, store):
        """Testet Limit auf die neuesten Samples."""
        for score in (0.1, 0.2, 0.3, 0.4):
            store.add_sample("GPU-0", "training", score)

        assert store.get_samples("GPU-0", "training", limit=2) == [0.3, 0.4]

    def test_separated_by_workload(self, store):
        """Testet Trennung nach Gerät und Workload."""
        store.add_sample("GPU-0", "training", 0.9)
        store.add_sample("GPU-0", "inference", 0.4)
        store.add_sample("GPU-1", "training", 0.2)

        assert store.get_samples("GPU-0", "inference") == [0.4]
        assert store.get_samples("GPU-1", "training") == [0.2]
        assert store.get_samples("GPU-2", "training") == []

    @pytest.mark.parametrize("kind", ["memory", "sqlite"])
    def test_retention(self, kind, tmp_path):
        """Testet: pro Gerät und Workload bleiben nur die neuesten Samples."""
        if kind == "sqlite":
            store = SQLiteStore(tmp_path / "hecate.db", max_samples=3)
        else:
            store = MemoryStore(max_samples=3)

        for score in (0.1, 0.2, 0.3, 0.4, 0.5):
            store.add_sample("GPU-0", "training", score)
        store.add_sample("GPU-0", "inference", 0.9)

        assert store.get_samples("GPU-0", "training", limit=10) == [0.3, 0.4, 0.5]
        assert store.get_samples("GPU-0", "inference") == [0.9]


class TestSQLiteStore:
    """Tests für die SQLite-Persistenz."""

    def test_survives_reopen(self, tmp_path):
        """Testet Persistenz über Instanzen hinweg."""
        path = tmp_path / "hecate.db"
        first = SQLiteStore(path)
        first.set("key", [1, 2, 3])
        first.add_sample("GPU-0", "training", 0.7)

        second = SQLiteStore(path)

        assert second.get("key") == [1, 2, 3]
        assert second.get_samples("GPU-0", "training") == [0.7]
