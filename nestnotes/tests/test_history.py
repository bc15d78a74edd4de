"""Tests for search history."""

from nestnotes.journal.history import JsonFileStore, MemoryStore, SearchHistory


def test_most_recent_first_without_duplicates():
    history = SearchHistory(MemoryStore())
    history.record("beach")
    history.record("birthday")
    history.record(" beach ")

    assert history.items() == ["beach", "birthday"]


def test_capped_at_max_items():
    history = SearchHistory(MemoryStore(), max_items=8)
    for i in range(12):
        history.record(f"query {i}")

    items = history.items()
    assert len(items) == 8
    assert items[0] == "query 11"
    assert items[-1] == "query 4"


def test_blank_queries_not_recorded():
    history = SearchHistory(MemoryStore())
    history.record("   ")
    assert history.items() == []


def test_corrupt_history_is_ignored():
    store = MemoryStore({SearchHistory.KEY: "{not json"})
    history = SearchHistory(store)

    assert history.items() == []
    history.record("fresh")
    assert history.items() == ["fresh"]


def test_clear():
    history = SearchHistory(MemoryStore())
    history.record("a")
    history.clear()
    assert history.items() == []


def test_json_file_store_persists(tmp_path):
    path = tmp_path / "state" / "history.json"
    SearchHistory(JsonFileStore(path)).record("hiking")

    assert SearchHistory(JsonFileStore(path)).items() == ["hiking"]


def test_json_file_store_unreadable_file(tmp_path):
    path = tmp_path / "history.json"
    path.write_text("garbage")
    store = JsonFileStore(path)

    assert store.get("anything") is None
    store.set("k", "v")
    assert store.get("k") == "v"
