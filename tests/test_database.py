from database import HISTORY_LIMIT, HistoryStore


def test_history_keeps_newest_entries_only(tmp_path):
    store = HistoryStore(f"sqlite:///{tmp_path / 'history.db'}")
    for n in range(HISTORY_LIMIT + 3):
        store.save(f"https://site{n}.com", f"kw{n}")

    recent = store.recent()
    assert len(recent) == HISTORY_LIMIT
    assert recent[0]["url"] == f"https://site{HISTORY_LIMIT + 2}.com"
    assert recent[-1]["url"] == "https://site3.com"
    assert recent[0]["keyword"] == f"kw{HISTORY_LIMIT + 2}"


def test_missing_keyword_reads_as_empty(tmp_path):
    store = HistoryStore(f"sqlite:///{tmp_path / 'history.db'}", limit=3)
    store.save("https://example.com")
    assert store.recent()[0]["keyword"] == ""


def test_unreachable_database_reads_as_empty_history(tmp_path):
    store = HistoryStore(f"sqlite:///{tmp_path / 'missing' / 'dir' / 'history.db'}")
    store.save("https://example.com")
    assert store.recent() == []
