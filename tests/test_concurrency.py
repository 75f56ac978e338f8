"""Concurrent writers and readers against one knowledge base.

Writes are serialized by the store; readers work from published snapshots,
so every snapshot must have a tag index that matches its entries exactly.
"""

import threading
from concurrent.futures import ThreadPoolExecutor

from conftest import assert_index_consistent
from devkb.store import EntryStore


def _snapshot_consistent(snapshot) -> bool:
    for entry in snapshot.entries.values():
        for tag in entry.tags:
            if entry.id not in snapshot.tag_index.entries_for_tag(tag):
                return False
    for tag in snapshot.tag_index.tags():
        for entry_id in snapshot.tag_index.entries_for_tag(tag):
            entry = snapshot.entries.get(entry_id)
            if entry is None or tag not in entry.tags:
                return False
    return True


class TestConcurrentAccess:
    def test_parallel_creates_get_unique_ids(self, kb):
        def create(i: int):
            return kb.create_entry("code", f"Entry {i}", "body", [f"t{i % 5}", "shared"])

        with ThreadPoolExecutor(max_workers=8) as pool:
            entries = list(pool.map(create, range(80)))

        assert len({e.id for e in entries}) == 80
        assert kb.stats().total_entries == 80
        assert kb.entries_for_tag("shared") == {e.id for e in entries}
        assert_index_consistent(kb)

    def test_readers_never_see_inconsistent_snapshot(self, kb):
        stop = threading.Event()
        failures: list[str] = []

        def reader():
            while not stop.is_set():
                if not _snapshot_consistent(kb.store.snapshot()):
                    failures.append("inconsistent snapshot")
                    return

        def writer(offset: int):
            created = []
            for i in range(25):
                created.append(kb.create_entry("process", f"W{offset}-{i}", "body", ["a", f"w{offset}"]))
            for entry in created[::2]:
                kb.remove_entry(entry.id)

        readers = [threading.Thread(target=reader) for _ in range(3)]
        for t in readers:
            t.start()
        try:
            with ThreadPoolExecutor(max_workers=4) as pool:
                list(pool.map(writer, range(4)))
        finally:
            stop.set()
            for t in readers:
                t.join()

        assert failures == []
        assert kb.stats().total_entries == 4 * 12
        assert_index_consistent(kb)

    def test_parallel_searches_all_recorded(self, kb):
        kb.create_entry("code", "Auth", "body", ["auth"])

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: kb.search("auth"), range(40)))

        assert all(len(hits) == 1 for hits in results)
        assert kb.stats().search_history_count == 40

    def test_state_persisted_after_concurrent_writes(self, kb, tmp_data_dir):
        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(lambda i: kb.create_entry("code", f"E{i}", "body"), range(30)))

        reloaded = EntryStore(tmp_data_dir)

        assert {e.id for e in reloaded.list()} == {e.id for e in kb.store.list()}
