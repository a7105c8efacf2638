"""Tests for the per-file change history store."""

from datetime import datetime, timedelta, timezone

from edit_engine.models import FileChangeRecord, FileChangeType
from edit_engine.services.history import ChangeHistoryStore, normalize_path_key


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
WINDOW = timedelta(minutes=30)


def make_record(path: str = "/ws/a.txt", minutes_ago: int = 0, **overrides) -> FileChangeRecord:
    defaults = dict(
        file_path=path,
        change_type=FileChangeType.MODIFIED,
        backup_path=f"/backups/{minutes_ago}",
        changed_at=NOW - timedelta(minutes=minutes_ago),
    )
    defaults.update(overrides)
    return FileChangeRecord(**defaults)


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------

class TestChangeHistoryStore:
    """Tests for ChangeHistoryStore stacks."""

    def test_push_and_peek(self):
        store = ChangeHistoryStore()
        first, second = make_record(), make_record()
        store.push(first)
        store.push(second)
        assert store.peek("/ws/a.txt") is second

    def test_peek_unknown_path(self):
        assert ChangeHistoryStore().peek("/ws/missing.txt") is None

    def test_capacity_drops_oldest(self):
        store = ChangeHistoryStore(max_history_per_file=3)
        records = [make_record() for _ in range(5)]
        for record in records:
            store.push(record)
        assert store.history("/ws/a.txt") == list(reversed(records[2:]))

    def test_history_is_newest_first_and_limited(self):
        store = ChangeHistoryStore()
        records = [make_record() for _ in range(4)]
        for record in records:
            store.push(record)
        assert store.history("/ws/a.txt", max_records=2) == [records[3], records[2]]

    def test_latest_active_skips_undone(self):
        store = ChangeHistoryStore()
        older, newer = make_record(), make_record()
        store.push(older)
        store.push(newer)
        newer.mark_undone()
        assert store.latest_active("/ws/a.txt") is older

    def test_find_by_id_across_paths(self):
        store = ChangeHistoryStore()
        target = make_record("/ws/b.txt")
        store.push(make_record())
        store.push(target)
        assert store.find(target.id) is target
        assert store.find("missing") is None

    def test_pending_undos_newest_first(self):
        store = ChangeHistoryStore()
        old = make_record("/ws/a.txt", minutes_ago=10)
        new = make_record("/ws/b.txt", minutes_ago=1)
        expired = make_record("/ws/c.txt", minutes_ago=45)
        for record in (old, new, expired):
            store.push(record)
        assert store.pending_undos(WINDOW, now=NOW) == [new, old]

    def test_prune_keeps_newest_record_per_path(self):
        """Expired records go, but the conflict baseline survives."""
        store = ChangeHistoryStore()
        store.push(make_record(minutes_ago=90))
        store.push(make_record(minutes_ago=60))
        latest = make_record(minutes_ago=40)
        store.push(latest)
        lone = make_record("/ws/b.txt", minutes_ago=120)
        store.push(lone)

        removed = store.prune_expired(WINDOW, now=NOW)

        assert removed == 2
        assert store.history("/ws/a.txt") == [latest]
        assert store.peek("/ws/b.txt") is lone

    def test_paths_are_normalized(self):
        store = ChangeHistoryStore()
        store.push(make_record("/ws/dir/../a.txt"))
        assert store.peek("/ws/a.txt") is not None
        assert store.paths() == [normalize_path_key("/ws/a.txt")]

    def test_clear(self):
        store = ChangeHistoryStore()
        store.push(make_record("/ws/a.txt"))
        store.push(make_record("/ws/b.txt"))
        store.clear("/ws/a.txt")
        assert store.peek("/ws/a.txt") is None
        store.clear()
        assert store.paths() == []
