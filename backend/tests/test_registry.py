"""Tests for the session registry."""
import threading

import pytest

from relay.chat.registry import DuplicateConnection, Removal, SessionRegistry


class TestInsert:
    def test_insert_returns_roster_in_join_order(self):
        registry = SessionRegistry()
        assert registry.insert("c1", "Alice") == ["Alice"]
        assert registry.insert("c2", "Bob") == ["Alice", "Bob"]
        assert registry.insert("c3", "Carol") == ["Alice", "Bob", "Carol"]

    def test_duplicate_connection_rejected(self):
        """A connection may join at most once."""
        registry = SessionRegistry()
        registry.insert("c1", "Alice")

        with pytest.raises(DuplicateConnection) as excinfo:
            registry.insert("c1", "Alice again")

        assert excinfo.value.connection_id == "c1"
        assert registry.snapshot_names() == ["Alice"]

    def test_display_names_may_repeat(self):
        """Usernames are not unique; entries are keyed by connection."""
        registry = SessionRegistry()
        registry.insert("c1", "Sam")
        registry.insert("c2", "Sam")

        assert registry.snapshot_names() == ["Sam", "Sam"]
        assert registry.size() == 2


class TestRemove:
    def test_remove_returns_name_and_roster(self):
        registry = SessionRegistry()
        registry.insert("c1", "Alice")
        registry.insert("c2", "Bob")

        removal = registry.remove("c1")

        assert removal == Removal("Alice", ["Bob"])
        assert "c1" not in registry

    def test_remove_unknown_is_noop(self):
        registry = SessionRegistry()
        registry.insert("c1", "Alice")

        assert registry.remove("nope") is None
        assert registry.snapshot_names() == ["Alice"]

    def test_remove_twice_only_mutates_once(self):
        registry = SessionRegistry()
        registry.insert("c1", "Alice")

        assert registry.remove("c1") is not None
        assert registry.remove("c1") is None
        assert registry.size() == 0

    def test_order_preserved_after_middle_removal(self):
        registry = SessionRegistry()
        for cid, name in [("c1", "Alice"), ("c2", "Bob"), ("c3", "Carol")]:
            registry.insert(cid, name)

        registry.remove("c2")
        registry.insert("c4", "Dave")

        assert registry.snapshot_names() == ["Alice", "Carol", "Dave"]
        assert registry.snapshot_ids() == ["c1", "c3", "c4"]

    def test_removing_one_duplicate_name_keeps_the_other(self):
        registry = SessionRegistry()
        registry.insert("c1", "Sam")
        registry.insert("c2", "Sam")

        registry.remove("c1")

        assert registry.snapshot_names() == ["Sam"]
        assert registry.name_of("c2") == "Sam"


class TestQueries:
    def test_snapshot_is_a_copy(self):
        registry = SessionRegistry()
        registry.insert("c1", "Alice")
        snapshot = registry.snapshot_names()

        registry.insert("c2", "Bob")

        assert snapshot == ["Alice"]

    def test_name_of_and_size(self):
        registry = SessionRegistry()
        assert registry.name_of("c1") is None
        assert len(registry) == 0

        registry.insert("c1", "Alice")

        assert registry.name_of("c1") == "Alice"
        assert len(registry) == 1

    def test_clear(self):
        registry = SessionRegistry()
        registry.insert("c1", "Alice")
        registry.clear()
        assert registry.snapshot_names() == []


def test_concurrent_joins_and_leaves_leave_consistent_roster():
    """Roster equals exactly the connections that are still joined."""
    registry = SessionRegistry()

    def churn(worker: int) -> None:
        for i in range(200):
            cid = f"w{worker}-{i}"
            registry.insert(cid, f"user-{worker}-{i}")
            if i % 2 == 0:
                registry.remove(cid)

    threads = [threading.Thread(target=churn, args=(w,)) for w in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    ids = registry.snapshot_ids()
    assert len(ids) == 4 * 100
    assert all(int(cid.split("-")[1]) % 2 == 1 for cid in ids)
    assert registry.snapshot_names() == [registry.name_of(cid) for cid in ids]
