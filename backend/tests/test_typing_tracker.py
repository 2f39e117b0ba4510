"""Tests for typing indicator state."""
from relay.chat.typing_tracker import TypingTracker


def test_set_and_clear_by_signal():
    tracker = TypingTracker()
    tracker.set("c1", "Alice", True)
    assert tracker.is_typing("Alice")

    tracker.set("c1", "Alice", False)
    assert not tracker.is_typing("Alice")


def test_false_without_true_is_harmless():
    tracker = TypingTracker()
    tracker.set("c1", "Alice", False)
    assert tracker.typing_names() == []


def test_clear_on_disconnect():
    tracker = TypingTracker()
    tracker.set("c1", "Alice", True)

    assert tracker.clear("c1") is True
    assert tracker.clear("c1") is False
    assert not tracker.is_typing("Alice")


def test_shared_name_stays_typing_until_every_connection_stops():
    tracker = TypingTracker()
    tracker.set("c1", "Sam", True)
    tracker.set("c2", "Sam", True)

    tracker.clear("c1")
    assert tracker.is_typing("Sam")

    tracker.set("c2", "Sam", False)
    assert not tracker.is_typing("Sam")


def test_typing_names_deduplicated_in_order():
    tracker = TypingTracker()
    tracker.set("c1", "Bob", True)
    tracker.set("c2", "Alice", True)
    tracker.set("c3", "Bob", True)

    assert tracker.typing_names() == ["Bob", "Alice"]

    tracker.reset()
    assert tracker.typing_names() == []
