from __future__ import annotations

from datetime import datetime, timedelta, timezone

from conversation.manager import ConversationManager


class FakeClock:
    def __init__(self):
        self.now = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def _manager(tmp_path, clock: FakeClock | None = None) -> ConversationManager:
    return ConversationManager(db_path=str(tmp_path / "conversations.db"), clock=clock or FakeClock())


def test_history_is_oldest_first_and_capped_at_ten(tmp_path):
    clock = FakeClock()
    manager = _manager(tmp_path, clock)
    for i in range(12):
        manager.save_turn("s1", f"command {i}", action="SEARCH_STOCK", parameters={"search": str(i)}, success=True)
        clock.advance(seconds=1)

    history = manager.get_history("s1")
    assert len(history) == 10
    assert history[0]["command"] == "command 2"
    assert history[-1]["command"] == "command 11"
    assert history[-1]["parameters"] == {"search": "11"}
    manager.close()


def test_turns_older_than_thirty_minutes_are_dropped(tmp_path):
    clock = FakeClock()
    manager = _manager(tmp_path, clock)
    manager.save_turn("s1", "old command", action="ADD_STOCK", success=True)
    clock.advance(minutes=31)
    assert manager.get_history("s1") == []
    assert manager.get_context_summary("s1") == "No recent context."
    manager.close()


def test_sessions_do_not_share_history(tmp_path):
    manager = _manager(tmp_path)
    manager.save_turn("s1", "add 5 nuts to van", action="ADD_STOCK", success=True)
    assert manager.get_history("s2") == []
    manager.clear_session("s1")
    assert manager.get_history("s1") == []
    manager.close()


def test_context_summary_lists_recent_commands_and_last_values(tmp_path):
    manager = _manager(tmp_path)
    manager.save_turn(
        "s1",
        "add 5 M10 nuts to rack 1",
        action="ADD_STOCK",
        parameters={"item": "M10 nuts", "quantity": 5, "location": "rack 1"},
        success=True,
    )
    manager.save_turn("s1", "rubbish", action=None, success=False)

    summary = manager.get_context_summary("s1")
    assert summary.startswith("Recent commands:\n")
    assert '- "add 5 M10 nuts to rack 1" -> ADD_STOCK' in summary
    assert '- "rubbish" -> unknown no params' in summary
    assert summary.endswith("Last item: M10 nuts\nLast location: rack 1")
    manager.close()


def test_more_and_same_reuse_last_item(tmp_path):
    manager = _manager(tmp_path)
    manager.save_turn(
        "s1",
        "add 5 M10 nuts to rack 1",
        action="ADD_STOCK",
        parameters={"item": "M10 nuts", "quantity": 5, "location": "rack 1"},
        success=True,
    )
    resolved = manager.resolve_contextual_references("s1", "add 5 more", "ADD_STOCK", {"quantity": 5})
    assert resolved == {"quantity": 5, "item": "M10 nuts", "location": "rack 1"}
    manager.close()


def test_location_reuse_only_for_actions_with_a_location(tmp_path):
    manager = _manager(tmp_path)
    manager.save_turn(
        "s1",
        "add 5 M10 nuts to rack 1",
        action="ADD_STOCK",
        parameters={"item": "M10 nuts", "quantity": 5, "location": "rack 1"},
        success=True,
    )
    resolved = manager.resolve_contextual_references("s1", "add customer ABC", "ADD_CUSTOMER", {"name": "ABC"})
    assert resolved == {"name": "ABC"}
    manager.close()


def test_failed_turns_do_not_feed_references(tmp_path):
    manager = _manager(tmp_path)
    manager.save_turn(
        "s1",
        "remove 50 filters from van",
        action="REMOVE_STOCK",
        parameters={"item": "filters", "quantity": 50, "location": "van"},
        success=False,
    )
    assert manager.last_values("s1") == {}
    assert manager.resolve_contextual_references("s1", "use 2 more", "REMOVE_STOCK", {"quantity": 2}) == {"quantity": 2}
    manager.close()
