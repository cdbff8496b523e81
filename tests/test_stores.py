"""Tests for the observable domain stores."""

import logging

from dashsync.stores import DomainStores, Store


class TestStore:
    def test_set_state_merges_shallowly(self):
        store = Store("app", {"tasks": [], "notes": ["n"]})

        store.set_state({"tasks": ["t"]})

        assert store.get_state() == {"tasks": ["t"], "notes": ["n"]}

    def test_get_state_returns_copy(self):
        store = Store("app", {"tasks": []})

        store.get_state()["tasks"] = ["changed"]

        assert store.get_state() == {"tasks": []}

    def test_notifies_on_every_set(self):
        store = Store("app", {"tasks": []})
        calls = []
        store.subscribe(lambda: calls.append(1))

        store.set_state({"tasks": []})
        store.set_state({})

        assert len(calls) == 2

    def test_unsubscribe_is_idempotent(self):
        store = Store("app", {})
        calls = []
        unsubscribe = store.subscribe(lambda: calls.append(1))

        unsubscribe()
        unsubscribe()
        store.set_state({"x": 1})

        assert calls == []
        assert store.listener_count == 0

    def test_failing_listener_does_not_block_others(self, caplog):
        store = Store("habits", {})
        calls = []

        def broken():
            raise RuntimeError("boom")

        store.subscribe(broken)
        store.subscribe(lambda: calls.append(1))

        with caplog.at_level(logging.ERROR, logger="dashsync.stores"):
            store.set_state({"habits": []})

        assert calls == [1]
        assert "boom" in caplog.text


class TestDomainStores:
    def test_default_areas(self):
        stores = DomainStores.default()

        assert [name for name, _ in stores.items()] == ["app", "habits", "reminders"]
        assert stores.get("habits") is stores.habits
        assert stores.reminders.get_state()["selected_date"] is not None

    def test_defaults_are_independent(self):
        first = DomainStores.default()
        second = DomainStores.default()

        first.app.set_state({"tasks": [{"id": "t1"}]})

        assert second.app.get_state()["tasks"] == []

    def test_subscribe_covers_every_store(self):
        stores = DomainStores.default()
        seen = []
        stores.subscribe(lambda: seen.append(1))

        stores.app.set_state({"notes": []})
        stores.habits.set_state({"habits": []})
        stores.reminders.set_state({"view_mode": "timeline"})

        assert len(seen) == 3

    def test_single_disposer_releases_all(self):
        stores = DomainStores.default()
        dispose = stores.subscribe(lambda: None)

        dispose()

        assert all(store.listener_count == 0 for _, store in stores.items())
