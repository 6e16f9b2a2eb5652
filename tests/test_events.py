"""Tests for the event bus and translations."""
import gc

import i18n
from events import AppEvent, event_bus
from i18n import t


class Listener:
    def __init__(self):
        self.received = []

    def on_event(self, data):
        self.received.append(data)


class TestEventBus:
    def test_bound_method_receives_events(self):
        listener = Listener()
        sub = event_bus.subscribe(AppEvent.REMINDER_SCHEDULED, listener.on_event)
        event_bus.emit(AppEvent.REMINDER_SCHEDULED, {"reason": "x"})
        assert listener.received == [{"reason": "x"}]
        sub.unsubscribe()
        event_bus.emit(AppEvent.REMINDER_SCHEDULED, {"reason": "y"})
        assert len(listener.received) == 1

    def test_dead_listener_is_dropped(self):
        listener = Listener()
        event_bus.subscribe(AppEvent.REMINDER_BLOCKED, listener.on_event)
        assert event_bus.subscriber_count(AppEvent.REMINDER_BLOCKED) == 1
        del listener
        gc.collect()
        event_bus.emit(AppEvent.REMINDER_BLOCKED, None)
        assert event_bus.subscriber_count(AppEvent.REMINDER_BLOCKED) == 0

    def test_failing_handler_does_not_stop_others(self):
        received = []

        def broken(data):
            raise RuntimeError("boom")

        sub1 = event_bus.subscribe(AppEvent.REMINDER_DELIVERED, broken, strong=True)
        sub2 = event_bus.subscribe(AppEvent.REMINDER_DELIVERED, lambda data: received.append(data))
        event_bus.emit(AppEvent.REMINDER_DELIVERED, 1)
        assert received == [1]
        sub1.unsubscribe()
        sub2.unsubscribe()


class TestTranslations:
    def test_english_default(self):
        assert t("reminder_title") == "Quick check-in"

    def test_romanian(self):
        i18n.set_language("ro")
        try:
            assert t("reminder_title") == "Verificare rapidă"
        finally:
            i18n.set_language("en")

    def test_unknown_language_is_ignored(self):
        i18n.set_language("xx")
        assert i18n.get_language() == "en"

    def test_unknown_key_falls_back_to_key(self):
        assert t("missing_key") == "missing_key"
