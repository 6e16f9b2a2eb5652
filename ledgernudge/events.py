from enum import Enum, auto
from typing import Callable, Dict, Any, Optional
import threading
import uuid
import weakref
import inspect
import logging

logger = logging.getLogger(__name__)


class AppEvent(Enum):
    """Reminder lifecycle events for the observer pattern."""
    REMINDER_SCHEDULED = auto()
    REMINDER_CANCELLED = auto()
    REMINDER_DELIVERED = auto()
    REMINDER_BLOCKED = auto()
    REMINDER_UNRESOLVED = auto()
    REMINDER_PERMISSION_CHANGED = auto()
    REMINDER_SETTINGS_CHANGED = auto()
    REMINDER_TAPPED = auto()


class Subscription:
    """Handle returned by EventBus.subscribe().

    With strong=True the handle owns the callback, so it must be stored
    for the subscription to stay alive.
    """

    def __init__(
        self,
        event_bus: "EventBus",
        event: AppEvent,
        subscription_id: str,
        strong_ref: Optional[Callable[[Any], None]] = None,
    ):
        self._event_bus = event_bus
        self._event = event
        self._subscription_id = subscription_id
        self._active = True
        self._strong_ref = strong_ref

    @property
    def id(self) -> str:
        return self._subscription_id

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        if self._active:
            self._event_bus._unsubscribe_by_id(self._event, self._subscription_id)
            self._active = False
            self._strong_ref = None


class _CallbackRef:
    """Weak reference to a subscriber (WeakMethod for bound methods)."""

    def __init__(self, callback: Callable[[Any], None], on_dead: Callable[[], None]):
        self._on_dead = on_dead
        if inspect.ismethod(callback):
            self._ref = weakref.WeakMethod(callback, self._dead)
        else:
            try:
                self._ref = weakref.ref(callback, self._dead)
            except TypeError:
                # Builtins cannot be weakly referenced
                self._ref = lambda: callback

    def _dead(self, _ref) -> None:
        self._on_dead()

    def __call__(self) -> Optional[Callable[[Any], None]]:
        return self._ref()


class EventBus:
    """Singleton event bus decoupling the reminder engine from its observers.

    Subscribers are held weakly, so a settings screen that is torn down
    without unsubscribing does not keep receiving reminder events.
    """
    _instance: Optional["EventBus"] = None
    _instance_lock = threading.Lock()

    def __new__(cls) -> "EventBus":
        if cls._instance is None:
            with cls._instance_lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._listeners: Dict[AppEvent, Dict[str, _CallbackRef]] = {}
        return cls._instance

    def subscribe(
        self,
        event: AppEvent,
        callback: Callable[[Any], None],
        strong: bool = False,
    ) -> Subscription:
        """Subscribe a callback to an event. Returns a Subscription for cleanup.

        Lambdas and closures are always held strongly (they would otherwise be
        collected immediately); store the Subscription and unsubscribe later.
        """
        listeners = self._listeners.setdefault(event, {})
        subscription_id = str(uuid.uuid4())

        is_lambda = getattr(callback, "__name__", "") == "<lambda>"
        is_closure = not inspect.ismethod(callback) and getattr(callback, "__closure__", None) is not None
        if is_lambda or is_closure:
            strong = True

        def on_dead():
            self._unsubscribe_by_id(event, subscription_id)

        listeners[subscription_id] = _CallbackRef(callback, on_dead)
        return Subscription(self, event, subscription_id, strong_ref=callback if strong else None)

    def _unsubscribe_by_id(self, event: AppEvent, subscription_id: str) -> None:
        if event in self._listeners:
            self._listeners[event].pop(subscription_id, None)

    def emit(self, event: AppEvent, data: Any = None) -> None:
        """Emit an event to all live subscribers.

        A failing subscriber is logged and never stops delivery to the rest.
        """
        for sub_id, cb_ref in list(self._listeners.get(event, {}).items()):
            callback = cb_ref()
            if callback is None:
                self._unsubscribe_by_id(event, sub_id)
                continue
            try:
                callback(data)
            except Exception as e:
                logger.error(f"Error in event handler for {event.name}: {e}")

    def subscriber_count(self, event: AppEvent) -> int:
        return len(self._listeners.get(event, {}))

    def clear(self) -> None:
        """Clear all subscriptions. Used primarily for testing."""
        self._listeners.clear()


event_bus = EventBus()
