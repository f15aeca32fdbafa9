from abc import ABC, abstractmethod
from typing import Callable, Optional


class ScheduledHandle(ABC):
    @abstractmethod
    def cancel(self) -> None:
        pass

    @property
    @abstractmethod
    def active(self) -> bool:
        pass


class Scheduler(ABC):
    """Timer source for the periodic tasks and the collapse debounce.

    Implementations run callbacks on a single thread, and a periodic callback
    never overlaps a previous run of itself.
    """

    @abstractmethod
    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> ScheduledHandle:
        pass

    @abstractmethod
    def call_every(self, interval_ms: int, callback: Callable[[], None]) -> ScheduledHandle:
        pass


class DebouncedAction:
    """A one-shot delayed action that can be cancelled before it fires.

    ``schedule`` while already pending is a no-op, so repeated triggers do not
    push the deadline back.
    """

    def __init__(self, scheduler: Scheduler, delay_ms: int, action: Callable[[], None]) -> None:
        self.scheduler = scheduler
        self.delay_ms = delay_ms
        self.action = action
        self._handle: Optional[ScheduledHandle] = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def schedule(self) -> bool:
        if self._handle is not None:
            return False
        self._handle = self.scheduler.call_later(self.delay_ms, self._fire)
        return True

    def cancel(self) -> bool:
        if self._handle is None:
            return False
        handle, self._handle = self._handle, None
        handle.cancel()
        return True

    def _fire(self) -> None:
        self._handle = None
        self.action()
