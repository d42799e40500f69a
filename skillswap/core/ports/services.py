from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable

from ..domain.models import ChangeEvent


class FeedStream(ABC):
    """Open subscription on the change feed; iterate for events, close to detach."""

    def __aiter__(self) -> "FeedStream":
        return self

    @abstractmethod
    async def __anext__(self) -> ChangeEvent:
        raise NotImplementedError

    @abstractmethod
    async def close(self) -> None:
        raise NotImplementedError


class ChangeFeedBus(ABC):
    @abstractmethod
    async def publish(self, event: ChangeEvent) -> None:
        raise NotImplementedError

    @abstractmethod
    async def subscribe(self, tables: Iterable[str]) -> FeedStream:
        """Returns once the subscription is established; events committed afterwards are delivered."""
        raise NotImplementedError


class Clock(ABC):
    @abstractmethod
    def now(self) -> datetime:
        raise NotImplementedError


class Notifier(ABC):
    """User-facing alerts and reminders (blocking alert dialogs on a device)."""

    @abstractmethod
    def alert(self, title: str, message: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def remind(self, title: str, message: str) -> None:
        raise NotImplementedError
