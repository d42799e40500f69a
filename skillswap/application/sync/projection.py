from __future__ import annotations

import logging
from typing import Callable, Generic, Iterable, Iterator, Optional, TypeVar

from ...core.domain.models import ChangeType
from ...infrastructure.metrics import STALE_RESULTS

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _by_id(row: object) -> str:
    return str(getattr(row, "id"))


class ProjectionCache(Generic[T]):
    """Last-known rows of one screen, keyed by id.

    Two write paths: ``replace_all`` after an authoritative reload and ``apply``
    for feed patches. Every reload bumps the generation; results carrying an
    older generation are dropped, so a newer reload wins over older reloads and
    over patches prepared before it started.
    """

    def __init__(self, name: str = "", key: Callable[[T], str] = _by_id) -> None:
        self.name = name
        self._key = key
        self._rows: dict[str, T] = {}
        self._generation = 0
        self.loaded = False

    @property
    def generation(self) -> int:
        return self._generation

    def begin_reload(self) -> int:
        self._generation += 1
        return self._generation

    def patch_token(self) -> int:
        return self._generation

    def is_current(self, token: int) -> bool:
        return token == self._generation

    def replace_all(self, token: int, rows: Iterable[T]) -> bool:
        if token != self._generation:
            STALE_RESULTS.labels("reload").inc()
            logger.debug("STALE_RELOAD cache=%s token=%s current=%s", self.name, token, self._generation)
            return False
        self._rows = {self._key(r): r for r in rows}
        self.loaded = True
        return True

    def apply(self, kind: ChangeType, row: T, token: Optional[int] = None) -> bool:
        if token is not None and token != self._generation:
            STALE_RESULTS.labels("patch").inc()
            logger.debug("STALE_PATCH cache=%s token=%s current=%s", self.name, token, self._generation)
            return False
        key = self._key(row)
        if kind is ChangeType.delete:
            return self._rows.pop(key, None) is not None
        self._rows[key] = row
        return True

    def remove(self, key: str) -> bool:
        return self._rows.pop(key, None) is not None

    def get(self, key: str) -> Optional[T]:
        return self._rows.get(key)

    def values(self) -> list[T]:
        return list(self._rows.values())

    def clear(self) -> None:
        self._generation += 1
        self._rows = {}
        self.loaded = False

    def __contains__(self, key: object) -> bool:
        return key in self._rows

    def __len__(self) -> int:
        return len(self._rows)

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._rows.values()))
