from __future__ import annotations

"""Open position book keyed by (symbol, direction, market) plus the closed ledger."""

import logging
import threading
from copy import deepcopy
from typing import Iterable, Optional

from .models import Position, PositionKey

logger = logging.getLogger("levsim.engine.book")


class DuplicatePositionError(KeyError):
    """Raised when inserting a key that already maps to an open position."""


class PositionBook:
    """At most one open position per key; closes append to an ordered ledger.

    ``get`` hands out the live object so the simulator can mutate it under its
    own lock. Every public listing returns copies.
    """

    def __init__(self) -> None:
        self._open: dict[PositionKey, Position] = {}
        self._ledger: list[Position] = []
        self._closed_ids: set[str] = set()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._open)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._open

    def insert(self, position: Position) -> None:
        key = position.key
        with self._lock:
            if key in self._open:
                raise DuplicatePositionError(key)
            self._open[key] = position

    def get(self, key: PositionKey) -> Optional[Position]:
        with self._lock:
            return self._open.get(key)

    def keys(self) -> list[PositionKey]:
        with self._lock:
            return list(self._open)

    def open_positions(self) -> list[Position]:
        with self._lock:
            return [deepcopy(position) for position in self._open.values()]

    def symbols(self) -> list[str]:
        with self._lock:
            return sorted({key[0] for key in self._open})

    def reserved_margin(self) -> float:
        with self._lock:
            return sum(position.reserved_margin for position in self._open.values())

    def can_close(self, position: Position) -> bool:
        with self._lock:
            return position.id not in self._closed_ids

    def position_ids(self) -> list[str]:
        """Ids of open and closed positions."""
        with self._lock:
            return [position.id for position in self._open.values()] + [p.id for p in self._ledger]

    def close(self, position: Position) -> bool:
        """Move ``position`` to the ledger; ``False`` if it was already recorded."""
        with self._lock:
            if position.id in self._closed_ids:
                logger.debug("Ignoring repeated close for %s", position.id)
                return False
            current = self._open.get(position.key)
            if current is not None and current.id == position.id:
                del self._open[position.key]
            self._closed_ids.add(position.id)
            self._ledger.append(deepcopy(position))
            return True

    def ledger(self) -> list[Position]:
        """Closed positions in close order, oldest first."""
        with self._lock:
            return [deepcopy(position) for position in self._ledger]

    def closed_positions(self, limit: Optional[int] = 50) -> list[Position]:
        """Most recent closes first."""
        with self._lock:
            items = self._ledger[::-1]
            if limit is not None:
                items = items[: max(0, limit)]
            return [deepcopy(position) for position in items]

    def restore(self, open_positions: Iterable[Position], ledger: Iterable[Position]) -> None:
        with self._lock:
            self._open = {position.key: position for position in open_positions}
            self._ledger = list(ledger)
            self._closed_ids = {position.id for position in self._ledger}

    def clear(self) -> None:
        with self._lock:
            self._open.clear()
            self._ledger.clear()
            self._closed_ids.clear()


__all__ = ["DuplicatePositionError", "PositionBook"]
