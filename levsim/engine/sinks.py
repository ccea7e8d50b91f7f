from __future__ import annotations

"""Write-only persistence hooks notified on position open and close."""

import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Protocol

from .models import Position, Setup

logger = logging.getLogger("levsim.engine.sinks")


class PersistenceSink(Protocol):
    def on_position_opened(self, position: Position, setup: Setup) -> None:
        ...

    def on_position_closed(self, position: Position) -> None:
        ...


class NullSink:
    def on_position_opened(self, position: Position, setup: Setup) -> None:
        return None

    def on_position_closed(self, position: Position) -> None:
        return None


def _setup_payload(setup: Setup) -> dict[str, Any]:
    return {
        "symbol": setup.symbol,
        "direction": setup.direction.value,
        "state": setup.state.value,
        "current_price": setup.current_price,
        "current_rsi": setup.current_rsi,
        "timeframe": setup.timeframe,
        "market_kind": setup.market_kind.value,
        "structural_stop_price": setup.structural_stop_price,
        "structural_target_price": setup.structural_target_price,
    }


class JsonlTradeSink:
    """Append one JSON line per open/close event to ``history_file``."""

    def __init__(self, history_file: Path, *, bot_id: str = "default") -> None:
        self._history_file = Path(history_file)
        self._history_file.parent.mkdir(parents=True, exist_ok=True)
        self._bot_id = bot_id
        self._lock = threading.Lock()

    @property
    def history_file(self) -> Path:
        return self._history_file

    def on_position_opened(self, position: Position, setup: Setup) -> None:
        self._append(
            {
                "event": "opened",
                "position": position.to_dict(),
                "setup": _setup_payload(setup),
            }
        )

    def on_position_closed(self, position: Position) -> None:
        self._append({"event": "closed", "position": position.to_dict()})

    def _append(self, payload: dict[str, Any]) -> None:
        payload["bot_id"] = self._bot_id
        payload["recorded_at"] = datetime.now(timezone.utc).isoformat()
        line = json.dumps(payload, ensure_ascii=True)
        with self._lock:
            try:
                with self._history_file.open("a", encoding="utf-8") as handle:
                    handle.write(line)
                    handle.write("\n")
            except OSError as exc:
                logger.error("Failed to persist trade event to %s: %s", self._history_file, exc)


class CompositeSink:
    """Fan events out to several sinks; one failing sink does not stop the rest."""

    def __init__(self, sinks: Iterable[PersistenceSink]) -> None:
        self._sinks = list(sinks)

    def on_position_opened(self, position: Position, setup: Setup) -> None:
        for sink in self._sinks:
            try:
                sink.on_position_opened(position, setup)
            except Exception:  # noqa: BLE001
                logger.exception("Sink %s failed on open of %s", type(sink).__name__, position.id)

    def on_position_closed(self, position: Position) -> None:
        for sink in self._sinks:
            try:
                sink.on_position_closed(position)
            except Exception:  # noqa: BLE001
                logger.exception("Sink %s failed on close of %s", type(sink).__name__, position.id)


__all__ = ["CompositeSink", "JsonlTradeSink", "NullSink", "PersistenceSink"]
