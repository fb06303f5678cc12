from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

from rolepost.storage import MessagePackStore

MAX_LOG_ROWS = 2000

LogListener = Callable[[dict[str, object]], None]


class LoggerService:
    """Dotted-event log kept as a bounded ring in the store and echoed to stdout.

    Listeners see every row after it is stored; a listener that raises is
    skipped for that row and stays subscribed.
    """

    def __init__(self, store: MessagePackStore, *, max_rows: int = MAX_LOG_ROWS) -> None:
        self.store = store
        self.max_rows = max(1, int(max_rows))
        self._listeners: list[LogListener] = []

    def subscribe(self, listener: LogListener) -> None:
        self._listeners.append(listener)

    def log(self, event: str, **data: object) -> None:
        row: dict[str, object] = {
            "ts": datetime.now(tz=timezone.utc).isoformat(),
            "event": event,
            "data": {key: _storable(value) for key, value in data.items()},
        }
        rows = self.store.section("logs", list)
        rows.append(row)
        overflow = len(rows) - self.max_rows
        if overflow > 0:
            del rows[:overflow]
        self.store.touch()
        details = " ".join(f"{key}={value}" for key, value in row["data"].items())  # type: ignore[union-attr]
        print(f"[{row['ts']}] {event} {details}".rstrip())
        for listener in self._listeners:
            try:
                listener(row)
            except Exception:  # noqa: BLE001
                continue

    def recent(self, limit: int = 20, *, suffix: str = "") -> list[dict[str, object]]:
        """Newest-last slice of the ring, optionally only events ending with `suffix`."""
        if limit <= 0:
            return []
        rows = self.store.section("logs", list)
        if suffix:
            rows = [row for row in rows if str(row.get("event", "")).endswith(suffix)]
        return list(rows[-limit:])


def _storable(value: object) -> object:
    # msgpack only packs plain values; anything else is kept as its repr.
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, (list, tuple)):
        return [_storable(item) for item in value]
    if isinstance(value, dict):
        return {str(key): _storable(item) for key, item in value.items()}
    return repr(value)
