from __future__ import annotations

import asyncio
import copy
from pathlib import Path
from typing import Any, Callable

import msgpack


# Speaking-mode sessions live in SessionStore only and are never written here.
DEFAULT_STORE: dict[str, Any] = {
    "meta": {"version": 1},
    "member_sync": {
        "last_run": {},
        "members": {},
    },
    "logs": [],
}


class MessagePackStore:
    """Bot bookkeeping (event log ring, member-sync records) in one msgpack file.

    Writers mutate `data` in place and call `touch()`; the autosave loop
    flushes dirty state through a temp file so a crash never leaves a
    half-written store behind.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()
        self._dirty = False
        self.data: dict[str, Any] = copy.deepcopy(DEFAULT_STORE)

    @property
    def dirty(self) -> bool:
        return self._dirty

    def section(self, key: str, factory: Callable[[], Any] = dict) -> Any:
        """Top-level node `key`, replaced by `factory()` when missing or of the wrong type."""
        node = self.data.get(key)
        expected = type(factory())
        if not isinstance(node, expected):
            node = factory()
            self.data[key] = node
            self._dirty = True
        return node

    async def load(self) -> None:
        async with self._lock:
            if not self.path.exists():
                self.data = copy.deepcopy(DEFAULT_STORE)
                self._write()
                return
            try:
                loaded = msgpack.unpackb(self.path.read_bytes(), raw=False, strict_map_key=False)
            except (ValueError, msgpack.UnpackException) as exc:
                corrupt = self.path.with_suffix(self.path.suffix + ".corrupt")
                self.path.replace(corrupt)
                print(f"[store] unreadable {self.path} moved to {corrupt}: {exc!r}")
                loaded = {}
            self.data = loaded if isinstance(loaded, dict) else {}
            if _backfill(self.data, DEFAULT_STORE):
                self._dirty = True

    async def autosave_loop(self, interval_sec: float = 5) -> None:
        while True:
            await asyncio.sleep(interval_sec)
            if self._dirty:
                await self.save()

    async def save(self) -> None:
        async with self._lock:
            self._write()

    def touch(self) -> None:
        self._dirty = True

    def _write(self) -> None:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_bytes(msgpack.packb(self.data, use_bin_type=True))
        tmp.replace(self.path)
        self._dirty = False


def _backfill(target: dict[str, Any], defaults: dict[str, Any]) -> bool:
    changed = False
    for key, value in defaults.items():
        current = target.get(key)
        if key not in target or type(current) is not type(value):
            target[key] = copy.deepcopy(value)
            changed = True
        elif isinstance(value, dict) and _backfill(current, value):
            changed = True
    return changed
