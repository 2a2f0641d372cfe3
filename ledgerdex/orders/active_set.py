"""
Dense, persisted index of live order ids.

Slots ``<prefix>0 .. <prefix>(count-1)`` each hold one id and a reverse
entry maps the id back to its slot, so removal is swap-with-last and never
leaves a hole. A scan cursor lets a capped trigger walk the set
round-robin across runs.
"""

from __future__ import annotations

from typing import List

from ..host.ledger import Storage


class ActiveSet:

    def __init__(self, storage: Storage, prefix: str, count_key: str):
        self.storage = storage
        self.prefix = prefix
        self.count_key = count_key
        self._index_prefix = f"{prefix}index:"
        self._cursor_key = f"{prefix}cursor"

    def _slot_key(self, slot: int) -> str:
        return f"{self.prefix}{slot}"

    def _index_key(self, entry_id: int) -> str:
        return f"{self._index_prefix}{entry_id}"

    def __len__(self) -> int:
        return self.storage.get_int(self.count_key)

    def __contains__(self, entry_id: int) -> bool:
        return self.storage.has(self._index_key(entry_id))

    def add(self, entry_id: int) -> bool:
        if entry_id in self:
            return False
        count = len(self)
        self.storage.set(self._slot_key(count), entry_id)
        self.storage.set(self._index_key(entry_id), count)
        self.storage.set(self.count_key, count + 1)
        return True

    def remove(self, entry_id: int) -> bool:
        if entry_id not in self:
            return False
        slot = self.storage.get_int(self._index_key(entry_id))
        last = len(self) - 1
        if slot != last:
            moved = self.storage.get_int(self._slot_key(last))
            self.storage.set(self._slot_key(slot), moved)
            self.storage.set(self._index_key(moved), slot)
        self.storage.delete(self._slot_key(last))
        self.storage.delete(self._index_key(entry_id))
        self.storage.set(self.count_key, last)
        return True

    def ids(self) -> List[int]:
        return [self.storage.get_int(self._slot_key(i)) for i in range(len(self))]

    def window(self, limit: int) -> List[int]:
        """Up to ``limit`` ids starting at the cursor, wrapping; advances the cursor."""
        count = len(self)
        if count == 0:
            return []
        size = min(limit, count)
        start = self.storage.get_int(self._cursor_key) % count
        selected = [self.storage.get_int(self._slot_key((start + i) % count)) for i in range(size)]
        self.storage.set(self._cursor_key, (start + size) % count)
        return selected
