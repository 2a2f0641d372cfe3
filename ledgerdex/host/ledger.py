"""
Journaled key/value ledger.

One flat store holds every contract's state, coin balances and the
scheduled-message queue. Writes are journaled so the host can roll a call
back to any savepoint; a top-level commit simply forgets the journal.
"""

from __future__ import annotations

import copy
import hashlib
import json
from typing import Any, Dict, Iterator, List, Tuple

_MISSING = object()

# Contract storage lives under "<address>/<key>"
NAMESPACE_SEPARATOR = "/"


def _detach(value: Any) -> Any:
    if isinstance(value, (dict, list)):
        return copy.deepcopy(value)
    return value


class Ledger:
    """Flat KV store with an undo journal."""

    def __init__(self) -> None:
        self._data: Dict[str, Any] = {}
        self._journal: List[Tuple[str, Any]] = []

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def get(self, key: str, default: Any = None) -> Any:
        return _detach(self._data.get(key, default))

    def set(self, key: str, value: Any) -> None:
        self._journal.append((key, self._data.get(key, _MISSING)))
        self._data[key] = _detach(value)

    def delete(self, key: str) -> None:
        if key not in self._data:
            return
        self._journal.append((key, self._data[key]))
        del self._data[key]

    def keys(self, prefix: str = "") -> Iterator[str]:
        return iter(sorted(k for k in self._data if k.startswith(prefix)))

    # -- Savepoints ----------------------------------------------------

    def savepoint(self) -> int:
        return len(self._journal)

    def rollback(self, marker: int) -> None:
        """Undo every write recorded after *marker*."""
        while len(self._journal) > marker:
            key, previous = self._journal.pop()
            if previous is _MISSING:
                self._data.pop(key, None)
            else:
                self._data[key] = previous

    def commit(self) -> None:
        self._journal.clear()

    @property
    def dirty(self) -> bool:
        return bool(self._journal)

    def state_root(self) -> str:
        """Deterministic digest of the whole store."""
        payload = json.dumps(sorted(self._data.items()), default=str, separators=(",", ":"))
        return hashlib.blake2b(payload.encode(), digest_size=32).hexdigest()


class Storage:
    """
    A contract's view of the ledger.

    Keys stay textual composites ("tick:-60", "grid:3:level:2"); the view
    only prepends the owning address.
    """

    def __init__(self, ledger: Ledger, address: str):
        self._ledger = ledger
        self.address = address
        self._prefix = f"{address}{NAMESPACE_SEPARATOR}"

    def _key(self, key: str) -> str:
        return self._prefix + key

    def get(self, key: str, default: Any = None) -> Any:
        return self._ledger.get(self._key(key), default)

    def get_int(self, key: str, default: int = 0) -> int:
        return int(self._ledger.get(self._key(key), default))

    def has(self, key: str) -> bool:
        return self._key(key) in self._ledger

    def set(self, key: str, value: Any) -> None:
        self._ledger.set(self._key(key), value)

    def delete(self, key: str) -> None:
        self._ledger.delete(self._key(key))

    def increment(self, key: str, delta: int = 1) -> int:
        value = self.get_int(key) + delta
        self.set(key, value)
        return value

    def keys(self, prefix: str = "") -> List[str]:
        cut = len(self._prefix)
        return [k[cut:] for k in self._ledger.keys(self._key(prefix))]
