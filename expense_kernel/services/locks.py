"""
expense_kernel.services.locks -- Per-expense mutual exclusion.

Responsibility:
    Serializes decision handling for one expense (ledger write,
    re-evaluation and status transition) while leaving different expenses
    fully concurrent.

Architecture position:
    Kernel > Services.  No I/O.

Invariants enforced:
    - At most one holder per expense id at a time.
    - Lock entries are dropped once no thread holds or waits on them, so
      the registry does not grow with the number of expenses ever seen.
"""

from __future__ import annotations

import threading
from collections.abc import Hashable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field


@dataclass
class _Slot:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


class ExpenseLockRegistry:
    """Keyed locks, one per expense id."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._slots: dict[Hashable, _Slot] = {}

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        """Block until ``key`` is free, then hold it for the ``with`` body."""
        with self._guard:
            slot = self._slots.get(key)
            if slot is None:
                slot = self._slots[key] = _Slot()
            slot.users += 1

        try:
            with slot.lock:
                yield
        finally:
            with self._guard:
                slot.users -= 1
                if slot.users == 0:
                    del self._slots[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._slots)


# Default for every WorkflowController in the process.
PROCESS_LOCKS = ExpenseLockRegistry()
