from __future__ import annotations
from typing import List

import numpy as np
from numpy.typing import NDArray


def wrap_i32(value: int) -> int:
    """Fold an integer into the signed 32-bit range (two's complement)."""
    return int(np.array(value, dtype=np.int64).astype(np.int32))


class ValueStack:
    """LIFO of signed 32-bit integers backed by a growable int32 array."""

    def __init__(self, capacity: int = 16) -> None:
        self._data: NDArray[np.int32] = np.zeros(max(1, capacity), dtype=np.int32)
        self._size = 0

    def push(self, value: int) -> None:
        if self._size == len(self._data):
            grown = np.zeros(len(self._data) * 2, dtype=np.int32)
            grown[: self._size] = self._data
            self._data = grown
        self._data[self._size] = wrap_i32(value)
        self._size += 1

    def pop(self) -> int:
        if self._size == 0:
            raise IndexError("pop from empty stack")
        self._size -= 1
        return int(self._data[self._size])

    def peek(self) -> int:
        if self._size == 0:
            raise IndexError("peek at empty stack")
        return int(self._data[self._size - 1])

    def is_empty(self) -> bool:
        return self._size == 0

    def size(self) -> int:
        return self._size

    def clear(self) -> None:
        self._size = 0

    def snapshot(self) -> List[int]:
        return [int(v) for v in self._data[: self._size]]

    def __len__(self) -> int:
        return self._size

    def __repr__(self) -> str:
        return f"ValueStack({self.snapshot()!r})"
