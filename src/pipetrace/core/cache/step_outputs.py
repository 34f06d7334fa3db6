from __future__ import annotations

import threading
from collections.abc import Iterator


def step_output_key(job_id: str, filename: str) -> str:
    return f"{job_id}_{filename}"


class StepOutputCache:
    """Process-wide store of step outputs discovered while rebuilding job chains.

    Writers only ever add; there is no eviction and no removal, so readers may
    hold on to keys for the lifetime of the process. Re-adding a key replaces
    its value, which is how a retried step's newer output lands.
    """

    def __init__(self) -> None:
        self._data: dict[str, object] = {}
        self._lock = threading.Lock()

    def add(self, key: str, value: object) -> None:
        with self._lock:
            self._data[key] = value

    def get(self, key: str, default: object | None = None) -> object | None:
        with self._lock:
            return self._data.get(key, default)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._data)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._data

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())
