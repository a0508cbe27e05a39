"""Executors that serialise polls per state key and bound them overall."""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from threading import BoundedSemaphore, Lock
from typing import Any, Callable, Dict


class ThreadPoolManager:
    """One single-worker executor per state key, gated by a shared slot count.

    Triggers sharing a state key queue behind each other; at most
    ``max_concurrent`` polls talk to Loki at the same time.
    """

    def __init__(self, max_concurrent: int = 4) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        self.max_concurrent = max_concurrent
        self._slots = BoundedSemaphore(max_concurrent)
        self._executors: Dict[str, ThreadPoolExecutor] = {}
        self._lock = Lock()

    def executor_for(self, key: str) -> ThreadPoolExecutor:
        with self._lock:
            executor = self._executors.get(key)
            if executor is None:
                executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"watch-{key}")
                self._executors[key] = executor
            return executor

    def submit(self, key: str, fn: Callable[..., Any], *args: Any) -> Future:
        return self.executor_for(key).submit(self._run_in_slot, fn, args)

    def _run_in_slot(self, fn: Callable[..., Any], args: tuple) -> Any:
        with self._slots:
            return fn(*args)

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._executors)

    def shutdown(self, wait: bool = False) -> None:
        with self._lock:
            executors = list(self._executors.values())
            self._executors.clear()
        for executor in executors:
            executor.shutdown(wait=wait)


__all__ = ["ThreadPoolManager"]
