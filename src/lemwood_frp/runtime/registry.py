"""In-memory registry of running processes and last-known run states."""

from __future__ import annotations

from threading import Lock
from typing import Protocol

from lemwood_frp.domain.run_state import RunState


class SupervisedHandle(Protocol):
    """What the registry needs from a supervised process."""

    @property
    def pid(self) -> int | None: ...

    @property
    def alive(self) -> bool: ...

    def stop(self, timeout: float) -> int | None: ...


class LifecycleRegistry:
    """Concurrency-safe configId → handle / RunState store.

    The map lock is held only for dictionary access. Callers serialize the
    start/stop decision for one configuration with ``lock_for(config_id)``, so
    different configurations never wait on each other.
    """

    def __init__(self) -> None:
        self._handles: dict[str, SupervisedHandle] = {}
        self._states: dict[str, RunState] = {}
        self._config_locks: dict[str, Lock] = {}
        self._reserved: set[str] = set()
        self._lock = Lock()

    def lock_for(self, config_id: str) -> Lock:
        with self._lock:
            lock = self._config_locks.get(config_id)
            if lock is None:
                lock = Lock()
                self._config_locks[config_id] = lock
            return lock

    def status(self, config_id: str) -> RunState:
        with self._lock:
            state = self._states.get(config_id)
        return state if state is not None else RunState.stopped(config_id)

    def record(self, state: RunState) -> None:
        with self._lock:
            self._states[state.config_id] = state

    def try_reserve(self, config_id: str, limit: int) -> bool:
        """Claim one of ``limit`` process slots for ``config_id``.

        Registered handles and outstanding reservations both count. A
        reservation ends with ``register`` or ``release``.
        """

        with self._lock:
            if config_id in self._reserved:
                return True
            if len(self._handles) + len(self._reserved) >= limit:
                return False
            self._reserved.add(config_id)
            return True

    def release(self, config_id: str) -> None:
        with self._lock:
            self._reserved.discard(config_id)

    def register(self, handle: SupervisedHandle, state: RunState) -> None:
        with self._lock:
            existing = self._handles.get(state.config_id)
            if existing is not None and existing is not handle:
                raise RuntimeError(f"config {state.config_id} already has a registered process")
            self._reserved.discard(state.config_id)
            self._handles[state.config_id] = handle
            self._states[state.config_id] = state

    def complete(self, config_id: str, handle: SupervisedHandle, state: RunState) -> bool:
        """Drop ``handle`` and record ``state`` if it is still the registered handle."""

        with self._lock:
            if self._handles.get(config_id) is not handle:
                return False
            del self._handles[config_id]
            self._states[config_id] = state
            return True

    def handle(self, config_id: str) -> SupervisedHandle | None:
        with self._lock:
            return self._handles.get(config_id)

    def running_ids(self) -> tuple[str, ...]:
        with self._lock:
            return tuple(self._handles)

    def active_count(self) -> int:
        with self._lock:
            return len(self._handles)

    def list_running(self) -> dict[str, RunState]:
        with self._lock:
            return {config_id: self._states[config_id] for config_id in self._handles}

    def snapshot(self) -> dict[str, tuple[RunState, SupervisedHandle | None]]:
        with self._lock:
            return {
                config_id: (state, self._handles.get(config_id))
                for config_id, state in self._states.items()
            }


__all__ = ["LifecycleRegistry", "SupervisedHandle"]
