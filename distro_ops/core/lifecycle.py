"""
Distribution lifecycle model and the read-only state view.

The list of distributions is produced by the backend's polling and written
into the store; the orchestration layer only reads a snapshot of it at
decision time through a TargetStateView.
"""
# @file purpose: Define lifecycle states and the synchronous target state view.

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Callable, Iterable, Optional, Protocol

from pydantic import BaseModel

if TYPE_CHECKING:
    from .store import Store


class LifecycleState(str, Enum):
    RUNNING = "Running"
    STOPPED = "Stopped"
    INSTALLING = "Installing"
    TRANSITIONING = "Transitioning"
    UNKNOWN = "Unknown"

    @property
    def is_active(self) -> bool:
        """Running, or on its way somewhere (a stop/start is in flight)."""
        return self in (LifecycleState.RUNNING, LifecycleState.TRANSITIONING)


StatePredicate = Callable[[LifecycleState], bool]


def _is_active(state: LifecycleState) -> bool:
    return state.is_active


class Distribution(BaseModel):
    """One WSL distribution as reported by the backend."""

    name: str
    id: Optional[str] = None
    state: LifecycleState = LifecycleState.UNKNOWN
    version: int = 2
    is_default: bool = False
    location: Optional[str] = None
    disk_size: Optional[int] = None
    os_info: Optional[str] = None


def merge_distributions(
    existing: Iterable[Distribution], fresh: Iterable[Distribution]
) -> list[Distribution]:
    """Take the fresh list, keeping details a plain listing doesn't carry (no UI flashing)."""
    known = {d.name: d for d in existing}
    merged: list[Distribution] = []
    for d in fresh:
        old = known.get(d.name)
        if old is not None:
            d = d.model_copy(
                update={
                    "disk_size": d.disk_size if d.disk_size is not None else old.disk_size,
                    "os_info": d.os_info if d.os_info is not None else old.os_info,
                }
            )
        merged.append(d)
    return merged


class TargetStateView(Protocol):
    def get_state(self, target_id: str) -> LifecycleState: ...
    def any_running(self, active: Optional[StatePredicate] = None) -> bool: ...


class SnapshotStateView:
    """State view over a fixed list of distributions (CLI checks, tests)."""

    def __init__(self, distributions: Iterable[Distribution] = ()) -> None:
        self._by_key: dict[str, Distribution] = {}
        self.update(distributions)

    def update(self, distributions: Iterable[Distribution]) -> None:
        self._by_key = {}
        for d in distributions:
            self._by_key[d.name] = d
            if d.id:
                self._by_key[d.id] = d

    def get_state(self, target_id: str) -> LifecycleState:
        found = self._by_key.get(target_id)
        return found.state if found else LifecycleState.UNKNOWN

    def any_running(self, active: Optional[StatePredicate] = None) -> bool:
        check = active or _is_active
        return any(check(d.state) for d in self._by_key.values())


class StoreStateView:
    """State view reading the store's current distribution list."""

    def __init__(self, store: "Store") -> None:
        self._store = store

    def _find(self, target_id: str) -> Optional[Distribution]:
        for d in self._store.get().distributions:
            if d.name == target_id or (d.id is not None and d.id == target_id):
                return d
        return None

    def get_state(self, target_id: str) -> LifecycleState:
        found = self._find(target_id)
        return found.state if found else LifecycleState.UNKNOWN

    def any_running(self, active: Optional[StatePredicate] = None) -> bool:
        """`active` decides what counts as running; default: Running or Transitioning."""
        check = active or _is_active
        return any(check(d.state) for d in self._store.get().distributions)
