"""
Observable application store.

Holds the distribution list plus the two shared slots every orchestrated
action drives: `action_in_progress` and `error`. Writes go through
`set()` with a partial dict (or a function of the current state returning
one); every write notifies subscribers synchronously.
"""
# @file purpose: Provide the store read/write surface shared by all actions.

from __future__ import annotations

from typing import Any, Callable, List, Optional, Union

from pydantic import BaseModel, Field, computed_field

from .errors import is_timeout_message
from .lifecycle import Distribution


class ActionOutput(BaseModel):
    """Output of a custom or startup action that asked for its output to be shown."""

    action_name: str
    distro: str
    output: str = ""
    error: Optional[str] = None


class StoreState(BaseModel):
    distributions: List[Distribution] = Field(default_factory=list)
    action_in_progress: Optional[str] = None
    error: Optional[str] = None
    action_outputs: List[ActionOutput] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_timeout_error(self) -> bool:
        return self.error is not None and is_timeout_message(self.error)


Partial = dict[str, Any]
Update = Union[Partial, Callable[[StoreState], Partial]]
Listener = Callable[[StoreState, StoreState], None]


class Store:
    def __init__(self, initial: StoreState | None = None) -> None:
        self._state = initial or StoreState()
        self._listeners: list[Listener] = []

    def get(self) -> StoreState:
        return self._state

    def set(self, update: Update) -> None:
        partial = update(self._state) if callable(update) else update
        unknown = set(partial) - set(StoreState.model_fields)
        if unknown:
            raise KeyError(f"unknown store fields: {sorted(unknown)}")
        previous = self._state
        self._state = previous.model_copy(update=partial)
        for listener in list(self._listeners):
            listener(self._state, previous)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ---------- convenience writers ----------

    def set_distributions(self, distributions: list[Distribution]) -> None:
        self.set({"distributions": list(distributions)})

    def clear_error(self) -> None:
        self.set({"error": None})
