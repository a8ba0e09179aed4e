# distro_ops/core/controller/session.py
"""
Wiring for one UI session: a store, the runner writing into it, the state
view reading from it, and the gate every trigger goes through.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional

from loguru import logger

from ..errors import format_error, parse_error
from ..lifecycle import StoreStateView, merge_distributions
from ..store import Store
from .gate import Confirmer, GateInvocation, PreconditionGate
from .runner import AsyncActionRunner


def load_builtin_actions() -> None:
    """Import action implementations to trigger registration."""
    import distro_ops.actions.impl  # noqa: F401


class ActionSession:
    def __init__(
        self,
        backend: Any,
        *,
        store: Optional[Store] = None,
        confirm: Optional[Confirmer] = None,
        serialize_per_target: Optional[bool] = None,
    ) -> None:
        load_builtin_actions()
        self.backend = backend
        self.store = store or Store()
        self.runner = AsyncActionRunner(self.store)
        self.view = StoreStateView(self.store)
        self.gate = PreconditionGate(
            self.runner,
            self.view,
            backend,
            confirm=confirm,
            serialize_per_target=serialize_per_target,
        )

    async def refresh(self) -> bool:
        """Poll the backend once; a failure lands in the error slot."""
        try:
            fresh = await self.backend.list_distributions()
        except Exception as e:  # noqa: BLE001
            err = parse_error(e)
            logger.warning("listing distributions failed: {}", format_error(err))
            self.store.set({"error": format_error(err)})
            return False
        self.store.set(
            lambda state: {"distributions": merge_distributions(state.distributions, fresh)}
        )
        return True

    async def invoke(self, action_id: str, target: str, args: Any = None, **kwargs: Any) -> Any:
        return await self.gate.invoke(action_id, target, args, **kwargs)

    async def invoke_tracked(
        self, action_id: str, target: str, args: Any = None, **kwargs: Any
    ) -> GateInvocation:
        return await self.gate.invoke_tracked(action_id, target, args, **kwargs)

    def load_custom_actions(self, actions: Iterable[Any]) -> list[str]:
        """Register custom actions; returns their action ids."""
        from distro_ops.actions.custom import register_custom_action

        return [register_custom_action(a) for a in sorted(actions, key=lambda a: a.order)]
