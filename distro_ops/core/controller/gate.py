# distro_ops/core/controller/gate.py
"""
Stop-before-action gate.

Some actions must not run against a live distribution (export, clone,
rename, ...) or while any distribution holds the shared virtual disk
(move, resize, sparse toggle, compact). The gate decides per invocation
whether a stop step is needed and, if so, runs it as its own tracked
action before the requested one:

    Idle ──(no rule / not running)──────────────▶ DirectRun
      │
      └─(rule and running)──▶ AwaitingConfirmation ──cancel──▶ Cancelled
                                   │
                                confirm
                                   ▼
                               Stopping ──fail──▶ Failed
                                   │
                                succeed
                                   ▼
                               Proceeding

The requested action never runs unless the stop step reported success.
Actions registered with `confirm=True` also wait in AwaitingConfirmation
when nothing needs stopping, and go straight to Proceeding once confirmed.
"""

from __future__ import annotations

import asyncio
import inspect
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, Mapping, Optional, Tuple, Union

from loguru import logger
from pydantic import BaseModel, ValidationError

from .. import registry
from ..action import ActionCall, ActionSpec
from ..errors import ErrorKind, InvalidTransitionError, PreconditionError, parse_error
from ..lifecycle import LifecycleState, TargetStateView
from ..registry import ActionFactory, StopScope
from ..result import ActionOutcome
from ..settings import settings
from .runner import AsyncActionRunner


class GateState(str, Enum):
    IDLE = "idle"
    DIRECT_RUN = "direct_run"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    CANCELLED = "cancelled"
    STOPPING = "stopping"
    FAILED = "failed"
    PROCEEDING = "proceeding"


_TRANSITIONS: dict[GateState, frozenset[GateState]] = {
    GateState.IDLE: frozenset(
        {GateState.DIRECT_RUN, GateState.AWAITING_CONFIRMATION, GateState.FAILED}
    ),
    GateState.AWAITING_CONFIRMATION: frozenset(
        {GateState.CANCELLED, GateState.STOPPING, GateState.PROCEEDING}
    ),
    GateState.STOPPING: frozenset({GateState.FAILED, GateState.PROCEEDING}),
    GateState.DIRECT_RUN: frozenset(),
    GateState.CANCELLED: frozenset(),
    GateState.FAILED: frozenset(),
    GateState.PROCEEDING: frozenset(),
}

# Which registered action performs the stop step for each scope
DEFAULT_STOP_ACTIONS: dict[StopScope, str] = {
    StopScope.TARGET: "stop",
    StopScope.ALL: "shutdown",
}


class ConfirmationRequest(BaseModel):
    """What the stop dialog shows: "<label> requires <target> to be stopped"."""

    action_id: str
    label: str
    target: str
    scope: StopScope

    @property
    def title(self) -> str:
        if self.scope is StopScope.ALL:
            return "Shutdown WSL?"
        if self.scope is StopScope.TARGET:
            return "Stop Distribution?"
        return f"Run {self.label}?"

    @property
    def confirm_label(self) -> str:
        if self.scope is StopScope.ALL:
            return "Shutdown & Continue"
        if self.scope is StopScope.TARGET:
            return "Stop & Continue"
        return "Run"


Confirmer = Callable[[ConfirmationRequest], Union[Awaitable[bool], bool]]


def _default_confirmer(_request: ConfirmationRequest) -> bool:
    return settings.confirm_by_default


class ConfirmationDialog:
    """
    Confirmer driven by the UI: the gate waits here until the user picks
    "Stop & Continue" or "Cancel".

    Overlapping requests queue up; the answer always goes to the oldest
    one, and `pending` shows that one.
    """

    def __init__(self) -> None:
        self._queue: Deque[Tuple[ConfirmationRequest, asyncio.Future[bool]]] = deque()

    @property
    def pending(self) -> Optional[ConfirmationRequest]:
        return self._queue[0][0] if self._queue else None

    @property
    def waiting(self) -> int:
        return len(self._queue)

    async def __call__(self, request: ConfirmationRequest) -> bool:
        entry = (request, asyncio.get_running_loop().create_future())
        self._queue.append(entry)
        try:
            return await entry[1]
        finally:
            # only this call's own entry; a cancelled waiter may not be the head
            if entry in self._queue:
                self._queue.remove(entry)

    def stop_and_continue(self) -> bool:
        return self._resolve(True)

    def cancel(self) -> bool:
        return self._resolve(False)

    def _resolve(self, answer: bool) -> bool:
        """Returns False when nothing was waiting for an answer."""
        while self._queue:
            _request, answer_future = self._queue.popleft()
            if not answer_future.done():
                answer_future.set_result(answer)
                return True
        return False


@dataclass(frozen=True)
class PreconditionRule:
    """
    Stop requirement of one action id.

    `requires(view, target)` answers whether the stop step is needed right
    now; `stop_spec` builds the stop/shutdown ActionSpec for the backend.
    """

    action_id: str
    scope: StopScope
    stop_spec: ActionFactory
    treat_transitioning_as_running: bool = True

    def _active(self, state: LifecycleState) -> bool:
        if self.treat_transitioning_as_running:
            return state.is_active
        return state is LifecycleState.RUNNING

    def requires(self, view: TargetStateView, target: str) -> bool:
        if self.scope is StopScope.NONE:
            return False
        if self.scope is StopScope.ALL:
            return view.any_running(self._active)
        return self._active(view.get_state(target))


class Decision(BaseModel):
    """Result of the Idle-state check, without running anything."""

    action_id: str
    target: str
    scope: StopScope
    state: LifecycleState
    stop_required: bool = False
    needs_confirmation: bool


@dataclass
class GateInvocation:
    """One pass through the gate; keeps every state it went through."""

    action_id: str
    target: str
    args: Any = None
    state: GateState = GateState.IDLE
    history: list[GateState] = field(default_factory=lambda: [GateState.IDLE])
    stop_outcome: Optional[ActionOutcome] = None
    outcome: Optional[ActionOutcome] = None

    def transition(self, new: GateState) -> None:
        if new not in _TRANSITIONS[self.state]:
            raise InvalidTransitionError(
                f"[{self.action_id}] {self.state.value} -> {new.value} is not allowed"
            )
        logger.debug(
            "[{}] gate {} -> {} ({})", self.action_id, self.state.value, new.value, self.target
        )
        self.state = new
        self.history.append(new)

    @property
    def value(self) -> Any:
        return self.outcome.unwrap() if self.outcome is not None else None


class PreconditionGate:
    """
    UI entry point for state-mutating actions.

    `invoke(action_id, target, args)` resolves to the action's value, or to
    None when the action failed, its stop step failed, or the user
    cancelled the stop confirmation.
    """

    def __init__(
        self,
        runner: AsyncActionRunner,
        view: TargetStateView,
        backend: Any,
        *,
        confirm: Optional[Confirmer] = None,
        rules: Optional[Mapping[str, PreconditionRule]] = None,
        stop_actions: Optional[Mapping[StopScope, str]] = None,
        serialize_per_target: Optional[bool] = None,
    ) -> None:
        self.runner = runner
        self.view = view
        self.backend = backend
        self.confirm = confirm or _default_confirmer
        self._rules: Dict[str, PreconditionRule] = dict(rules or {})
        self._stop_actions = dict(stop_actions or DEFAULT_STOP_ACTIONS)
        if serialize_per_target is None:
            serialize_per_target = settings.serialize_per_target
        self._serialize = serialize_per_target
        self._locks: Dict[str, asyncio.Lock] = {}
        # holders + waiters per target lock; the lock is dropped at zero
        self._lock_users: Dict[str, int] = {}

    # ---------------- rules ----------------

    def rule_for(self, action_id: str) -> Optional[PreconditionRule]:
        """Explicit rules first, then the precondition declared in the registry."""
        if action_id in self._rules:
            return self._rules[action_id]
        meta = registry.list_actions().get(action_id)
        if meta is None or meta.precondition is StopScope.NONE:
            return None
        return PreconditionRule(
            action_id=action_id,
            scope=meta.precondition,
            stop_spec=registry.get_action(self._stop_actions[meta.precondition]),
            treat_transitioning_as_running=settings.treat_transitioning_as_running,
        )

    def set_rule(self, rule: PreconditionRule) -> None:
        self._rules[rule.action_id] = rule

    def decide(self, action_id: str, target: str) -> Decision:
        rule = self.rule_for(action_id)
        stop_required = rule is not None and rule.requires(self.view, target)
        return Decision(
            action_id=action_id,
            target=target,
            scope=rule.scope if rule is not None else StopScope.NONE,
            state=self.view.get_state(target),
            stop_required=stop_required,
            needs_confirmation=stop_required or self._asks_first(action_id),
        )

    # ---------------- entry points ----------------

    async def invoke(
        self,
        action_id: str,
        target: str,
        args: Any = None,
        *,
        target_id: Optional[str] = None,
        spec: Optional[ActionSpec] = None,
    ) -> Any:
        invocation = await self.invoke_tracked(
            action_id, target, args, target_id=target_id, spec=spec
        )
        return invocation.value

    async def invoke_tracked(
        self,
        action_id: str,
        target: str,
        args: Any = None,
        *,
        target_id: Optional[str] = None,
        spec: Optional[ActionSpec] = None,
    ) -> GateInvocation:
        """
        Run the gate and return the finished invocation.

        `args` is either the raw params (dict / params model), validated
        against the registered params model, or, together with an explicit
        `spec`, passed to that spec's callables untouched.
        """
        if not self._serialize:
            return await self._invoke(action_id, target, args, target_id, spec)
        lock = self._locks.setdefault(target, asyncio.Lock())
        self._lock_users[target] = self._lock_users.get(target, 0) + 1
        try:
            async with lock:
                return await self._invoke(action_id, target, args, target_id, spec)
        finally:
            self._lock_users[target] -= 1
            if not self._lock_users[target]:
                del self._lock_users[target]
                del self._locks[target]

    # ---------------- internals ----------------

    async def _invoke(
        self,
        action_id: str,
        target: str,
        args: Any,
        target_id: Optional[str],
        spec: Optional[ActionSpec],
    ) -> GateInvocation:
        invocation = GateInvocation(action_id=action_id, target=target, args=args)

        if spec is None:
            try:
                meta = registry.get_meta(action_id)
                params = registry.validate_args(meta, args)
            except (ValidationError, KeyError) as e:
                return self._reject(invocation, e)
            spec = registry.get_action(action_id)(self.backend)
            call_args: Any = ActionCall(
                action=action_id, target=target, target_id=target_id, params=params
            )
            invocation.args = call_args
        else:
            call_args = args

        rule = self.rule_for(action_id)
        stop_required = rule is not None and rule.requires(self.view, target)
        if not stop_required and not self._asks_first(action_id):
            invocation.transition(GateState.DIRECT_RUN)
            invocation.outcome = await self.runner.execute(spec, call_args)
            return invocation

        invocation.transition(GateState.AWAITING_CONFIRMATION)
        request = ConfirmationRequest(
            action_id=action_id,
            label=self._label(action_id),
            target=target,
            scope=rule.scope if rule is not None and stop_required else StopScope.NONE,
        )
        confirmed = self.confirm(request)
        if inspect.isawaitable(confirmed):
            confirmed = await confirmed
        if not confirmed:
            invocation.transition(GateState.CANCELLED)
            return invocation

        if rule is None or not stop_required:
            invocation.transition(GateState.PROCEEDING)
            invocation.outcome = await self.runner.execute(spec, call_args)
            return invocation

        invocation.transition(GateState.STOPPING)
        stop_call = ActionCall(
            action=self._stop_actions.get(rule.scope, "stop"),
            target=target,
            target_id=target_id,
        )
        stop_outcome = await self.runner.execute(rule.stop_spec(self.backend), stop_call)
        invocation.stop_outcome = stop_outcome
        if not stop_outcome.ok:
            invocation.transition(GateState.FAILED)
            message = stop_outcome.error or "stop failed"
            invocation.outcome = ActionOutcome.failure(
                message,
                kind=ErrorKind.PRECONDITION_FAILURE,
                cause=parse_error(PreconditionError(action_id, target, message)),
            )
            return invocation

        invocation.transition(GateState.PROCEEDING)
        invocation.outcome = await self.runner.execute(spec, call_args)
        return invocation

    def _reject(self, invocation: GateInvocation, error: Exception) -> GateInvocation:
        """Unknown action or invalid params: nothing runs, the error slot is set."""
        normalized = parse_error(error)
        detail = normalized.message
        if isinstance(error, ValidationError) and error.errors():
            first = error.errors()[0]
            loc = ".".join(str(part) for part in first.get("loc", ()))
            msg = first.get("msg", "invalid args")
            detail = f"{loc}: {msg}" if loc else msg
        message = f"Invalid {invocation.action_id} request: {detail}"
        logger.warning("[{}] rejected: {}", invocation.action_id, detail)
        self.runner.store.set({"error": message})
        invocation.transition(GateState.FAILED)
        invocation.outcome = ActionOutcome.failure(message, cause=normalized)
        return invocation

    def _label(self, action_id: str) -> str:
        meta = registry.list_actions().get(action_id)
        return meta.label if meta is not None else action_id

    def _asks_first(self, action_id: str) -> bool:
        meta = registry.list_actions().get(action_id)
        return meta is not None and meta.confirm
