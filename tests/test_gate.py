"""PreconditionGate：停止前置条件、确认、取消与失败路径。"""

from __future__ import annotations

import asyncio

import pytest

from conftest import FakeBackend
from distro_ops.core import registry
from distro_ops.core.action import ActionSpec
from distro_ops.core.controller.gate import (
    ConfirmationDialog,
    ConfirmationRequest,
    GateInvocation,
    GateState,
    PreconditionGate,
    PreconditionRule,
)
from distro_ops.core.controller.runner import AsyncActionRunner
from distro_ops.core.controller.session import ActionSession
from distro_ops.core.errors import ErrorKind, InvalidTransitionError, PreconditionError
from distro_ops.core.lifecycle import Distribution, LifecycleState, SnapshotStateView
from distro_ops.core.registry import StopScope
from distro_ops.core.store import Store


class Spy:
    def __init__(self, result=None, error: BaseException | None = None) -> None:
        self.calls: list = []
        self.result = result
        self.error = error

    async def __call__(self, args):
        self.calls.append(args)
        if self.error is not None:
            raise self.error
        return self.result


def _spec(op: Spy, name: str = "op") -> ActionSpec:
    return ActionSpec(
        name=name,
        progress_message=f"{name}...",
        operation=op,
        error_message=lambda _a, e: f"{name} failed: {e.message}",
    )


def _gate(states: dict[str, LifecycleState], confirm, store: Store | None = None, **kw):
    view = SnapshotStateView([Distribution(name=n, state=s) for n, s in states.items()])
    return PreconditionGate(AsyncActionRunner(store or Store()), view, None, confirm=confirm, **kw)


# ---------------- registered actions through a session ----------------


@pytest.mark.asyncio
async def test_clone_running_target_stops_then_clones(
    session: ActionSession, backend: FakeBackend
) -> None:
    requests: list[ConfirmationRequest] = []

    def confirm(req: ConfirmationRequest) -> bool:
        requests.append(req)
        return True

    session.gate.confirm = confirm
    inv = await session.invoke_tracked("clone", "Ubuntu", {"new_name": "Ubuntu-copy"})

    assert inv.history == [
        GateState.IDLE,
        GateState.AWAITING_CONFIRMATION,
        GateState.STOPPING,
        GateState.PROCEEDING,
    ]
    assert inv.outcome is not None and inv.outcome.ok
    assert backend.methods().index("stop_distribution") < backend.methods().index(
        "clone_distribution"
    )
    assert [c for c in backend.calls if c[0] == "clone_distribution"] == [
        ("clone_distribution", "Ubuntu", "Ubuntu-copy", None)
    ]
    assert requests[0].label == "Clone"
    assert requests[0].title == "Stop Distribution?"
    assert requests[0].confirm_label == "Stop & Continue"
    assert session.store.get().error is None
    assert session.store.get().action_in_progress is None
    assert "Ubuntu-copy" in [d.name for d in session.store.get().distributions]


@pytest.mark.asyncio
async def test_failed_stop_never_runs_clone(session: ActionSession, backend: FakeBackend) -> None:
    backend.fail["stop_distribution"] = RuntimeError("the service did not respond")

    inv = await session.invoke_tracked("clone", "Ubuntu", {"new_name": "Ubuntu-copy"})

    assert inv.state is GateState.FAILED
    assert inv.value is None
    assert inv.outcome is not None
    assert inv.outcome.kind is ErrorKind.PRECONDITION_FAILURE
    assert inv.outcome.cause is not None
    assert isinstance(inv.outcome.cause.cause, PreconditionError)
    assert "clone_distribution" not in backend.methods()
    assert session.store.get().error == "Failed to stop Ubuntu: the service did not respond"


@pytest.mark.asyncio
async def test_export_stopped_target_runs_directly(
    session: ActionSession, backend: FakeBackend
) -> None:
    asked: list = []
    session.gate.confirm = lambda req: asked.append(req) or True

    path = await session.invoke("export", "Debian", {"path": "C:/backup/debian.tar"})

    assert path == "C:/backup/debian.tar"
    assert asked == []
    assert backend.methods() == ["export_distribution"]


@pytest.mark.asyncio
async def test_cancel_makes_no_calls_and_keeps_error(
    session: ActionSession, backend: FakeBackend
) -> None:
    session.store.set({"error": "earlier"})
    session.gate.confirm = lambda _req: False

    inv = await session.invoke_tracked("export", "Ubuntu", {"path": "out.tar"})

    assert inv.state is GateState.CANCELLED
    assert inv.value is None
    assert backend.calls == []
    assert session.store.get().error == "earlier"


@pytest.mark.asyncio
async def test_transitioning_counts_as_running(
    session: ActionSession, backend: FakeBackend
) -> None:
    session.store.set_distributions(
        [Distribution(name="Ubuntu", state=LifecycleState.TRANSITIONING)]
    )
    decision = session.gate.decide("rename", "Ubuntu")
    assert decision.needs_confirmation
    assert decision.scope is StopScope.TARGET


@pytest.mark.asyncio
async def test_move_requires_shutdown_when_any_distribution_runs(
    session: ActionSession, backend: FakeBackend
) -> None:
    requests: list[ConfirmationRequest] = []
    session.gate.confirm = lambda req: requests.append(req) or True

    inv = await session.invoke_tracked("move", "Debian", {"location": "D:/wsl"})

    assert inv.state is GateState.PROCEEDING
    assert requests[0].scope is StopScope.ALL
    assert requests[0].title == "Shutdown WSL?"
    assert backend.methods().index("shutdown_all") < backend.methods().index(
        "move_distribution"
    )


@pytest.mark.asyncio
async def test_compact_runs_directly_when_nothing_runs(backend: FakeBackend) -> None:
    backend.distributions = [Distribution(name="Ubuntu", state=LifecycleState.STOPPED)]
    s = ActionSession(backend, confirm=lambda _r: pytest.fail("should not ask"))
    s.store.set_distributions(backend.distributions)

    result = await s.invoke("compact", "Ubuntu")

    assert result.reclaimed == 6_000
    assert "shutdown_all" not in backend.methods()


@pytest.mark.asyncio
async def test_unknown_state_runs_directly(session: ActionSession, backend: FakeBackend) -> None:
    await session.invoke("set_version", "Ghost", {"version": 1})
    assert ("set_version", "Ghost", 1) in backend.calls


@pytest.mark.asyncio
async def test_invalid_params_rejected_before_anything_runs(
    session: ActionSession, backend: FakeBackend
) -> None:
    inv = await session.invoke_tracked("clone", "Ubuntu", {"new_name": "-bad"})

    assert inv.state is GateState.FAILED
    assert backend.calls == []
    error = session.store.get().error
    assert error is not None and error.startswith("Invalid clone request: new_name:")


@pytest.mark.asyncio
async def test_unknown_action_rejected(session: ActionSession) -> None:
    inv = await session.invoke_tracked("teleport", "Ubuntu")
    assert inv.state is GateState.FAILED
    assert "teleport" in (session.store.get().error or "")


# ---------------- explicit specs and rules ----------------


@pytest.mark.asyncio
async def test_stop_failure_spy_has_zero_calls() -> None:
    original = Spy(result="done")
    stop = Spy(error=RuntimeError("stop rejected"))
    store = Store()
    gate = _gate({"t": LifecycleState.RUNNING}, confirm=lambda _r: True, store=store)
    gate.set_rule(
        PreconditionRule(
            action_id="work", scope=StopScope.TARGET, stop_spec=lambda _b: _spec(stop, "stop")
        )
    )

    value = await gate.invoke("work", "t", {"x": 1}, spec=_spec(original, "work"))

    assert value is None
    assert len(stop.calls) == 1
    assert original.calls == []
    assert store.get().error == "stop failed: stop rejected"


@pytest.mark.asyncio
async def test_original_args_reach_operation_after_stop() -> None:
    original = Spy(result="done")
    stop = Spy()
    gate = _gate({"t": LifecycleState.RUNNING}, confirm=lambda _r: True)
    gate.set_rule(
        PreconditionRule(
            action_id="work", scope=StopScope.TARGET, stop_spec=lambda _b: _spec(stop, "stop")
        )
    )

    assert await gate.invoke("work", "t", {"x": 1}, spec=_spec(original, "work")) == "done"
    assert original.calls == [{"x": 1}]


@pytest.mark.asyncio
async def test_transitioning_can_be_treated_as_idle() -> None:
    original = Spy(result=1)
    gate = _gate({"t": LifecycleState.TRANSITIONING}, confirm=lambda _r: False)
    gate.set_rule(
        PreconditionRule(
            action_id="work",
            scope=StopScope.TARGET,
            stop_spec=lambda _b: _spec(Spy(), "stop"),
            treat_transitioning_as_running=False,
        )
    )
    inv = await gate.invoke_tracked("work", "t", spec=_spec(original, "work"))
    assert inv.state is GateState.DIRECT_RUN
    assert inv.value == 1


@pytest.mark.asyncio
async def test_confirmation_dialog_drives_the_gate() -> None:
    dialog = ConfirmationDialog()
    original = Spy(result="ok")
    gate = _gate({"t": LifecycleState.RUNNING}, confirm=dialog)
    gate.set_rule(
        PreconditionRule(
            action_id="work", scope=StopScope.TARGET, stop_spec=lambda _b: _spec(Spy(), "stop")
        )
    )

    assert dialog.cancel() is False
    task = asyncio.create_task(gate.invoke("work", "t", spec=_spec(original, "work")))
    for _ in range(10):
        if dialog.pending is not None:
            break
        await asyncio.sleep(0)

    assert dialog.pending is not None
    assert dialog.pending.target == "t"
    assert dialog.stop_and_continue() is True
    assert await task == "ok"
    assert dialog.pending is None


@pytest.mark.asyncio
async def test_serialized_invocations_do_not_interleave() -> None:
    events: list[str] = []

    def tracked(tag: str) -> ActionSpec:
        async def op(_args):
            events.append(f"start-{tag}")
            await asyncio.sleep(0.01)
            events.append(f"end-{tag}")

        return ActionSpec(name=tag, progress_message=tag, operation=op, error_message="e")

    gate = _gate(
        {"t": LifecycleState.STOPPED}, confirm=lambda _r: True, serialize_per_target=True
    )
    await asyncio.gather(
        gate.invoke("a", "t", spec=tracked("a")),
        gate.invoke("b", "t", spec=tracked("b")),
    )
    assert events == ["start-a", "end-a", "start-b", "end-b"]


def test_illegal_transition_raises() -> None:
    inv = GateInvocation(action_id="clone", target="t")
    with pytest.raises(InvalidTransitionError):
        inv.transition(GateState.PROCEEDING)


@pytest.mark.asyncio
async def test_shared_disk_rule_respects_transitioning_override() -> None:
    def rule(treat: bool) -> PreconditionRule:
        return PreconditionRule(
            action_id="work",
            scope=StopScope.ALL,
            stop_spec=lambda _b: _spec(Spy(), "shutdown"),
            treat_transitioning_as_running=treat,
        )

    gate = _gate({"other": LifecycleState.TRANSITIONING}, confirm=lambda _r: False)
    gate.set_rule(rule(False))
    inv = await gate.invoke_tracked("work", "t", spec=_spec(Spy(result=1), "work"))
    assert inv.state is GateState.DIRECT_RUN

    gate.set_rule(rule(True))
    inv = await gate.invoke_tracked("work", "t", spec=_spec(Spy(result=1), "work"))
    assert inv.state is GateState.CANCELLED


@pytest.mark.asyncio
async def test_confirmation_dialog_answers_overlapping_requests_in_order() -> None:
    dialog = ConfirmationDialog()
    gate = _gate({"a": LifecycleState.RUNNING, "b": LifecycleState.RUNNING}, confirm=dialog)
    gate.set_rule(
        PreconditionRule(
            action_id="work", scope=StopScope.TARGET, stop_spec=lambda _b: _spec(Spy(), "stop")
        )
    )

    first = asyncio.create_task(gate.invoke_tracked("work", "a", spec=_spec(Spy(), "work")))
    second = asyncio.create_task(
        gate.invoke_tracked("work", "b", spec=_spec(Spy(result="b done"), "work"))
    )
    for _ in range(10):
        if dialog.waiting == 2:
            break
        await asyncio.sleep(0)

    assert dialog.pending is not None and dialog.pending.target == "a"
    assert dialog.cancel() is True
    assert (await first).state is GateState.CANCELLED

    assert dialog.pending is not None and dialog.pending.target == "b"
    assert dialog.stop_and_continue() is True
    inv = await second
    assert inv.state is GateState.PROCEEDING
    assert inv.value == "b done"
    assert dialog.pending is None
    assert dialog.cancel() is False


@pytest.mark.asyncio
async def test_confirmation_dialog_drops_cancelled_waiter() -> None:
    dialog = ConfirmationDialog()
    request = ConfirmationRequest(action_id="x", label="X", target="a", scope=StopScope.TARGET)
    later = ConfirmationRequest(action_id="x", label="X", target="b", scope=StopScope.TARGET)

    waiting_a = asyncio.create_task(dialog(request))
    waiting_b = asyncio.create_task(dialog(later))
    await asyncio.sleep(0)
    waiting_a.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiting_a

    assert dialog.waiting == 1
    assert dialog.pending == later
    assert dialog.stop_and_continue() is True
    assert await waiting_b is True


@pytest.mark.asyncio
async def test_target_locks_are_released_after_use() -> None:
    seen: list[bool] = []

    async def op(_args):
        seen.append("t" in gate._locks)
        await asyncio.sleep(0)

    gate = _gate(
        {"t": LifecycleState.STOPPED}, confirm=lambda _r: True, serialize_per_target=True
    )
    spec = ActionSpec(name="op", progress_message="op", operation=op, error_message="e")
    await asyncio.gather(gate.invoke("a", "t", spec=spec), gate.invoke("b", "t", spec=spec))

    assert seen == [True, True]
    assert gate._locks == {}
    assert gate._lock_users == {}


@pytest.mark.asyncio
async def test_confirm_only_action_asks_without_stopping(
    backend: FakeBackend, scratch_actions: list[str]
) -> None:
    requests: list[ConfirmationRequest] = []
    original = Spy(result="ran")
    registry.register("careful", lambda _b: _spec(original, "careful"), confirm=True)
    scratch_actions.append("careful")

    answers = iter([False, True])
    s = ActionSession(backend, confirm=lambda req: requests.append(req) or next(answers))
    s.store.set_distributions(backend.distributions)

    cancelled = await s.invoke_tracked("careful", "Debian")
    assert cancelled.state is GateState.CANCELLED
    assert original.calls == []

    inv = await s.invoke_tracked("careful", "Debian")
    assert inv.history == [
        GateState.IDLE,
        GateState.AWAITING_CONFIRMATION,
        GateState.PROCEEDING,
    ]
    assert inv.value == "ran"
    assert requests[0].scope is StopScope.NONE
    assert requests[0].title == "Run Careful?"
    assert requests[0].confirm_label == "Run"
    assert backend.calls == []
    decision = s.gate.decide("careful", "Debian")
    assert decision.needs_confirmation and not decision.stop_required
