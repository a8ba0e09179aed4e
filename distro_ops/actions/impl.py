"""
Distribution action specs bound to a BackendClient:
- start / stop / restart / shutdown / delete / set_default
- export / clone / rename / set_version            (stop the distribution first)
- move / resize / set_sparse / compact            (shut down all of WSL first)
- mount_disk / unmount_disk

Each factory:
  1) Receives a BackendClient and returns a stateless ActionSpec
  2) The ActionSpec's operation receives an ActionCall (target + validated params)
     and raises ActionExecutionError when the backend call fails
"""

# @file purpose: Implement and register distribution actions.
from __future__ import annotations

from typing import Any, Awaitable, Callable, Optional

from loguru import logger
from pydantic import BaseModel

from distro_ops.core.action import ActionCall, ActionSpec, OnSuccess
from distro_ops.core.errors import ActionExecutionError, NormalizedError, format_error, parse_error
from distro_ops.core.lifecycle import merge_distributions
from distro_ops.core.registry import StopScope, action
from distro_ops.core.settings import settings
from distro_ops.core.store import ActionOutput
from distro_ops.io.backend import BackendClient, CompactResult  # Protocol

from .params import (
    CloneParams,
    ExportParams,
    MountDiskParams,
    MoveParams,
    RenameParams,
    ResizeParams,
    SetVersionParams,
    SparseParams,
    UnmountDiskParams,
)


async def _backend_call(
    action_id: str, call: ActionCall, message: str, fn: Callable[[], Awaitable[Any]]
) -> Any:
    try:
        return await fn()
    except Exception as e:  # noqa: BLE001
        raise ActionExecutionError(
            action=action_id,
            message=message,
            target=call.target,
            cause=e,
        ) from e


def _failed(verb: str) -> Callable[[ActionCall, NormalizedError], str]:
    def message(call: ActionCall, err: NormalizedError) -> str:
        return f"Failed to {verb} {call.target}: {format_error(err)}"

    return message


def refresh_distributions(backend: BackendClient) -> OnSuccess:
    """
    Continuation that re-fetches the distribution list into the store.
    A failed fetch is reported in the error slot and does not fail the action.
    """

    async def refresh(_result: Any, get, set) -> None:
        try:
            fresh = await backend.list_distributions()
        except Exception as e:  # noqa: BLE001
            err = parse_error(e)
            logger.warning("refresh after action failed: {}", format_error(err))
            set({"error": format_error(err)})
            return
        set({"distributions": merge_distributions(get().distributions, fresh)})

    return refresh


class LifecycleChange(BaseModel):
    """Result of start/restart: which distribution came up."""

    target: str
    target_id: Optional[str] = None


def run_startup_actions(backend: BackendClient) -> OnSuccess:
    """
    Continuation for start/restart: refresh, then run the distribution's
    startup actions one by one. A failing startup action is logged and
    skipped; it never fails the start itself.
    """
    refresh = refresh_distributions(backend)

    async def after_start(change: LifecycleChange, get, set) -> None:
        await refresh(change, get, set)
        try:
            startup = await backend.get_startup_actions(change.target)
        except Exception as e:  # noqa: BLE001
            logger.warning("Failed to load startup actions for {}: {}", change.target, e)
            return
        if not startup:
            return

        logger.info("Running {} startup action(s) for {}", len(startup), change.target)
        set({"action_in_progress": f"Running startup actions for {change.target}..."})
        for custom in startup:
            try:
                result = await backend.execute_action(custom.id, change.target, change.target_id)
            except Exception as e:  # noqa: BLE001
                logger.warning("Startup action {!r} failed: {}", custom.name, e)
                continue
            if custom.show_output:
                output = ActionOutput(
                    action_name=custom.name,
                    distro=change.target,
                    output=result.output,
                    error=result.error,
                )
                set(lambda state: {"action_outputs": [*state.action_outputs, output]})

    return after_start


def _after_stop(backend: BackendClient) -> Optional[OnSuccess]:
    return refresh_distributions(backend) if settings.refresh_after_stop else None


# ------------------------------------------------------------------------------
# lifecycle
# ------------------------------------------------------------------------------


@action("start")
def start(backend: BackendClient) -> ActionSpec:
    async def operation(call: ActionCall) -> LifecycleChange:
        await _backend_call(
            "start",
            call,
            "failed to start distribution",
            lambda: backend.start_distribution(call.target, call.target_id),
        )
        return LifecycleChange(target=call.target, target_id=call.target_id)

    return ActionSpec(
        name="start",
        progress_message=lambda call: f"Starting {call.target}...",
        operation=operation,
        on_success=run_startup_actions(backend),
        error_message=_failed("start"),
    )


@action("stop")
def stop(backend: BackendClient) -> ActionSpec:
    async def operation(call: ActionCall) -> None:
        await _backend_call(
            "stop",
            call,
            "failed to stop distribution",
            lambda: backend.stop_distribution(call.target),
        )

    return ActionSpec(
        name="stop",
        progress_message=lambda call: f"Stopping {call.target}...",
        operation=operation,
        on_success=_after_stop(backend),
        error_message=_failed("stop"),
    )


@action("restart")
def restart(backend: BackendClient) -> ActionSpec:
    async def operation(call: ActionCall) -> LifecycleChange:
        await _backend_call(
            "restart",
            call,
            "failed to restart distribution",
            lambda: backend.restart_distribution(call.target, call.target_id),
        )
        return LifecycleChange(target=call.target, target_id=call.target_id)

    return ActionSpec(
        name="restart",
        progress_message=lambda call: f"Restarting {call.target}...",
        operation=operation,
        on_success=run_startup_actions(backend),
        error_message=_failed("restart"),
    )


@action("shutdown", label="Shutdown WSL")
def shutdown(backend: BackendClient) -> ActionSpec:
    async def operation(call: ActionCall) -> None:
        await _backend_call("shutdown", call, "failed to shut down WSL", backend.shutdown_all)

    return ActionSpec(
        name="shutdown",
        progress_message="Shutting down WSL...",
        operation=operation,
        on_success=_after_stop(backend),
        error_message=lambda call, err: f"Failed to shut down WSL: {format_error(err)}",
    )


@action("delete")
def delete(backend: BackendClient) -> ActionSpec:
    async def operation(call: ActionCall) -> None:
        await _backend_call(
            "delete",
            call,
            "failed to delete distribution",
            lambda: backend.delete_distribution(call.target),
        )

    return ActionSpec(
        name="delete",
        progress_message=lambda call: f"Deleting {call.target}...",
        operation=operation,
        on_success=refresh_distributions(backend),
        error_message=_failed("delete"),
    )


@action("set_default", label="Set as Default")
def set_default(backend: BackendClient) -> ActionSpec:
    async def operation(call: ActionCall) -> None:
        await _backend_call(
            "set_default",
            call,
            "failed to set default distribution",
            lambda: backend.set_default_distribution(call.target),
        )

    return ActionSpec(
        name="set_default",
        progress_message=lambda call: f"Setting {call.target} as default...",
        operation=operation,
        on_success=refresh_distributions(backend),
        error_message=_failed("set default"),
    )


# ------------------------------------------------------------------------------
# 需要先停止目标发行版的动作
# ------------------------------------------------------------------------------


@action("export", params_model=ExportParams, precondition=StopScope.TARGET)
def export(backend: BackendClient) -> ActionSpec:
    async def operation(call: ActionCall) -> str:
        params: ExportParams = call.params  # type: ignore[assignment]
        return await _backend_call(
            "export",
            call,
            "failed to export distribution",
            lambda: backend.export_distribution(call.target, params.path),
        )

    return ActionSpec(
        name="export",
        progress_message=lambda call: f"Exporting {call.target}...",
        operation=operation,
        error_message=_failed("export"),
    )


@action("clone", params_model=CloneParams, precondition=StopScope.TARGET)
def clone(backend: BackendClient) -> ActionSpec:
    async def operation(call: ActionCall) -> None:
        params: CloneParams = call.params  # type: ignore[assignment]
        await _backend_call(
            "clone",
            call,
            "failed to clone distribution",
            lambda: backend.clone_distribution(
                call.target, params.new_name, params.install_location
            ),
        )

    return ActionSpec(
        name="clone",
        progress_message=lambda call: f"Cloning {call.target} to {call.params.new_name}...",
        operation=operation,
        on_success=refresh_distributions(backend),
        error_message=_failed("clone"),
    )


@action("rename", params_model=RenameParams, precondition=StopScope.TARGET)
def rename(backend: BackendClient) -> ActionSpec:
    async def operation(call: ActionCall) -> str:
        params: RenameParams = call.params  # type: ignore[assignment]
        if not call.target_id:
            raise ActionExecutionError(
                action="rename",
                message="distribution id is required to rename",
                target=call.target,
            )
        return await _backend_call(
            "rename",
            call,
            "failed to rename distribution",
            lambda: backend.rename_distribution(
                call.target_id,
                params.new_name,
                params.update_terminal_profile,
                params.update_shortcut,
            ),
        )

    return ActionSpec(
        name="rename",
        progress_message=lambda call: f"Renaming to {call.params.new_name}...",
        operation=operation,
        on_success=refresh_distributions(backend),
        error_message=_failed("rename"),
    )


@action(
    "set_version",
    params_model=SetVersionParams,
    precondition=StopScope.TARGET,
    label="Set WSL Version",
)
def set_version(backend: BackendClient) -> ActionSpec:
    async def operation(call: ActionCall) -> None:
        params: SetVersionParams = call.params  # type: ignore[assignment]
        await _backend_call(
            "set_version",
            call,
            "failed to change WSL version",
            lambda: backend.set_version(call.target, params.version),
        )

    return ActionSpec(
        name="set_version",
        progress_message=lambda call: (
            f"Converting {call.target} to WSL {call.params.version}..."
        ),
        operation=operation,
        on_success=refresh_distributions(backend),
        error_message=_failed("convert"),
    )


# ------------------------------------------------------------------------------
# 虚拟磁盘被占用：需要先关闭全部 WSL
# ------------------------------------------------------------------------------


@action("move", params_model=MoveParams, precondition=StopScope.ALL, label="Move Distribution")
def move(backend: BackendClient) -> ActionSpec:
    async def operation(call: ActionCall) -> None:
        params: MoveParams = call.params  # type: ignore[assignment]
        await _backend_call(
            "move",
            call,
            "failed to move distribution",
            lambda: backend.move_distribution(call.target, params.location),
        )

    return ActionSpec(
        name="move",
        progress_message=lambda call: f"Moving {call.target} to {call.params.location}...",
        operation=operation,
        on_success=refresh_distributions(backend),
        error_message=_failed("move"),
    )


@action("resize", params_model=ResizeParams, precondition=StopScope.ALL, label="Resize Disk")
def resize(backend: BackendClient) -> ActionSpec:
    async def operation(call: ActionCall) -> None:
        params: ResizeParams = call.params  # type: ignore[assignment]
        await _backend_call(
            "resize",
            call,
            "failed to resize disk",
            lambda: backend.resize_distribution(call.target, params.size),
        )

    return ActionSpec(
        name="resize",
        progress_message=lambda call: f"Resizing {call.target} to {call.params.size}...",
        operation=operation,
        on_success=refresh_distributions(backend),
        error_message=_failed("resize"),
    )


@action(
    "set_sparse",
    params_model=SparseParams,
    precondition=StopScope.ALL,
    label="Toggle Sparse Mode",
)
def set_sparse(backend: BackendClient) -> ActionSpec:
    async def operation(call: ActionCall) -> bool:
        params: SparseParams = call.params  # type: ignore[assignment]
        await _backend_call(
            "set_sparse",
            call,
            "failed to change sparse mode",
            lambda: backend.set_sparse(call.target, params.enabled),
        )
        return params.enabled

    return ActionSpec(
        name="set_sparse",
        progress_message=lambda call: (
            f"{'Enabling' if call.params.enabled else 'Disabling'} sparse mode for {call.target}..."
        ),
        operation=operation,
        error_message=_failed("toggle sparse mode for"),
    )


@action("compact", precondition=StopScope.ALL, label="Compact Disk")
def compact(backend: BackendClient) -> ActionSpec:
    async def operation(call: ActionCall) -> CompactResult:
        return await _backend_call(
            "compact",
            call,
            "failed to compact disk",
            lambda: backend.compact_distribution(call.target),
        )

    return ActionSpec(
        name="compact",
        progress_message=lambda call: f"Compacting {call.target}...",
        operation=operation,
        on_success=refresh_distributions(backend),
        error_message=_failed("compact"),
    )


# ------------------------------------------------------------------------------
# auxiliary disks (target is the disk, not a distribution)
# ------------------------------------------------------------------------------


@action("mount_disk", params_model=MountDiskParams, label="Mount Disk")
def mount_disk(backend: BackendClient) -> ActionSpec:
    async def operation(call: ActionCall) -> str:
        params: MountDiskParams = call.params  # type: ignore[assignment]
        await _backend_call(
            "mount_disk",
            call,
            "failed to mount disk",
            lambda: backend.mount_disk(params),
        )
        return params.mount_point

    return ActionSpec(
        name="mount_disk",
        progress_message=lambda call: f"Mounting {call.params.disk_path}...",
        operation=operation,
        error_message=lambda call, err: (
            f"Failed to mount {call.params.disk_path}: {format_error(err)}"
        ),
    )


@action("unmount_disk", params_model=UnmountDiskParams, label="Unmount Disk")
def unmount_disk(backend: BackendClient) -> ActionSpec:
    def describe(call: ActionCall) -> str:
        path = call.params.disk_path if call.params else None
        return path or "all disks"

    async def operation(call: ActionCall) -> None:
        params: UnmountDiskParams = call.params  # type: ignore[assignment]
        await _backend_call(
            "unmount_disk",
            call,
            "failed to unmount disk",
            lambda: backend.unmount_disk(params.disk_path),
        )

    return ActionSpec(
        name="unmount_disk",
        progress_message=lambda call: f"Unmounting {describe(call)}...",
        operation=operation,
        error_message=lambda call, err: f"Failed to unmount {describe(call)}: {format_error(err)}",
    )
