"""测试公共夹具：内存版 BackendClient + 会话装配。"""
# @file purpose: Shared fixtures (fake backend, store, session).

from __future__ import annotations

import asyncio
from collections.abc import Iterator
from typing import Any, Optional

import pytest

from distro_ops.actions.custom import CustomAction
from distro_ops.actions.params import MountDiskParams
from distro_ops.core import registry
from distro_ops.core.controller.session import ActionSession, load_builtin_actions
from distro_ops.core.lifecycle import Distribution, LifecycleState
from distro_ops.core.store import Store
from distro_ops.io.backend import CommandResult, CompactResult

load_builtin_actions()


class FakeBackend:
    """
    In-memory BackendClient.

    Every call is appended to `calls` as (method, *args). `fail` maps a
    method name to the exception it raises; `delay` makes every call yield
    to the loop first so interleavings can be observed.
    """

    def __init__(self, distributions: Optional[list[Distribution]] = None) -> None:
        self.distributions: list[Distribution] = list(distributions or [])
        self.calls: list[tuple[Any, ...]] = []
        self.fail: dict[str, BaseException] = {}
        self.startup: dict[str, list[CustomAction]] = {}
        self.command_results: dict[str, CommandResult] = {}
        self.passwords: list[Optional[str]] = []
        self.delay: float = 0

    async def _call(self, method: str, *args: Any) -> None:
        self.calls.append((method, *args))
        if self.delay:
            await asyncio.sleep(self.delay)
        if method in self.fail:
            raise self.fail[method]

    def _set_state(self, name: str, state: LifecycleState) -> None:
        self.distributions = [
            d.model_copy(update={"state": state}) if d.name == name else d
            for d in self.distributions
        ]

    def methods(self) -> list[str]:
        return [c[0] for c in self.calls]

    async def list_distributions(self) -> list[Distribution]:
        await self._call("list_distributions")
        return list(self.distributions)

    async def start_distribution(self, name: str, id: str | None = None) -> None:
        await self._call("start_distribution", name, id)
        self._set_state(name, LifecycleState.RUNNING)

    async def stop_distribution(self, name: str) -> None:
        await self._call("stop_distribution", name)
        self._set_state(name, LifecycleState.STOPPED)

    async def restart_distribution(self, name: str, id: str | None = None) -> None:
        await self._call("restart_distribution", name, id)
        self._set_state(name, LifecycleState.RUNNING)

    async def shutdown_all(self) -> None:
        await self._call("shutdown_all")
        for d in self.distributions:
            self._set_state(d.name, LifecycleState.STOPPED)

    async def delete_distribution(self, name: str) -> None:
        await self._call("delete_distribution", name)
        self.distributions = [d for d in self.distributions if d.name != name]

    async def set_default_distribution(self, name: str) -> None:
        await self._call("set_default_distribution", name)

    async def export_distribution(self, name: str, path: str) -> str:
        await self._call("export_distribution", name, path)
        return path

    async def clone_distribution(
        self, source: str, new_name: str, install_location: str | None = None
    ) -> None:
        await self._call("clone_distribution", source, new_name, install_location)
        self.distributions.append(Distribution(name=new_name, state=LifecycleState.STOPPED))

    async def rename_distribution(
        self, id: str, new_name: str, update_terminal_profile: bool, update_shortcut: bool
    ) -> str:
        await self._call(
            "rename_distribution", id, new_name, update_terminal_profile, update_shortcut
        )
        return new_name

    async def set_version(self, name: str, version: int) -> None:
        await self._call("set_version", name, version)

    async def move_distribution(self, name: str, location: str) -> None:
        await self._call("move_distribution", name, location)

    async def resize_distribution(self, name: str, size: str) -> None:
        await self._call("resize_distribution", name, size)

    async def set_sparse(self, name: str, enabled: bool) -> None:
        await self._call("set_sparse", name, enabled)

    async def compact_distribution(self, name: str) -> CompactResult:
        await self._call("compact_distribution", name)
        return CompactResult(size_before=10_000, size_after=4_000)

    async def mount_disk(self, options: MountDiskParams) -> None:
        await self._call("mount_disk", options.disk_path)

    async def unmount_disk(self, disk_path: str | None = None) -> None:
        await self._call("unmount_disk", disk_path)

    async def execute_action(
        self,
        action_id: str,
        name: str,
        id: str | None = None,
        password: str | None = None,
    ) -> CommandResult:
        await self._call("execute_action", action_id, name, id)
        self.passwords.append(password)
        return self.command_results.get(action_id, CommandResult(success=True, output="ok"))

    async def run_action_in_terminal(
        self, action_id: str, name: str, id: str | None = None
    ) -> None:
        await self._call("run_action_in_terminal", action_id, name, id)

    async def get_startup_actions(self, name: str) -> list[CustomAction]:
        await self._call("get_startup_actions", name)
        return list(self.startup.get(name, []))


def make_distros(**states: LifecycleState) -> list[Distribution]:
    return [
        Distribution(name=name, id=f"{{{name}-guid}}", state=state)
        for name, state in states.items()
    ]


@pytest.fixture
def store() -> Store:
    return Store()


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend(
        make_distros(Ubuntu=LifecycleState.RUNNING, Debian=LifecycleState.STOPPED)
    )


@pytest.fixture
def session(backend: FakeBackend) -> ActionSession:
    s = ActionSession(backend, confirm=lambda _req: True)
    s.store.set_distributions(backend.distributions)
    return s


@pytest.fixture
def scratch_actions() -> Iterator[list[str]]:
    """Names appended here are removed from the registry after the test."""
    names: list[str] = []
    yield names
    for name in names:
        registry.unregister(name)
