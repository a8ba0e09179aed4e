"""
Backend client protocol (abstraction).

This Protocol defines the host-side surface that action specs rely on:
every method runs one WSL/virtualization command and either returns a
domain result or raises. It allows plugging different backends (the real
wsl.exe bridge, an in-memory fake in tests) without changing actions.

Notes:
- `name` is the distribution name; `id` is its registry GUID when known.
- Implementations raise on failure; the message text is shown to the user
  after normalization, so it should be the command's own error output.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional, Protocol

from pydantic import BaseModel

from ..core.lifecycle import Distribution

if TYPE_CHECKING:
    from ..actions.custom import CustomAction
    from ..actions.params import MountDiskParams


class CompactResult(BaseModel):
    """Virtual disk size before and after compaction, in bytes."""

    size_before: int
    size_after: int

    @property
    def reclaimed(self) -> int:
        return max(0, self.size_before - self.size_after)


class CommandResult(BaseModel):
    """Output of a custom action run in the background."""

    success: bool
    output: str = ""
    error: Optional[str] = None


class BackendClient(Protocol):
    # -------- listing --------
    async def list_distributions(self) -> list[Distribution]: ...

    # -------- lifecycle --------
    async def start_distribution(self, name: str, id: str | None = None) -> None: ...
    async def stop_distribution(self, name: str) -> None: ...
    async def restart_distribution(self, name: str, id: str | None = None) -> None: ...
    async def shutdown_all(self) -> None: ...
    async def delete_distribution(self, name: str) -> None: ...
    async def set_default_distribution(self, name: str) -> None: ...

    # -------- copy / identity --------
    async def export_distribution(self, name: str, path: str) -> str: ...
    async def clone_distribution(
        self, source: str, new_name: str, install_location: str | None = None
    ) -> None: ...
    async def rename_distribution(
        self,
        id: str,
        new_name: str,
        update_terminal_profile: bool,
        update_shortcut: bool,
    ) -> str: ...
    async def set_version(self, name: str, version: int) -> None: ...

    # -------- virtual disk --------
    async def move_distribution(self, name: str, location: str) -> None: ...
    async def resize_distribution(self, name: str, size: str) -> None: ...
    async def set_sparse(self, name: str, enabled: bool) -> None: ...
    async def compact_distribution(self, name: str) -> CompactResult: ...

    # -------- auxiliary disks --------
    async def mount_disk(self, options: "MountDiskParams") -> None: ...
    async def unmount_disk(self, disk_path: str | None) -> None: ...

    # -------- custom / startup actions --------
    async def execute_action(
        self,
        action_id: str,
        name: str,
        id: str | None = None,
        password: str | None = None,
    ) -> CommandResult: ...
    async def run_action_in_terminal(
        self, action_id: str, name: str, id: str | None = None
    ) -> None: ...
    async def get_startup_actions(self, name: str) -> list["CustomAction"]: ...
