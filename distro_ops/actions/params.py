"""
入参模型: 定义各动作的 Pydantic v2 参数约束。
Why: 在 UI → 后端 的边界先做强校验, 拦截坏数据, 统一错误结构。
包含:
- ExportParams { path: NonEmptyStr }
- CloneParams { new_name: DistroName, install_location? }
- RenameParams { new_name: DistroName, update_terminal_profile, update_shortcut }
- SetVersionParams { version: 1 | 2 }
- MoveParams { location: NonEmptyStr }
- ResizeParams { size: DiskSize }
- SparseParams { enabled }
- MountDiskParams { disk_path, is_vhd, mount_name?, filesystem_type?, ... }
- UnmountDiskParams { disk_path? }
"""
# @file purpose: Define parameter schemas for distribution actions using Pydantic v2.

import re
from typing import Annotated, Literal, Optional

from pydantic import AfterValidator, BaseModel, Field, StringConstraints

_NAME_CHARS = re.compile(r"^[A-Za-z0-9._-]+$")
_DISK_SIZE = re.compile(r"^[1-9][0-9]*(MB|GB|TB)$", re.IGNORECASE)


def _check_distro_name(value: str) -> str:
    if len(value) > 64:
        raise ValueError("name must be 64 characters or less")
    if not _NAME_CHARS.match(value):
        raise ValueError(
            "name can only contain letters, numbers, hyphens, underscores, and periods"
        )
    if value.startswith("-"):
        raise ValueError("name cannot start with a hyphen")
    return value


def _check_disk_size(value: str) -> str:
    if not _DISK_SIZE.match(value):
        raise ValueError("size must be a positive number followed by MB, GB or TB (e.g. 256GB)")
    return value.upper()


# 辅助约束类型
NonEmptyStr = Annotated[str, StringConstraints(min_length=1, strip_whitespace=True)]
DistroName = Annotated[
    str,
    StringConstraints(min_length=1, strip_whitespace=True),
    AfterValidator(_check_distro_name),
]
DiskSize = Annotated[
    str, StringConstraints(strip_whitespace=True), AfterValidator(_check_disk_size)
]


class ExportParams(BaseModel):
    """Parameters for export action."""

    path: NonEmptyStr


class CloneParams(BaseModel):
    """Parameters for clone action."""

    new_name: DistroName
    install_location: Optional[str] = None


class RenameParams(BaseModel):
    """Parameters for rename action."""

    new_name: DistroName
    update_terminal_profile: bool = True
    update_shortcut: bool = True


class SetVersionParams(BaseModel):
    """Parameters for set_version action."""

    version: Literal[1, 2]


class MoveParams(BaseModel):
    """Parameters for move action."""

    location: NonEmptyStr


class ResizeParams(BaseModel):
    """Parameters for resize action."""

    size: DiskSize


class SparseParams(BaseModel):
    """Parameters for set_sparse action."""

    enabled: bool


class MountDiskParams(BaseModel):
    """Parameters for mount_disk action (wsl --mount)."""

    disk_path: NonEmptyStr
    is_vhd: bool = False
    mount_name: Optional[DistroName] = None
    filesystem_type: Optional[str] = None
    mount_options: Optional[str] = None
    partition: Optional[int] = Field(default=None, ge=0)
    bare: bool = False

    @property
    def mount_point(self) -> str:
        """WSL mounts under /mnt/wsl/<name>; the name defaults to the file stem."""
        if self.mount_name:
            return f"/mnt/wsl/{self.mount_name}"
        file_name = re.split(r"[/\\]", self.disk_path)[-1] or self.disk_path
        stem = re.sub(r"\.[^.]+$", "", file_name)
        return f"/mnt/wsl/{stem}"


class UnmountDiskParams(BaseModel):
    """Parameters for unmount_disk action; no path unmounts everything."""

    disk_path: Optional[str] = None
