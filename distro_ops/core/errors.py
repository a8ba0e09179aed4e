"""
定义项目级异常类型与错误归一化，统一错误语义与捕获边界。
- DistroOpsError: 所有自定义异常的基类
- ActionExecutionError: 动作执行期错误（后端命令失败、超时等）
- PreconditionError: 前置步骤（停止/关机）失败
- InvalidTransitionError: 门控状态机的非法迁移
- ActionNotRegisteredError: 未注册的动作 id
- ErrorKind / ErrorCode / NormalizedError: 面向 UI 的错误词汇
"""
# @file purpose: Define error taxonomy and error normalization for distro-ops.

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class DistroOpsError(Exception):
    """Base class for all custom errors in distro-ops."""


class ActionExecutionError(DistroOpsError):
    """
    Raised when an action's backend call fails.
    统一封装上下文，便于编排层打印一致的信息与诊断。
    """

    def __init__(
        self,
        action: str,
        message: str,
        *,
        target: str | None = None,
        details: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.action: str = action
        self.target: str | None = target
        self.details: dict[str, Any] = details or {}
        self.cause: BaseException | None = cause

    @property
    def message(self) -> str:
        # 优先使用底层原因，UI 关心的是后端的原话
        if self.cause is not None and str(self.cause):
            return str(self.cause)
        return super().__str__()

    def __str__(self) -> str:
        parts = [f"[{self.action}] {super().__str__()}"]
        if self.target:
            parts.append(f"target={self.target}")
        if self.details:
            kv = ", ".join(f"{k}={v!r}" for k, v in self.details.items())
            parts.append(f"details={{ {kv} }}")
        return " | ".join(parts)


class PreconditionError(DistroOpsError):
    """Raised when the stop/shutdown step before a gated action fails."""

    def __init__(self, action: str, target: str, message: str) -> None:
        super().__init__(message)
        self.action = action
        self.target = target


class InvalidTransitionError(DistroOpsError):
    """Raised on an illegal state change inside a gated invocation."""


class ActionNotRegisteredError(DistroOpsError, KeyError):
    """Raised when an action id has no registry entry."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "action not registered"


class ErrorKind(str, Enum):
    """Where in the orchestration a failure happened."""

    OPERATION_FAILURE = "operation_failure"
    PRECONDITION_FAILURE = "precondition_failure"
    CONTINUATION_FAILURE = "continuation_failure"


class ErrorCode(str, Enum):
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT"

    WSL_NOT_INSTALLED = "WSL_NOT_INSTALLED"
    DISTRO_NOT_FOUND = "DISTRO_NOT_FOUND"
    DISTRO_ALREADY_EXISTS = "DISTRO_ALREADY_EXISTS"
    DISTRO_RUNNING = "DISTRO_RUNNING"

    CONTAINER_RUNTIME_NOT_FOUND = "CONTAINER_RUNTIME_NOT_FOUND"

    FILE_NOT_FOUND = "FILE_NOT_FOUND"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    DISK_FULL = "DISK_FULL"

    UNKNOWN = "UNKNOWN"


ERROR_HINTS: dict[ErrorCode, str] = {
    ErrorCode.WSL_NOT_INSTALLED: 'Run "wsl --install" in PowerShell as administrator.',
    ErrorCode.CONTAINER_RUNTIME_NOT_FOUND: "Install Podman Desktop or Docker Desktop.",
    ErrorCode.PERMISSION_DENIED: "Try running as administrator.",
    ErrorCode.DISK_FULL: "Free up disk space and try again.",
    ErrorCode.DISTRO_NOT_FOUND: "The distribution may have been deleted or renamed.",
    ErrorCode.DISTRO_ALREADY_EXISTS: "Choose a different name or delete the existing distribution.",
    ErrorCode.DISTRO_RUNNING: "Stop the distribution first, then try again.",
    ErrorCode.FILE_NOT_FOUND: "Check that the file path is correct.",
    ErrorCode.TIMEOUT: "WSL is taking too long to respond. Try again or force shutdown WSL.",
}

_TIMEOUT_MARKERS = ("timed out", "timeout", "taking too long")


class NormalizedError(BaseModel):
    """
    统一的错误视图：
    - message: 原始错误文本（异常取其信息，其它值直接转字符串）
    - code: 识别出的错误类型
    - summary: 已识别类型时的规范化文案（可选）
    - hint: 给用户的建议（可选）
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    message: str
    code: ErrorCode = ErrorCode.UNKNOWN
    summary: Optional[str] = None
    hint: Optional[str] = None
    cause: Optional[BaseException] = Field(default=None, exclude=True, repr=False)


def error_text(error: BaseException | Any) -> str:
    """Error-like objects give their message, anything else is stringified."""
    if isinstance(error, ActionExecutionError):
        return error.message
    if isinstance(error, BaseException):
        text = str(error)
        return text if text else type(error).__name__
    return str(error)


def is_timeout_message(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in _TIMEOUT_MARKERS)


def _classify(lowered: str) -> tuple[ErrorCode, str] | None:
    if "not found" in lowered and "distribution" in lowered:
        return ErrorCode.DISTRO_NOT_FOUND, "Distribution not found"
    if "wsl not installed" in lowered or "wsl is not recognized" in lowered:
        return ErrorCode.WSL_NOT_INSTALLED, "WSL is not installed"
    if "podman" in lowered or "docker" in lowered:
        return ErrorCode.CONTAINER_RUNTIME_NOT_FOUND, "Container runtime not available"
    if "permission denied" in lowered or "access denied" in lowered:
        return ErrorCode.PERMISSION_DENIED, "Permission denied"
    if "file not found" in lowered or "no such file" in lowered:
        return ErrorCode.FILE_NOT_FOUND, "File not found"
    if "no space left" in lowered or "disk full" in lowered or "out of space" in lowered:
        return ErrorCode.DISK_FULL, "Disk is full"
    if "already exists" in lowered:
        return ErrorCode.DISTRO_ALREADY_EXISTS, "Distribution already exists"
    if "is running" in lowered or "still running" in lowered:
        return ErrorCode.DISTRO_RUNNING, "Distribution is running"
    if any(marker in lowered for marker in _TIMEOUT_MARKERS):
        return ErrorCode.TIMEOUT, "Operation timed out"
    return None


def parse_error(error: BaseException | Any) -> NormalizedError:
    """
    Normalize any raised value into a NormalizedError.

    The message is always the raw error text. Known backend messages are
    additionally mapped to an ErrorCode with a canned summary and hint.
    """
    text = error_text(error)
    cause = error if isinstance(error, BaseException) else None
    if not isinstance(error, BaseException):
        return NormalizedError(message=text, cause=cause)

    found = _classify(text.lower())
    if found is None:
        return NormalizedError(message=text, cause=cause)
    code, summary = found
    return NormalizedError(
        message=text,
        code=code,
        summary=summary,
        hint=ERROR_HINTS.get(code),
        cause=cause,
    )


def format_error(error: NormalizedError) -> str:
    """Format error for display to user."""
    message = error.summary or error.message
    if error.hint:
        return f"{message}. {error.hint}"
    return message
