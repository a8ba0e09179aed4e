"""
定义动作层的数据契约。
- ActionSpec: 一次编排操作的不可变描述（进度文案 + 操作 + 成功回调 + 错误文案）
- ActionCall: 已校验的调用参数（target + params），传给 ActionSpec 的各个回调
- ActionRequest: 由 UI/脚本产出的动作请求（action + target + args）
"""
# @file purpose: Define action data contracts.

from __future__ import annotations

from typing import Any, Awaitable, Callable, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .errors import NormalizedError

GetState = Callable[[], Any]
SetState = Callable[[Any], None]

ProgressMessage = Union[str, Callable[[Any], str]]
ErrorMessage = Union[str, Callable[[Any, NormalizedError], str]]
Operation = Callable[[Any], Union[Awaitable[Any], Any]]
OnSuccess = Callable[[Any, GetState, SetState], Union[Awaitable[None], None]]


class ActionSpec(BaseModel):
    """
    Stateless descriptor of one orchestrated operation.

    Both message fields accept a literal or a callable; callables are
    evaluated once per run, the progress one before the operation starts.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    name: str = Field(default="action", description="Action id, used for logging.")
    progress_message: ProgressMessage
    operation: Operation
    error_message: ErrorMessage
    on_success: Optional[OnSuccess] = None
    propagate_continuation_errors: bool = Field(
        default=False,
        description="Re-raise on_success failures instead of reporting them.",
    )

    def resolve_progress(self, args: Any) -> str:
        if callable(self.progress_message):
            return self.progress_message(args)
        return self.progress_message

    def resolve_error(self, args: Any, error: NormalizedError) -> str:
        if callable(self.error_message):
            return self.error_message(args, error)
        return self.error_message


class ActionCall(BaseModel):
    """Validated arguments an ActionSpec's callables receive."""

    model_config = ConfigDict(frozen=True)

    action: str
    target: str
    target_id: Optional[str] = None
    params: Optional[BaseModel] = None


class ActionRequest(BaseModel):
    action: str = Field(..., description="Registered action id.")
    target: str = Field(..., description="Distribution name the action operates on.")
    target_id: str | None = Field(default=None, description="Distribution GUID, if known.")
    args: dict[str, Any] = Field(
        default_factory=dict, description="Parameters validated by the action's params model."
    )
