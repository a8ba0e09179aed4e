"""
动作注册表与元数据:
- 以 action id 作为键注册 ActionSpec 工厂（绑定到 BackendClient）
- 绑定 params_model (Pydantic v2) 用于参数校验
- 记录前置条件范围（无 / 先停止目标 / 先关闭全部）
- 提供 validate_request() 在执行前做强校验
"""
# @file purpose: Provide action registry, metadata, and request validation.

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional, Tuple, Type

from pydantic import BaseModel, TypeAdapter

from .action import ActionCall, ActionRequest, ActionSpec
from .errors import ActionNotRegisteredError

if TYPE_CHECKING:
    from ..io.backend import BackendClient

# 工厂的标准签名：给定后端，产出无状态的 ActionSpec
ActionFactory = Callable[["BackendClient"], ActionSpec]


class StopScope(str, Enum):
    """What has to be stopped before an action may run."""

    NONE = "none"
    TARGET = "target"  # stop the distribution itself
    ALL = "all"  # shut down every distribution (shared virtual disk)


@dataclass(frozen=True)
class ActionMeta:
    """动作元信息：名称 + 展示名 + 入参模型（可选）+ 前置条件范围"""

    name: str
    label: str
    params_model: Optional[Type[BaseModel]] = None
    precondition: StopScope = StopScope.NONE
    confirm: bool = False  # ask before running even when nothing needs stopping


# 全局注册表：动作工厂 & 元数据
_REGISTRY: Dict[str, ActionFactory] = {}
_META: Dict[str, ActionMeta] = {}


def action(
    name: str,
    *,
    params_model: Optional[Type[BaseModel]] = None,
    precondition: StopScope = StopScope.NONE,
    label: Optional[str] = None,
) -> Callable[[ActionFactory], ActionFactory]:
    """
    装饰器：注册动作工厂及其参数模型、前置条件。
    用法示例：
        @action("clone", params_model=CloneParams, precondition=StopScope.TARGET)
        def clone(backend): return ActionSpec(...)
    """

    def deco(fn: ActionFactory) -> ActionFactory:
        register(name, fn, params_model=params_model, precondition=precondition, label=label)
        return fn

    return deco


def register(
    name: str,
    fn: ActionFactory,
    *,
    params_model: Optional[Type[BaseModel]] = None,
    precondition: StopScope = StopScope.NONE,
    label: Optional[str] = None,
    confirm: bool = False,
) -> None:
    """非装饰器形式注册，便于动态装配（自定义动作）或测试。"""
    _REGISTRY[name] = fn
    _META[name] = ActionMeta(
        name=name,
        label=label or name.replace("_", " ").title(),
        params_model=params_model,
        precondition=precondition,
        confirm=confirm,
    )


def unregister(name: str) -> None:
    _REGISTRY.pop(name, None)
    _META.pop(name, None)


def get_action(name: str) -> ActionFactory:
    try:
        return _REGISTRY[name]
    except KeyError as e:
        raise ActionNotRegisteredError(f"Action not registered: {name}") from e


def get_meta(name: str) -> ActionMeta:
    try:
        return _META[name]
    except KeyError as e:
        raise ActionNotRegisteredError(f"Action not registered (no metadata): {name}") from e


def list_actions() -> Dict[str, ActionMeta]:
    """返回一个浅拷贝，便于调试/展示。"""
    return dict(_META)


def validate_args(meta: ActionMeta, args: Any) -> Optional[BaseModel]:
    """Validate raw args (dict or model instance) against the bound params model."""
    if meta.params_model is None:
        # 未声明参数模型：忽略 args
        return None
    if isinstance(args, meta.params_model):
        return args
    adapter = TypeAdapter(meta.params_model)
    return adapter.validate_python(args or {})


def validate_request(request: ActionRequest) -> Tuple[ActionMeta, ActionCall]:
    """
    在执行前对 ActionRequest 做强校验：
    1) 动作是否已注册（否则 ActionNotRegisteredError）
    2) 若绑定了 params_model，则用其校验 args（失败抛 ValidationError）
    3) 成功时返回 (ActionMeta, 已绑定目标与参数的 ActionCall)
    """
    meta = get_meta(request.action)
    params = validate_args(meta, request.args)
    call = ActionCall(
        action=request.action,
        target=request.target,
        target_id=request.target_id,
        params=params,
    )
    return meta, call
