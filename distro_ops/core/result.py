"""
结构化的动作结果，用于向上层（门控/CLI）汇报一次编排调用的结局。
"""
# @file purpose: Define ActionOutcome model for orchestrated action results.

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict

from .errors import ErrorKind, NormalizedError


class ActionOutcome(BaseModel):
    """
    Success(value) or Failure(message), never both:
    - ok: whether the operation (and its continuation) succeeded
    - value: the operation's resolved value (may itself be None)
    - error: the message written to the store's error slot
    - kind: which stage failed
    - cause: the normalized error behind a failure
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    ok: bool = True
    value: Any = None
    error: Optional[str] = None
    kind: Optional[ErrorKind] = None
    cause: Optional[NormalizedError] = None

    @classmethod
    def success(cls, value: Any = None) -> "ActionOutcome":
        return cls(ok=True, value=value)

    @classmethod
    def failure(
        cls,
        message: str,
        *,
        kind: ErrorKind = ErrorKind.OPERATION_FAILURE,
        cause: NormalizedError | None = None,
    ) -> "ActionOutcome":
        return cls(ok=False, error=message, kind=kind, cause=cause)

    def unwrap(self) -> Any:
        """Caller-facing value: the resolved value on success, None on failure."""
        return self.value if self.ok else None
