# distro_ops/core/controller/runner.py
"""
Generic async action runner over a shared store.

Responsibilities:
- Write the progress message into `action_in_progress` before the first await
- Await the operation, then the optional on_success continuation
- Normalize any failure into the `error` slot (never re-raised to the caller)
- Clear `action_in_progress` exactly once, whatever happened
"""

from __future__ import annotations

import inspect
from typing import Any, Awaitable, Callable

from loguru import logger

from ..action import ActionSpec
from ..errors import ErrorKind, format_error, parse_error
from ..result import ActionOutcome
from ..store import Store


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class AsyncActionRunner:
    def __init__(self, store: Store) -> None:
        self.store = store

    async def run(self, spec: ActionSpec, args: Any = None) -> Any:
        """Run `spec`; resolves to the operation's value, or None on failure."""
        outcome = await self.execute(spec, args)
        return outcome.unwrap()

    async def execute(self, spec: ActionSpec, args: Any = None) -> ActionOutcome:
        """Same as run(), but returns the full outcome so callers can tell a
        failure apart from an operation that legitimately resolved to None."""
        progress = spec.resolve_progress(args)
        self.store.set({"action_in_progress": progress})
        logger.debug("[{}] started: {}", spec.name, progress)

        try:
            try:
                result = await _maybe_await(spec.operation(args))
            except Exception as e:  # noqa: BLE001
                return self._fail(spec, args, e, ErrorKind.OPERATION_FAILURE)

            if spec.on_success is not None:
                try:
                    await _maybe_await(spec.on_success(result, self.store.get, self.store.set))
                except Exception as e:  # noqa: BLE001
                    if spec.propagate_continuation_errors:
                        raise
                    return self._fail(spec, args, e, ErrorKind.CONTINUATION_FAILURE)

            logger.debug("[{}] finished", spec.name)
            return ActionOutcome.success(result)
        finally:
            self.store.set({"action_in_progress": None})

    def bind(self, spec: ActionSpec) -> Callable[[Any], Awaitable[Any]]:
        """Turn a spec into a store action: `await action(args)`."""

        async def bound(args: Any = None) -> Any:
            return await self.run(spec, args)

        bound.__name__ = spec.name
        return bound

    def _fail(
        self, spec: ActionSpec, args: Any, error: Exception, kind: ErrorKind
    ) -> ActionOutcome:
        normalized = parse_error(error)
        message = spec.resolve_error(args, normalized)
        logger.warning(
            "[{}] {} ({}): {}",
            spec.name,
            kind.value,
            normalized.code.value,
            format_error(normalized),
        )
        self.store.set({"error": message})
        return ActionOutcome.failure(message, kind=kind, cause=normalized)
