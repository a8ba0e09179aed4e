"""
User-defined custom actions.

A custom action is a shell command run inside a distribution. It declares
which distributions it applies to (all / a fixed list / a regex pattern)
and whether the distribution must be stopped first; the latter decides the
precondition of the `custom:<id>` registry entry built for it, and
`confirm_before_run` makes the gate ask before running it.
"""

from __future__ import annotations

import re
import shlex
from functools import lru_cache
from typing import Literal, Optional, Union

from loguru import logger
from pydantic import BaseModel, Field, SecretStr

from ..core import registry
from ..core.action import ActionCall, ActionSpec
from ..core.errors import ActionExecutionError, format_error
from ..core.registry import StopScope
from ..core.store import ActionOutput
from ..io.backend import BackendClient

CUSTOM_PREFIX = "custom:"


class AllScope(BaseModel):
    type: Literal["all"] = "all"


class SpecificScope(BaseModel):
    type: Literal["specific"] = "specific"
    distros: list[str] = Field(default_factory=list)


class PatternScope(BaseModel):
    type: Literal["pattern"] = "pattern"
    pattern: str


DistroScope = Union[AllScope, SpecificScope, PatternScope]


@lru_cache(maxsize=128)
def _compile(pattern: str) -> Optional[re.Pattern[str]]:
    try:
        return re.compile(pattern)
    except re.error as e:
        logger.warning("Invalid regex pattern {!r} in action configuration: {}", pattern, e)
        return None


def pattern_matches(pattern: str, text: str) -> bool:
    """Regex search; an invalid pattern matches nothing."""
    compiled = _compile(pattern)
    return bool(compiled and compiled.search(text))


def substitute_variables(command: str, distro: str) -> str:
    """Replace ${DISTRO_NAME} with the shell-quoted distribution name."""
    return command.replace("${DISTRO_NAME}", shlex.quote(distro))


class CustomAction(BaseModel):
    id: str
    name: str
    command: str
    icon: str = "terminal"
    scope: DistroScope = Field(default_factory=AllScope, discriminator="type")
    confirm_before_run: bool = False
    show_output: bool = True
    requires_sudo: bool = False
    requires_stopped: bool = False
    run_in_terminal: bool = False
    order: int = 0

    @property
    def action_id(self) -> str:
        return f"{CUSTOM_PREFIX}{self.id}"

    def applies_to(self, distro: str) -> bool:
        if isinstance(self.scope, SpecificScope):
            return distro in self.scope.distros
        if isinstance(self.scope, PatternScope):
            return pattern_matches(self.scope.pattern, distro)
        return True

    def preview(self, distro: str) -> str:
        return substitute_variables(self.command, distro)


class CustomActionParams(BaseModel):
    """Run-time input of a custom action; the password is only used with requires_sudo."""

    password: Optional[SecretStr] = None


SUDO_PASSWORD_REQUIRED = "This action requires sudo. Please provide your password."


def custom_action_spec(backend: BackendClient, custom: CustomAction) -> ActionSpec:
    async def operation(call: ActionCall) -> Optional[ActionOutput]:
        if not custom.applies_to(call.target):
            raise ActionExecutionError(
                action=custom.action_id,
                message=f"Action '{custom.name}' does not apply to distribution '{call.target}'",
                target=call.target,
            )
        if custom.run_in_terminal:
            # output goes to the user's terminal, nothing to record
            await backend.run_action_in_terminal(custom.id, call.target, call.target_id)
            return None

        params = call.params if isinstance(call.params, CustomActionParams) else None
        password = params.password if params is not None else None
        if custom.requires_sudo and not password:
            raise ActionExecutionError(
                action=custom.action_id, message=SUDO_PASSWORD_REQUIRED, target=call.target
            )

        result = await backend.execute_action(
            custom.id,
            call.target,
            call.target_id,
            password.get_secret_value() if password is not None else None,
        )
        if not result.success:
            raise ActionExecutionError(
                action=custom.action_id,
                message=result.error or "custom action failed",
                target=call.target,
                details={"output": result.output},
            )
        return ActionOutput(
            action_name=custom.name,
            distro=call.target,
            output=result.output,
            error=result.error,
        )

    def on_success(output: Optional[ActionOutput], get, set) -> None:
        if output is not None and custom.show_output:
            set(lambda state: {"action_outputs": [*state.action_outputs, output]})

    return ActionSpec(
        name=custom.action_id,
        progress_message=lambda call: f"Running {custom.name} on {call.target}...",
        operation=operation,
        on_success=on_success,
        error_message=lambda call, err: (
            f"{custom.name} failed on {call.target}: {format_error(err)}"
        ),
    )


def register_custom_action(custom: CustomAction) -> str:
    """Register (or replace) the registry entry for a custom action."""

    def factory(backend: BackendClient) -> ActionSpec:
        return custom_action_spec(backend, custom)

    registry.register(
        custom.action_id,
        factory,
        params_model=CustomActionParams,
        precondition=StopScope.TARGET if custom.requires_stopped else StopScope.NONE,
        label=custom.name,
        confirm=custom.confirm_before_run,
    )
    return custom.action_id
