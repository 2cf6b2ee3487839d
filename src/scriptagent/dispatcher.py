"""
Script Dispatcher - Runs a script-backed function in the sandbox.

execute() resolves the script, marshals parameters into JSON-text
globals, wraps the body with the shim, runs it, and classifies the
outcome. Every execution failure (engine error, script load error, error
raised by the script) goes through on_failure so the model sees it.
The only exception that escapes is ScriptNotFoundError: a missing script
is a defect in the registered function set, not something the agent
can fix.
"""

import json
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from scriptagent.errors import ScriptNotFoundError
from scriptagent.sandbox import GlobalVar, shim_code
from scriptagent.types import FunctionOutcome

if TYPE_CHECKING:
    from scriptagent.context import AgentContext

logger = logging.getLogger(__name__)

OnSuccess = Callable[[dict[str, Any], str | None], FunctionOutcome]
OnFailure = Callable[[dict[str, Any], str | None], FunctionOutcome]


def encode_globals(params: dict[str, Any]) -> list[GlobalVar]:
    """Encode each parameter as a name / JSON-text binding."""
    return [
        GlobalVar(name=name, value=json.dumps(value, default=str))
        for name, value in params.items()
    ]


class ScriptDispatcher:
    """Executes scripts from the context's repository in its sandbox."""

    def execute(
        self,
        context: "AgentContext",
        script_name: str,
        params: dict[str, Any],
        on_success: OnSuccess,
        on_failure: OnFailure,
    ) -> FunctionOutcome:
        script = context.scripts.get_script_by_name(script_name)
        if script is None:
            raise ScriptNotFoundError(script_name)

        globals_ = encode_globals(params)
        logger.info(f"Dispatching script {script_name} with {len(globals_)} params")

        result = context.sandbox.evaluate(shim_code(script.code), globals_)

        if not result.ok:
            return on_failure(params, result.error or "Unknown error")

        evaluated = result.value
        if evaluated is None:
            return on_failure(params, "Engine returned no result")
        if evaluated.error is not None:
            return on_failure(params, evaluated.error)

        output = evaluated.output
        if output is None:
            return on_failure(params, "Script produced no output")
        if not output.ok:
            return on_failure(params, output.error or "Script failed")

        return on_success(params, output.value)
