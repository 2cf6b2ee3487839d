"""
Function Registry - The closed set of functions the model may choose from.

Functions are the ONLY way an agent affects anything. The model names a
function and supplies arguments; the registry resolves the name to a
definition and builds an executor bound to one agent context.

A definition is either script-backed (its code lives in the script
repository under the function name with "_" replaced by ".") or native
(a Python handler). Either way the executor returns a FunctionOutcome:
execution failures are values the model gets to see.
"""

import json
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from scriptagent.dispatcher import ScriptDispatcher
from scriptagent.errors import DuplicateFunctionError, RegistryFrozenError, UnknownFunctionError
from scriptagent.types import FunctionOutcome

if TYPE_CHECKING:
    from scriptagent.context import AgentContext

logger = logging.getLogger(__name__)

OutcomeBuilder = Callable[[str, str, dict[str, Any], str | None], FunctionOutcome]
NativeHandler = Callable[["AgentContext", dict[str, Any]], str]
Executor = Callable[[dict[str, Any]], FunctionOutcome]


def format_params(params: dict[str, Any]) -> str:
    return json.dumps(params, ensure_ascii=False, default=str)


def default_success(
    agent_name: str,
    function_name: str,
    params: dict[str, Any],
    result: str | None = None,
) -> FunctionOutcome:
    """Outcome shown to the model when a function completes."""
    lines = [f"## Function Call\n{function_name}({format_params(params)})"]
    if result is not None:
        lines.append(f"## Result\n{result}")
    else:
        lines.append("## Result\nCompleted with no output.")
    return FunctionOutcome.success(
        "\n".join(lines),
        title=f"[{agent_name}] {function_name}",
    )


def default_failure(
    agent_name: str,
    function_name: str,
    params: dict[str, Any],
    error: str | None = None,
) -> FunctionOutcome:
    """Outcome shown to the model when a function fails."""
    return FunctionOutcome.failure(
        f"## Function Call\n{function_name}({format_params(params)})\n"
        f"## Error\n{error or 'Unknown error'}",
        title=f"[{agent_name}] Error in {function_name}",
    )


@dataclass(frozen=True)
class FunctionDefinition:
    """
    Declarative definition of a function the model can call.

    - name: unique key, also the basis of the backing script name
    - description: shown to the model
    - parameters: JSON Schema for the arguments
    - is_termination: choosing this function ends the run
    - success / failure: build the outcome fed back to the model
    - handler: native implementation; None means script-backed
    """
    name: str
    description: str
    parameters: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )
    is_termination: bool = False
    success: OutcomeBuilder = default_success
    failure: OutcomeBuilder = default_failure
    handler: NativeHandler | None = None

    @property
    def script_name(self) -> str:
        return self.name.replace("_", ".")

    @property
    def is_native(self) -> bool:
        return self.handler is not None

    def to_openai_schema(self) -> dict[str, Any]:
        """Convert to OpenAI tool format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


class FunctionRegistry:
    """
    Registry of the functions available to one agent.

    Registration happens once, before the loop starts. The loop freezes
    the registry so no function appears or changes mid-run.
    """

    def __init__(self, dispatcher: ScriptDispatcher | None = None) -> None:
        self._functions: dict[str, FunctionDefinition] = {}
        self._frozen = False
        self.dispatcher = dispatcher or ScriptDispatcher()

    @classmethod
    def from_definitions(
        cls,
        definitions: Iterable[FunctionDefinition],
        dispatcher: ScriptDispatcher | None = None,
    ) -> "FunctionRegistry":
        registry = cls(dispatcher)
        for definition in definitions:
            registry.register(definition)
        return registry

    def register(self, definition: FunctionDefinition) -> None:
        """Register a function. Names must be unique."""
        if self._frozen:
            raise RegistryFrozenError(
                f"Cannot register {definition.name}: registry is frozen"
            )
        if definition.name in self._functions:
            raise DuplicateFunctionError(definition.name)
        self._functions[definition.name] = definition
        logger.debug(f"Registered function: {definition.name}")

    def resolve(self, name: str) -> FunctionDefinition:
        definition = self._functions.get(name)
        if definition is None:
            raise UnknownFunctionError(name)
        return definition

    def freeze(self) -> None:
        self._frozen = True

    @property
    def is_frozen(self) -> bool:
        return self._frozen

    def build_executor(
        self,
        name: str,
        context: "AgentContext",
        agent_name: str = "agent",
    ) -> Executor:
        """
        Bind a definition's outcome builders and its implementation to one
        context. The returned callable takes the parsed arguments.
        """
        definition = self.resolve(name)

        def on_success(params: dict[str, Any], result: str | None = None) -> FunctionOutcome:
            return definition.success(agent_name, definition.name, params, result)

        def on_failure(params: dict[str, Any], error: str | None = None) -> FunctionOutcome:
            return definition.failure(agent_name, definition.name, params, error)

        if definition.handler is not None:
            handler = definition.handler

            def run_native(params: dict[str, Any]) -> FunctionOutcome:
                try:
                    result = handler(context, params)
                except Exception as e:
                    logger.warning(f"Function {definition.name} failed: {e}")
                    return on_failure(params, str(e))
                return on_success(params, result)

            return run_native

        def run_script(params: dict[str, Any]) -> FunctionOutcome:
            return self.dispatcher.execute(
                context,
                definition.script_name,
                params,
                on_success=on_success,
                on_failure=on_failure,
            )

        return run_script

    def schemas(self) -> list[dict[str, Any]]:
        """OpenAI-format schemas for all registered functions."""
        return [d.to_openai_schema() for d in self._functions.values()]

    @property
    def names(self) -> list[str]:
        return list(self._functions.keys())

    @property
    def termination_names(self) -> list[str]:
        return [n for n, d in self._functions.items() if d.is_termination]

    def __len__(self) -> int:
        return len(self._functions)

    def __contains__(self, name: str) -> bool:
        return name in self._functions
