"""
Core types for the agent system.

These types represent the data that flows through the function-call loop:
transcript messages, the model's function-call requests, the normalized
outcome of running a function, and what the loop hands to its consumer.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Role(str, Enum):
    """Message roles in the transcript."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    FUNCTION = "function"


@dataclass
class FunctionCall:
    """
    A request from the model to run one registered function.

    The model never executes anything itself. It names a function and
    supplies arguments; the loop resolves and runs it.
    """
    name: str
    arguments: dict[str, Any]
    id: str = ""


@dataclass
class Message:
    """
    A single entry in the transcript.

    Persistent messages (goal, system framing) are resent at the head of
    every model query. Ephemeral messages are ordinary history and may be
    trimmed when the context budget is exceeded.
    """
    role: Role
    content: str
    persistent: bool = False
    name: str | None = None
    function_call: FunctionCall | None = None
    call_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dict for logging and inspection."""
        result: dict[str, Any] = {
            "role": self.role.value,
            "content": self.content,
            "persistent": self.persistent,
        }
        if self.name is not None:
            result["name"] = self.name
        if self.function_call is not None:
            result["function_call"] = {
                "id": self.function_call.id,
                "name": self.function_call.name,
                "arguments": self.function_call.arguments,
            }
        if self.call_id is not None:
            result["call_id"] = self.call_id
        return result


@dataclass
class FunctionOutcome:
    """
    The normalized result of running a function.

    Failures are values, not exceptions: the model sees them in the
    transcript and can retry or pick something else.
    """
    ok: bool
    content: str
    title: str | None = None

    @classmethod
    def success(cls, content: str, title: str | None = None) -> "FunctionOutcome":
        return cls(ok=True, content=content, title=title)

    @classmethod
    def failure(cls, content: str, title: str | None = None) -> "FunctionOutcome":
        return cls(ok=False, content=content, title=title)


@dataclass
class Script:
    """A named script body resolved from the script repository."""
    name: str
    code: str
    description: str = ""
    arguments: str = ""


@dataclass
class StepOutput:
    """
    Intermediate artifact yielded to the loop's consumer after each turn.

    kind is "message" (free text from the model) or "function" (a
    function ran, its outcome attached).
    """
    kind: str
    title: str
    content: str = ""
    function_call: FunctionCall | None = None
    outcome: FunctionOutcome | None = None


@dataclass
class RunResult:
    """Final result of a run: a success payload or a failure message."""
    ok: bool
    value: str | None = None
    error: str | None = None
    outcome: FunctionOutcome | None = None
    steps: list[StepOutput] = field(default_factory=list)

    @classmethod
    def success(cls, value: str) -> "RunResult":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: str) -> "RunResult":
        return cls(ok=False, error=error)
