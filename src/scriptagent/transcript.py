"""
Transcript - The ordered record of a run's conversation.

The transcript keeps two lists. Persistent entries (system prompt, goal)
are written once when an agent starts and are resent at the head of every
model query. Ephemeral entries are the running history: model replies,
function calls and their results, loop warnings and user steering.

materialize() is pure. Trimming for the context budget happens on the
materialized copy (see scriptagent.budget), never on the transcript.
"""

import json
import uuid
from dataclasses import dataclass, field
from typing import Any

from scriptagent.types import FunctionCall, FunctionOutcome, Message, Role


@dataclass
class Transcript:
    """
    Role-tagged message log with persistent and ephemeral entries.

    One transcript belongs to exactly one running agent. Nested agents get
    their own transcript rather than appending into the parent's.
    """

    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    _persistent: list[Message] = field(default_factory=list, repr=False)
    _ephemeral: list[Message] = field(default_factory=list, repr=False)

    def append_persistent(self, role: Role | str, content: str) -> Message:
        """Add an entry that is resent at the head of every query."""
        message = Message(role=Role(role), content=content, persistent=True)
        self._persistent.append(message)
        return message

    def append_ephemeral(self, role: Role | str, content: str, **extra: Any) -> Message:
        """Add an ordinary history entry."""
        message = Message(role=Role(role), content=content, persistent=False, **extra)
        self._ephemeral.append(message)
        return message

    def add_function_call(self, call: FunctionCall, content: str = "") -> Message:
        """
        Record the model's function-call request as an assistant entry.

        content is any text the model sent along with the call.
        """
        if not call.id:
            call.id = f"call_{uuid.uuid4().hex[:12]}"
        return self.append_ephemeral(
            Role.ASSISTANT,
            content,
            function_call=call,
        )

    def add_function_result(
        self,
        name: str,
        outcome: FunctionOutcome,
        call_id: str | None = None,
    ) -> Message:
        """Record a function outcome so the model can see it."""
        return self.append_ephemeral(
            Role.FUNCTION,
            outcome.content,
            name=name,
            call_id=call_id,
        )

    def materialize(self) -> list[Message]:
        """
        Build the ordered message list for the next model query.

        Persistent entries come first in insertion order, then ephemeral
        history in insertion order. Calling this twice without an append in
        between yields identical content.
        """
        return [*self._persistent, *self._ephemeral]

    def to_dicts(self) -> list[dict[str, Any]]:
        """Materialized transcript as plain dicts."""
        return [m.to_dict() for m in self.materialize()]

    def to_json(self) -> str:
        return json.dumps(self.to_dicts(), indent=2)

    @property
    def persistent_count(self) -> int:
        return len(self._persistent)

    @property
    def ephemeral_count(self) -> int:
        return len(self._ephemeral)

    @property
    def last(self) -> Message | None:
        """Most recently appended ephemeral entry, if any."""
        return self._ephemeral[-1] if self._ephemeral else None

    def __len__(self) -> int:
        return len(self._persistent) + len(self._ephemeral)
