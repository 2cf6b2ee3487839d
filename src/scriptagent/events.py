"""
Event log - Append-only record of what happened during a run.

Every turn of the function-call loop records its phases here: model
request and response, dispatch, outcome, loop warnings and how the run
ended. The log can be saved as JSON lines and loaded back for inspection.
"""

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any


class EventType(Enum):
    """Types of events in the run event log."""
    RUN_START = "run_start"
    TURN_START = "turn_start"
    MODEL_REQUEST = "model_request"
    MODEL_RESPONSE = "model_response"
    FUNCTION_DISPATCH = "function_dispatch"
    FUNCTION_OUTCOME = "function_outcome"
    UNKNOWN_FUNCTION = "unknown_function"
    LOOP_WARNING = "loop_warning"
    STEERING = "steering"
    TURN_END = "turn_end"
    TERMINATED = "terminated"
    ABORTED = "aborted"


@dataclass
class RunEvent:
    """A single event in the run event log."""
    timestamp: datetime
    event_type: EventType
    turn: int
    data: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "turn": self.turn,
            "data": self.data,
        }


@dataclass
class EventLog:
    """Append-only event log for a run."""
    events: list[RunEvent] = field(default_factory=list)

    def append(self, event: RunEvent) -> None:
        self.events.append(event)

    def log_event(
        self,
        event_type: EventType,
        turn: int = 0,
        **data: Any,
    ) -> RunEvent:
        event = RunEvent(
            timestamp=datetime.now(UTC),
            event_type=event_type,
            turn=turn,
            data=data,
        )
        self.append(event)
        return event

    def of_type(self, event_type: EventType) -> list[RunEvent]:
        return [e for e in self.events if e.event_type == event_type]

    def for_turn(self, turn: int) -> list[RunEvent]:
        return [e for e in self.events if e.turn == turn]

    def clear(self) -> None:
        self.events.clear()

    def save(self, path: Path) -> None:
        lines = [json.dumps(e.to_dict(), default=str) for e in self.events]
        path.write_text("\n".join(lines))

    @classmethod
    def load(cls, path: Path) -> "EventLog":
        log = cls()
        for line in path.read_text().strip().split("\n"):
            if line:
                data = json.loads(line)
                log.append(RunEvent(
                    timestamp=datetime.fromisoformat(data["timestamp"]),
                    event_type=EventType(data["event_type"]),
                    turn=data["turn"],
                    data=data["data"],
                ))
        return log
