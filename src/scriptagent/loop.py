"""
FunctionCallLoop - The turn-based state machine that drives an agent.

Each turn:
1. Materialize the transcript (persistent entries first) and send it,
   with the function schemas, to the model
2. Free text from the model is recorded and the turn ends
3. A function call is recorded, resolved in the registry and executed
4. The outcome is recorded as a function result
5. A termination function ends the run; anything else starts a new turn

Phases: START -> AWAIT_MODEL -> DISPATCH -> EVALUATE -> (AWAIT_MODEL |
TERMINATED | ABORTED).

The loop is driven by its consumer. next() runs exactly one turn and
returns the StepOutput for it, or the RunResult once the run is over.
run() wraps next() as a generator that also accepts steering text via
send(); steering is added to the transcript before the next model query.

Any exception inside a turn aborts the run: it is logged once and the
run resolves to a generic failure. The caller never sees the exception.
"""

import json
from collections.abc import Callable, Generator, Iterable
from enum import Enum

from scriptagent.budget import TranscriptBudget
from scriptagent.context import AgentContext
from scriptagent.events import EventType
from scriptagent.functions import FunctionRegistry
from scriptagent.types import FunctionCall, FunctionOutcome, Message, Role, RunResult, StepOutput

UNRECOVERABLE_ERROR = "Unrecoverable error encountered."


class LoopPhase(Enum):
    """Phases of the function-call loop."""
    START = "start"
    AWAIT_MODEL = "await_model"
    DISPATCH = "dispatch"
    EVALUATE = "evaluate"
    TERMINATED = "terminated"
    ABORTED = "aborted"


def call_key(call: FunctionCall) -> tuple[str, str]:
    """Identity of a call for repeat detection: name plus canonical arguments."""
    return call.name, json.dumps(call.arguments, sort_keys=True, default=str)


class FunctionCallLoop:
    """
    Strictly sequential loop: at most one model query or one function
    execution is in flight at any time.
    """

    def __init__(
        self,
        context: AgentContext,
        registry: FunctionRegistry,
        loop_prevention_prompt: str,
        initial_messages: Iterable[tuple[Role | str, str]] = (),
        agent_name: str = "agent",
        budget: TranscriptBudget | None = None,
    ) -> None:
        self.context = context
        self.registry = registry
        self.loop_prevention_prompt = loop_prevention_prompt
        self.initial_messages = list(initial_messages)
        self.agent_name = agent_name
        self.budget = budget

        self.phase = LoopPhase.START
        self.turn = 0
        self.result: RunResult | None = None
        self.steps: list[StepOutput] = []

        self._last_call: tuple[str, str] | None = None
        self._dispatches_since_warning = 0

    @property
    def is_done(self) -> bool:
        return self.phase in (LoopPhase.TERMINATED, LoopPhase.ABORTED)

    def next(self, steering: str | None = None) -> StepOutput | RunResult:
        """
        Advance the loop by one turn.

        Returns the turn's StepOutput, or the final RunResult when the run
        has terminated or aborted. Calling next() after that keeps
        returning the same RunResult.
        """
        if self.is_done:
            if self.result is None:
                raise RuntimeError(f"{self.agent_name} loop is {self.phase.value} without a result")
            return self.result

        try:
            if self.phase == LoopPhase.START:
                self._start()
            if steering:
                self._steer(steering)
            return self._turn()
        except Exception as e:
            return self._abort(e)

    def run(self) -> Generator[StepOutput, str | None, RunResult]:
        """Generator form: yields each step, accepts steering via send()."""
        steering: str | None = None
        while True:
            output = self.next(steering)
            if isinstance(output, RunResult):
                return output
            steering = yield output

    def _start(self) -> None:
        transcript = self.context.transcript
        for role, content in self.initial_messages:
            transcript.append_persistent(role, content)
        self.registry.freeze()
        self.context.event_log.log_event(
            EventType.RUN_START,
            agent=self.agent_name,
            functions=self.registry.names,
        )
        self.phase = LoopPhase.AWAIT_MODEL

    def _steer(self, steering: str) -> None:
        self.context.transcript.append_ephemeral(Role.USER, steering)
        self.context.event_log.log_event(EventType.STEERING, self.turn, length=len(steering))

    def _query(self) -> list[Message]:
        messages = self.context.transcript.materialize()
        if self.budget is not None:
            messages = self.budget.trim(messages, self.registry.schemas())
        return messages

    def _turn(self) -> StepOutput | RunResult:
        loop_config = self.context.loop_config
        if self.turn >= loop_config.max_turns:
            self.context.logger.warning(
                f"{self.agent_name} reached max turns ({loop_config.max_turns})"
            )
            return self._finish_aborted(reason="max_turns")

        self.turn += 1
        events = self.context.event_log
        events.log_event(EventType.TURN_START, self.turn)

        # AWAIT_MODEL
        messages = self._query()
        events.log_event(EventType.MODEL_REQUEST, self.turn, message_count=len(messages))
        response = self.context.llm.send(messages, self.registry.schemas())
        call: FunctionCall | None = response.function_call
        events.log_event(
            EventType.MODEL_RESPONSE,
            self.turn,
            function_call=call.name if call else None,
            content_length=len(response.content),
        )

        if call is None:
            self.context.transcript.append_ephemeral(Role.ASSISTANT, response.content)
            events.log_event(EventType.TURN_END, self.turn, kind="message")
            return self._record(StepOutput(
                kind="message",
                title=f"[{self.agent_name}] Message",
                content=response.content,
            ))

        # DISPATCH
        self.phase = LoopPhase.DISPATCH
        self.context.transcript.add_function_call(call, response.content)
        events.log_event(EventType.FUNCTION_DISPATCH, self.turn, name=call.name)

        if call.name not in self.registry:
            outcome = FunctionOutcome.failure(
                f"Unknown function: {call.name}. "
                f"Available functions: {', '.join(self.registry.names)}",
                title=f"[{self.agent_name}] Unknown function {call.name}",
            )
            events.log_event(EventType.UNKNOWN_FUNCTION, self.turn, name=call.name)
            is_termination = False
        else:
            definition = self.registry.resolve(call.name)
            executor = self.registry.build_executor(call.name, self.context, self.agent_name)
            outcome = executor(call.arguments)
            is_termination = definition.is_termination

        # EVALUATE
        self.phase = LoopPhase.EVALUATE
        self.context.transcript.add_function_result(call.name, outcome, call.id)
        events.log_event(EventType.FUNCTION_OUTCOME, self.turn, name=call.name, ok=outcome.ok)

        step = self._record(StepOutput(
            kind="function",
            title=outcome.title or f"[{self.agent_name}] {call.name}",
            content=outcome.content,
            function_call=call,
            outcome=outcome,
        ))

        if is_termination:
            self.phase = LoopPhase.TERMINATED
            self.result = RunResult(
                ok=outcome.ok,
                value=outcome.content,
                error=None if outcome.ok else outcome.content,
                outcome=outcome,
                steps=self.steps,
            )
            events.log_event(EventType.TERMINATED, self.turn, name=call.name, ok=outcome.ok)
            return step

        self._prevent_loops(call)
        events.log_event(EventType.TURN_END, self.turn, kind="function")
        self.phase = LoopPhase.AWAIT_MODEL
        return step

    def _prevent_loops(self, call: FunctionCall) -> None:
        """Nudge the model away from repeating itself."""
        key = call_key(call)
        repeated = key == self._last_call
        self._last_call = key
        self._dispatches_since_warning += 1

        threshold = self.context.loop_config.cycle_threshold
        cycle_reached = threshold is not None and self._dispatches_since_warning >= threshold

        if repeated or cycle_reached:
            self.context.transcript.append_ephemeral(Role.SYSTEM, self.loop_prevention_prompt)
            self.context.event_log.log_event(
                EventType.LOOP_WARNING,
                self.turn,
                name=call.name,
                repeated=repeated,
            )
            self.context.logger.info(
                f"{self.agent_name} loop warning injected after {call.name}"
            )
            self._dispatches_since_warning = 0

    def _record(self, step: StepOutput) -> StepOutput:
        self.steps.append(step)
        return step

    def _abort(self, error: Exception) -> RunResult:
        self.context.logger.error(
            f"{self.agent_name} aborted in turn {self.turn} ({self.phase.value}): "
            f"{type(error).__name__}: {error}"
        )
        return self._finish_aborted(reason=type(error).__name__)

    def _finish_aborted(self, reason: str) -> RunResult:
        self.phase = LoopPhase.ABORTED
        self.context.event_log.log_event(EventType.ABORTED, self.turn, reason=reason)
        self.result = RunResult.failure(UNRECOVERABLE_ERROR)
        self.result.steps = self.steps
        return self.result


def run_to_end(
    generator: Generator[StepOutput, str | None, RunResult],
    on_step: Callable[[StepOutput], None] | None = None,
) -> RunResult:
    """Drive a run generator to completion, optionally observing each step."""
    try:
        while True:
            step = next(generator)
            if on_step is not None:
                on_step(step)
    except StopIteration as stop:
        return stop.value
