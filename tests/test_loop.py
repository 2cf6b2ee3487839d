"""
Tests for FunctionCallLoop - one function per turn until a termination
function is chosen.
"""

import logging

import pytest

from scriptagent.config import LoopConfig
from scriptagent.context import AgentContext
from scriptagent.events import EventType
from scriptagent.functions import FunctionDefinition, FunctionRegistry
from scriptagent.llm import ChatResponse, LLMError
from scriptagent.loop import UNRECOVERABLE_ERROR, FunctionCallLoop, LoopPhase, call_key, run_to_end
from scriptagent.sandbox import EngineResult, EvalResult, SandboxClient, ScriptOutput, SubprocessEngine
from scriptagent.scripts import Scripts
from scriptagent.transcript import Transcript
from scriptagent.types import FunctionCall, FunctionOutcome, Message, Role, RunResult, Script, StepOutput
from scriptagent.workspace import InMemoryWorkspace

LOOP_PROMPT = "You appear to be in a loop."


class MockLLMClient:
    """Mock LLM client for testing."""

    def __init__(self, responses: list[ChatResponse] | None = None):
        self._responses = responses or []
        self._response_index = 0
        self.calls: list[dict] = []

    def send(self, messages: list[Message], functions: list[dict] | None = None) -> ChatResponse:
        self.calls.append({"messages": list(messages), "functions": functions})

        if self._response_index < len(self._responses):
            response = self._responses[self._response_index]
            self._response_index += 1
            if isinstance(response, Exception):
                raise response
            return response

        return ChatResponse.text("Default response")


class NoEngine:
    def run(self, code, globals_, files=None, cwd=None):
        return EngineResult.engine_failure("no engine in this test")


class QueuedEngine:
    """Returns queued results in order and records each program it ran."""

    def __init__(self, results: list[EngineResult]):
        self.results = list(results)
        self.programs: list[str] = []

    def run(self, code, globals_, files=None, cwd=None):
        self.programs.append(code)
        return self.results.pop(0)


def script_output(ok: bool, value: str | None = None, error: str | None = None) -> EngineResult:
    return EngineResult(ok=True, value=EvalResult(output=ScriptOutput(ok=ok, value=value, error=error)))


class FailingTranscript(Transcript):
    """Transcript whose writes of function results fail."""

    def add_function_result(self, name, outcome, call_id=None):
        raise RuntimeError("transcript storage failed")


def make_context(llm, transcript=None, loop_config=None, scripts=None, engine=None) -> AgentContext:
    workspace = InMemoryWorkspace()
    return AgentContext(
        llm=llm,
        transcript=transcript if transcript is not None else Transcript(),
        workspace=workspace,
        scripts=scripts or Scripts(),
        sandbox=SandboxClient(engine or NoEngine(), workspace),
        loop_config=loop_config or LoopConfig(),
    )


def finish_definition() -> FunctionDefinition:
    return FunctionDefinition(
        name="finish",
        description="Done",
        parameters={"type": "object", "properties": {"summary": {"type": "string"}}},
        is_termination=True,
        handler=lambda context, params: params.get("summary", ""),
        success=lambda agent, fn, params, result: FunctionOutcome.success(f"Finished: {result}"),
    )


def echo_definition() -> FunctionDefinition:
    return FunctionDefinition(
        name="echo",
        description="Echo",
        handler=lambda context, params: str(params),
    )


def make_loop(llm, functions=None, initial_messages=None, **context_kwargs) -> FunctionCallLoop:
    context = make_context(llm, **context_kwargs)
    registry = FunctionRegistry.from_definitions(functions or [finish_definition(), echo_definition()])
    return FunctionCallLoop(
        context,
        registry,
        LOOP_PROMPT,
        initial_messages=initial_messages or [(Role.SYSTEM, "You are a test agent.")],
        agent_name="Tester",
    )


class TestTermination:
    """Choosing a termination function ends the run with its outcome."""

    def test_immediate_termination(self):
        llm = MockLLMClient([ChatResponse.call("finish", {"summary": "done"})])
        loop = make_loop(llm)

        step = loop.next()
        result = loop.next()

        assert isinstance(step, StepOutput)
        assert step.kind == "function"
        assert step.outcome == FunctionOutcome.success("Finished: done")
        assert isinstance(result, RunResult)
        assert result.ok is True
        assert result.value == "Finished: done"
        assert loop.phase == LoopPhase.TERMINATED
        assert len(llm.calls) == 1

    def test_result_is_stable_after_termination(self):
        llm = MockLLMClient([ChatResponse.call("finish", {"summary": "done"})])
        loop = make_loop(llm)

        loop.next()
        first = loop.next()
        second = loop.next()

        assert first is second
        assert len(llm.calls) == 1

    def test_done_without_result_is_an_error(self):
        loop = make_loop(MockLLMClient())
        loop.phase = LoopPhase.TERMINATED

        with pytest.raises(RuntimeError, match="Tester loop is"):
            loop.next()

    def test_non_termination_returns_to_await_model(self):
        llm = MockLLMClient([
            ChatResponse.call("echo", {"x": 1}),
            ChatResponse.call("finish", {"summary": "ok"}),
        ])
        loop = make_loop(llm)

        loop.next()
        assert loop.phase == LoopPhase.AWAIT_MODEL
        assert not loop.is_done

        loop.next()
        assert loop.phase == LoopPhase.TERMINATED

    def test_failed_termination_outcome_fails_the_run(self):
        def refuse(context, params):
            raise ValueError("cannot finish")

        llm = MockLLMClient([ChatResponse.call("give_up", {})])
        loop = make_loop(llm, functions=[
            finish_definition(),
            FunctionDefinition(name="give_up", description="", is_termination=True, handler=refuse),
        ])

        result = run_to_end(loop.run())

        assert result.ok is False
        assert "cannot finish" in result.error
        assert loop.phase == LoopPhase.TERMINATED

    def test_run_generator_yields_steps_then_returns_result(self):
        llm = MockLLMClient([
            ChatResponse.text("Thinking..."),
            ChatResponse.call("echo", {"x": 1}),
            ChatResponse.call("finish", {"summary": "ok"}),
        ])
        loop = make_loop(llm)
        seen: list[StepOutput] = []

        result = run_to_end(loop.run(), on_step=seen.append)

        assert [s.kind for s in seen] == ["message", "function", "function"]
        assert seen[0].content == "Thinking..."
        assert result.ok
        assert result.steps == seen


class TestUnknownFunction:
    """An unknown function name is fed back to the model; the run continues."""

    def test_unknown_function_then_recovery(self):
        llm = MockLLMClient([
            ChatResponse.call("doStuff", {}),
            ChatResponse.call("finish", {"summary": "recovered"}),
        ])
        loop = make_loop(llm)

        step = loop.next()

        assert step.outcome.ok is False
        assert "Unknown function: doStuff" in step.content
        assert "finish" in step.content
        assert loop.phase == LoopPhase.AWAIT_MODEL

        result = run_to_end(loop.run())

        assert result.ok
        assert len(llm.calls) == 2
        second_query = llm.calls[1]["messages"]
        results = [m for m in second_query if m.role == Role.FUNCTION]
        assert results[0].name == "doStuff"
        assert results[0].content.startswith("Unknown function: doStuff")

    def test_unknown_function_event_is_logged(self):
        llm = MockLLMClient([
            ChatResponse.call("doStuff", {}),
            ChatResponse.call("finish", {}),
        ])
        loop = make_loop(llm)

        run_to_end(loop.run())

        events = loop.context.event_log.of_type(EventType.UNKNOWN_FUNCTION)
        assert len(events) == 1
        assert events[0].data["name"] == "doStuff"


class TestTranscript:
    """What the model sees on each query."""

    def test_initial_messages_are_persistent_and_first(self):
        llm = MockLLMClient([
            ChatResponse.text("hi"),
            ChatResponse.call("finish", {}),
        ])
        loop = make_loop(llm, initial_messages=[
            (Role.SYSTEM, "framing"),
            (Role.SYSTEM, "goal"),
        ])

        run_to_end(loop.run())

        second_query = llm.calls[1]["messages"]
        assert [m.content for m in second_query[:2]] == ["framing", "goal"]
        assert all(m.persistent for m in second_query[:2])
        assert second_query[2].role == Role.ASSISTANT
        assert second_query[2].content == "hi"

    def test_function_schemas_are_sent(self):
        llm = MockLLMClient([ChatResponse.call("finish", {})])
        loop = make_loop(llm)

        loop.next()

        names = [f["function"]["name"] for f in llm.calls[0]["functions"]]
        assert names == ["finish", "echo"]

    def test_call_and_result_are_recorded(self):
        llm = MockLLMClient([
            ChatResponse.call("echo", {"x": 1}, call_id="call_1"),
            ChatResponse.call("finish", {}),
        ])
        loop = make_loop(llm)

        loop.next()

        last_two = loop.context.transcript.materialize()[-2:]
        assert last_two[0].function_call == FunctionCall(name="echo", arguments={"x": 1}, id="call_1")
        assert last_two[1].role == Role.FUNCTION
        assert last_two[1].call_id == "call_1"

    def test_text_sent_with_a_call_is_kept(self):
        llm = MockLLMClient([
            ChatResponse(
                content="Let me check",
                function_calls=[FunctionCall(name="echo", arguments={"x": 1}, id="call_1")],
                finish_reason="tool_calls",
            ),
            ChatResponse.call("finish", {}),
        ])
        loop = make_loop(llm)

        run_to_end(loop.run())

        second_query = llm.calls[1]["messages"]
        assistant = [m for m in second_query if m.role == Role.ASSISTANT]
        assert assistant[0].content == "Let me check"
        assert assistant[0].function_call.name == "echo"

    def test_registry_is_frozen_once_running(self):
        llm = MockLLMClient([ChatResponse.text("hi")])
        loop = make_loop(llm)

        loop.next()

        assert loop.registry.is_frozen


class TestScriptBackedFunctions:
    """Definitions without a handler run their backing script in the sandbox."""

    UPPER = Script(name="str.upper", code="return text.upper()")

    def upper_definition(self, **kwargs) -> FunctionDefinition:
        return FunctionDefinition(
            name="str_upper",
            description="Upper-case text",
            parameters={"type": "object", "properties": {"text": {"type": "string"}}},
            **kwargs,
        )

    def test_success_is_fed_back(self):
        engine = QueuedEngine([script_output(True, value="HI")])
        llm = MockLLMClient([
            ChatResponse.call("str_upper", {"text": "hi"}),
            ChatResponse.call("finish", {"summary": "ok"}),
        ])
        loop = make_loop(
            llm,
            functions=[finish_definition(), self.upper_definition()],
            scripts=Scripts([self.UPPER]),
            engine=engine,
        )

        step = loop.next()

        assert step.outcome.ok
        assert "## Result\nHI" in step.content
        assert len(engine.programs) == 1
        assert "return text.upper()" in engine.programs[0]
        assert loop.phase == LoopPhase.AWAIT_MODEL

        result = run_to_end(loop.run())

        assert result.ok
        results = [m for m in llm.calls[1]["messages"] if m.role == Role.FUNCTION]
        assert "HI" in results[0].content

    def test_script_error_is_fed_back_and_loop_continues(self):
        engine = QueuedEngine([
            script_output(False, error="ValueError: bad input"),
            script_output(True, value="HI"),
        ])
        llm = MockLLMClient([
            ChatResponse.call("str_upper", {"text": 1}),
            ChatResponse.call("str_upper", {"text": "hi"}),
            ChatResponse.call("finish", {"summary": "recovered"}),
        ])
        loop = make_loop(
            llm,
            functions=[finish_definition(), self.upper_definition()],
            scripts=Scripts([self.UPPER]),
            engine=engine,
        )

        steps = []
        result = run_to_end(loop.run(), on_step=steps.append)

        assert result.ok
        assert steps[0].outcome.ok is False
        assert "## Error\nValueError: bad input" in steps[0].content
        assert steps[1].outcome.ok
        second_query = [m for m in llm.calls[1]["messages"] if m.role == Role.FUNCTION]
        assert "ValueError: bad input" in second_query[0].content
        assert len(llm.calls) == 3

    def test_engine_failure_is_fed_back(self):
        engine = QueuedEngine([EngineResult.engine_failure("Execution timed out after 30s")])
        llm = MockLLMClient([
            ChatResponse.call("str_upper", {"text": "hi"}),
            ChatResponse.call("finish", {}),
        ])
        loop = make_loop(
            llm,
            functions=[finish_definition(), self.upper_definition()],
            scripts=Scripts([self.UPPER]),
            engine=engine,
        )

        step = loop.next()

        assert step.outcome.ok is False
        assert "timed out" in step.content
        assert loop.phase == LoopPhase.AWAIT_MODEL

    def test_termination_ends_run_with_script_result(self):
        engine = QueuedEngine([script_output(True, value="ALL DONE")])
        llm = MockLLMClient([ChatResponse.call("str_upper", {"text": "all done"})])
        loop = make_loop(
            llm,
            functions=[finish_definition(), self.upper_definition(is_termination=True)],
            scripts=Scripts([self.UPPER]),
            engine=engine,
        )

        result = run_to_end(loop.run())

        assert result.ok
        assert "ALL DONE" in result.value
        assert loop.phase == LoopPhase.TERMINATED
        assert len(llm.calls) == 1

    def test_failed_termination_script_fails_the_run(self):
        engine = QueuedEngine([script_output(False, error="RuntimeError: nope")])
        llm = MockLLMClient([ChatResponse.call("str_upper", {"text": "x"})])
        loop = make_loop(
            llm,
            functions=[finish_definition(), self.upper_definition(is_termination=True)],
            scripts=Scripts([self.UPPER]),
            engine=engine,
        )

        result = run_to_end(loop.run())

        assert result.ok is False
        assert "RuntimeError: nope" in result.error
        assert loop.phase == LoopPhase.TERMINATED
        assert len(llm.calls) == 1

    def test_runs_in_a_real_interpreter(self):
        llm = MockLLMClient([
            ChatResponse.call("str_upper", {"text": "hi"}),
            ChatResponse.call("finish", {}),
        ])
        loop = make_loop(
            llm,
            functions=[finish_definition(), self.upper_definition()],
            scripts=Scripts([self.UPPER]),
            engine=SubprocessEngine(timeout=20),
        )

        step = loop.next()

        assert step.outcome.ok
        assert "## Result\nHI" in step.content


class TestAbort:
    """Any exception inside a turn aborts with one log line and a generic failure."""

    def test_transcript_failure_aborts(self, caplog):
        caplog.set_level(logging.ERROR, logger="scriptagent.agent")
        llm = MockLLMClient([
            ChatResponse.call("echo", {"x": 1}),
            ChatResponse.call("finish", {}),
        ])
        loop = make_loop(llm, transcript=FailingTranscript())

        result = loop.next()

        assert isinstance(result, RunResult)
        assert result.ok is False
        assert result.error == UNRECOVERABLE_ERROR
        assert loop.phase == LoopPhase.ABORTED
        errors = [r for r in caplog.records if r.name == "scriptagent.agent" and r.levelno == logging.ERROR]
        assert len(errors) == 1
        assert "transcript storage failed" in errors[0].getMessage()

    def test_model_failure_aborts(self, caplog):
        caplog.set_level(logging.ERROR, logger="scriptagent.agent")
        llm = MockLLMClient([LLMError("backend down")])
        loop = make_loop(llm)

        result = run_to_end(loop.run())

        assert result.ok is False
        assert result.error == UNRECOVERABLE_ERROR
        assert len(llm.calls) == 1

    def test_missing_backing_script_aborts(self):
        llm = MockLLMClient([ChatResponse.call("fs_readFile", {"path": "a"})])
        loop = make_loop(llm, functions=[
            finish_definition(),
            FunctionDefinition(name="fs_readFile", description=""),
        ])

        result = run_to_end(loop.run())

        assert result.ok is False
        assert result.error == UNRECOVERABLE_ERROR

    def test_no_further_model_queries_after_abort(self):
        llm = MockLLMClient([LLMError("backend down")])
        loop = make_loop(llm)

        loop.next()
        loop.next()

        assert len(llm.calls) == 1

    def test_max_turns(self, caplog):
        caplog.set_level(logging.WARNING, logger="scriptagent.agent")
        llm = MockLLMClient([ChatResponse.text("still going")] * 5)
        loop = make_loop(llm, loop_config=LoopConfig(max_turns=2))

        result = run_to_end(loop.run())

        assert result.ok is False
        assert result.error == UNRECOVERABLE_ERROR
        assert len(llm.calls) == 2
        assert len(result.steps) == 2
        assert any("max turns" in r.getMessage() for r in caplog.records)
        aborted = loop.context.event_log.of_type(EventType.ABORTED)
        assert aborted[0].data["reason"] == "max_turns"


class TestLoopPrevention:
    """Repeated calls inject the loop-prevention prompt before the next query."""

    def test_identical_call_injects_prompt(self):
        llm = MockLLMClient([
            ChatResponse.call("echo", {"x": 1}),
            ChatResponse.call("echo", {"x": 1}),
            ChatResponse.call("finish", {}),
        ])
        loop = make_loop(llm)

        run_to_end(loop.run())

        second_query = [m.content for m in llm.calls[1]["messages"]]
        third_query = llm.calls[2]["messages"]
        assert LOOP_PROMPT not in second_query
        warnings = [m for m in third_query if m.content == LOOP_PROMPT]
        assert len(warnings) == 1
        assert warnings[0].role == Role.SYSTEM
        assert warnings[0].persistent is False
        assert len(loop.context.event_log.of_type(EventType.LOOP_WARNING)) == 1

    def test_different_arguments_are_not_a_repeat(self):
        llm = MockLLMClient([
            ChatResponse.call("echo", {"x": 1}),
            ChatResponse.call("echo", {"x": 2}),
            ChatResponse.call("finish", {}),
        ])
        loop = make_loop(llm)

        run_to_end(loop.run())

        assert all(m.content != LOOP_PROMPT for m in llm.calls[2]["messages"])

    def test_cycle_threshold(self):
        llm = MockLLMClient([
            ChatResponse.call("echo", {"x": 1}),
            ChatResponse.call("echo", {"x": 2}),
            ChatResponse.call("finish", {}),
        ])
        loop = make_loop(llm, loop_config=LoopConfig(cycle_threshold=2))

        run_to_end(loop.run())

        assert any(m.content == LOOP_PROMPT for m in llm.calls[2]["messages"])

    def test_call_key_ignores_argument_order(self):
        a = FunctionCall(name="echo", arguments={"a": 1, "b": 2})
        b = FunctionCall(name="echo", arguments={"b": 2, "a": 1})

        assert call_key(a) == call_key(b)


class TestSteering:
    """Consumers can add user text between turns."""

    def test_send_adds_steering_before_next_query(self):
        llm = MockLLMClient([
            ChatResponse.call("echo", {"x": 1}),
            ChatResponse.call("finish", {}),
        ])
        loop = make_loop(llm)
        gen = loop.run()

        next(gen)
        gen.send("please hurry")

        steering = [m for m in llm.calls[1]["messages"] if m.content == "please hurry"]
        assert len(steering) == 1
        assert steering[0].role == Role.USER
        assert steering[0].persistent is False
        assert len(loop.context.event_log.of_type(EventType.STEERING)) == 1

    def test_next_accepts_steering(self):
        llm = MockLLMClient([ChatResponse.text("ok"), ChatResponse.text("ok")])
        loop = make_loop(llm)

        loop.next()
        loop.next("change of plan")

        assert llm.calls[1]["messages"][-1].content == "change of plan"

    @pytest.mark.parametrize("steering", [None, ""])
    def test_empty_steering_is_ignored(self, steering):
        llm = MockLLMClient([ChatResponse.text("ok"), ChatResponse.text("ok")])
        loop = make_loop(llm)

        loop.next()
        loop.next(steering)

        assert len(llm.calls[1]["messages"]) == 2
