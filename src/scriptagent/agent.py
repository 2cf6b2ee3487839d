"""
Agents - Drivers that set up a context and run the function-call loop.

SubAgent is the reusable harness: a name, the messages it starts with, a
loop-prevention prompt and a function set that must include the two
termination functions. ScriptWriter is a SubAgent that writes a new
script into its own isolated workspace. Agent is the top-level driver
that pursues a user's goal with the built-in function set, delegating
script writing to a ScriptWriter.

Every run is a generator of StepOutputs returning a RunResult. No
exception escapes a run; failures resolve to the generic failure result.
"""

import logging
from collections.abc import Callable, Generator
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from scriptagent.agent_functions import agent_functions, script_writer_functions, seed_builtin_scripts
from scriptagent.budget import TranscriptBudget
from scriptagent.config import AgentConfig, LoopConfig
from scriptagent.context import AgentContext, ModelClient
from scriptagent.errors import DuplicateFunctionError, InvalidAgentConfigError
from scriptagent.functions import FunctionDefinition, FunctionRegistry
from scriptagent.loop import UNRECOVERABLE_ERROR, FunctionCallLoop
from scriptagent.prompts import (
    GOAL_PROMPT,
    INITIAL_PROMPT,
    LOOP_PREVENTION_PROMPT,
    SCRIPT_WRITER_LOOP_PREVENTION_PROMPT,
    SCRIPT_WRITER_PROMPT,
    SCRIPT_WRITER_TASK,
)
from scriptagent.sandbox import SandboxClient
from scriptagent.scripts import Scripts
from scriptagent.transcript import Transcript
from scriptagent.types import Role, RunResult, StepOutput
from scriptagent.workspace import Workspace

REQUIRED_TERMINATIONS = ("agent_onGoalAchieved", "agent_onGoalFailed")

TRunArgs = TypeVar("TRunArgs")

InitialMessages = Callable[[str, Any], list[tuple[Role, str]]]
RunGenerator = Generator[StepOutput, str | None, RunResult]


@dataclass
class SubAgentConfig:
    """
    Static description of a sub-agent.

    Validated on construction: names are unique and both termination
    functions are present and flagged as terminating.
    """
    name: str
    initial_messages: InitialMessages
    loop_prevention_prompt: str
    functions: list[FunctionDefinition] = field(default_factory=list)

    def __post_init__(self) -> None:
        seen: set[str] = set()
        for definition in self.functions:
            if definition.name in seen:
                raise DuplicateFunctionError(definition.name)
            seen.add(definition.name)

        by_name = {d.name: d for d in self.functions}
        for required in REQUIRED_TERMINATIONS:
            definition = by_name.get(required)
            if definition is None:
                raise InvalidAgentConfigError(f"{self.name} is missing {required}")
            if not definition.is_termination:
                raise InvalidAgentConfigError(f"{self.name}: {required} must be a termination function")


class SubAgent(Generic[TRunArgs]):
    """Runs one configured agent against a context it owns."""

    def __init__(
        self,
        config: SubAgentConfig,
        context: AgentContext,
        logger: logging.Logger | None = None,
        budget: TranscriptBudget | None = None,
    ) -> None:
        self.config = config
        self.context = context
        self.logger = logger or context.logger
        self.budget = budget

    @property
    def workspace(self) -> Workspace:
        return self.context.workspace

    def run(self, args: TRunArgs) -> RunGenerator:
        try:
            registry = FunctionRegistry.from_definitions(self.config.functions)
            loop = FunctionCallLoop(
                self.context,
                registry,
                self.config.loop_prevention_prompt,
                initial_messages=self.config.initial_messages(self.config.name, args),
                agent_name=self.config.name,
                budget=self.budget,
            )
        except Exception as e:
            self.logger.error(f"{self.config.name} failed to start: {e}")
            return RunResult.failure(UNRECOVERABLE_ERROR)

        return (yield from loop.run())


@dataclass
class ScriptWriterArgs:
    namespace: str
    description: str
    arguments: str = ""


def _script_writer_messages(agent_name: str, args: ScriptWriterArgs) -> list[tuple[Role, str]]:
    return [
        (Role.SYSTEM, SCRIPT_WRITER_PROMPT),
        (Role.USER, SCRIPT_WRITER_TASK(args.namespace, args.description, args.arguments)),
    ]


class ScriptWriter(SubAgent[ScriptWriterArgs]):
    """Writes a new script to script.py in its own workspace."""

    def __init__(
        self,
        context: AgentContext,
        logger: logging.Logger | None = None,
        budget: TranscriptBudget | None = None,
    ) -> None:
        seed_builtin_scripts(context.scripts)
        config = SubAgentConfig(
            name="ScriptWriter",
            initial_messages=_script_writer_messages,
            loop_prevention_prompt=SCRIPT_WRITER_LOOP_PREVENTION_PROMPT,
            functions=script_writer_functions(),
        )
        super().__init__(config, context, logger, budget)


class Agent:
    """
    Top-level agent: pursues a goal with the built-in function set.

    Script writing is delegated to a ScriptWriter running in an isolated
    context (own transcript, own in-memory workspace). Each run starts
    from a fresh transcript; the workspace and scripts carry over.
    """

    name = "Agent"

    def __init__(
        self,
        llm: ModelClient,
        workspace: Workspace,
        scripts: Scripts,
        sandbox: SandboxClient | None = None,
        logger: logging.Logger | None = None,
        loop_config: LoopConfig | None = None,
        budget: TranscriptBudget | None = None,
    ) -> None:
        self.logger = logger or logging.getLogger("scriptagent.agent")
        self.budget = budget
        self.context = AgentContext(
            llm=llm,
            transcript=Transcript(),
            workspace=workspace,
            scripts=scripts,
            sandbox=sandbox or SandboxClient.from_config(None, 30, workspace),
            logger=self.logger,
            loop_config=loop_config or LoopConfig(),
        )
        self.functions = agent_functions(self._create_script_writer)

    @classmethod
    def from_config(
        cls,
        config: AgentConfig,
        llm: ModelClient,
        workspace: Workspace,
        scripts: Scripts,
        logger: logging.Logger | None = None,
    ) -> "Agent":
        return cls(
            llm=llm,
            workspace=workspace,
            scripts=scripts,
            sandbox=SandboxClient.from_config(config.sandbox.url, config.sandbox.timeout, workspace),
            logger=logger,
            loop_config=config.loop,
            budget=TranscriptBudget(config.context),
        )

    def _create_script_writer(self, context: AgentContext) -> ScriptWriter:
        return ScriptWriter(context.isolated(), self.logger, self.budget)

    def run(self, goal: str) -> RunGenerator:
        self.context.transcript = Transcript()
        try:
            registry = FunctionRegistry.from_definitions(self.functions)
            loop = FunctionCallLoop(
                self.context,
                registry,
                LOOP_PREVENTION_PROMPT,
                initial_messages=[
                    (Role.SYSTEM, INITIAL_PROMPT),
                    (Role.SYSTEM, GOAL_PROMPT(goal)),
                ],
                agent_name=self.name,
                budget=self.budget,
            )
        except Exception as e:
            self.logger.error(f"{self.name} failed to start: {e}")
            return RunResult.failure(UNRECOVERABLE_ERROR)

        return (yield from loop.run())
