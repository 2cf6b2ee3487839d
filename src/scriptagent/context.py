"""
AgentContext - Everything one running agent shares across its turns.

A context is owned by exactly one agent run. Nested agents are given a
context of their own via isolated(), with a fresh transcript and a fresh
in-memory workspace, so their history never interleaves with the
parent's.
"""

import logging
from dataclasses import dataclass, field
from typing import Protocol

from scriptagent.config import LoopConfig
from scriptagent.events import EventLog
from scriptagent.sandbox import SandboxClient
from scriptagent.scripts import Scripts
from scriptagent.transcript import Transcript
from scriptagent.types import Message
from scriptagent.workspace import InMemoryWorkspace, Workspace


class ModelClient(Protocol):
    """Receives a transcript and function schemas, returns a reply."""

    def send(self, messages: list[Message], functions: list[dict] | None = None): ...


@dataclass
class AgentContext:
    """Shared references passed into every turn of the loop."""
    llm: ModelClient
    transcript: Transcript
    workspace: Workspace
    scripts: Scripts
    sandbox: SandboxClient
    logger: logging.Logger = field(
        default_factory=lambda: logging.getLogger("scriptagent.agent")
    )
    loop_config: LoopConfig = field(default_factory=LoopConfig)
    event_log: EventLog = field(default_factory=EventLog)

    def isolated(self, workspace: Workspace | None = None) -> "AgentContext":
        """
        Build a context for a nested agent.

        The model client, script repository and logger are shared. The
        transcript, workspace and event log are new; the sandbox engine is
        reused but bound to the new workspace.
        """
        new_workspace = workspace if workspace is not None else InMemoryWorkspace()
        return AgentContext(
            llm=self.llm,
            transcript=Transcript(),
            workspace=new_workspace,
            scripts=self.scripts,
            sandbox=SandboxClient(self.sandbox.engine, new_workspace),
            logger=self.logger,
            loop_config=self.loop_config,
        )
