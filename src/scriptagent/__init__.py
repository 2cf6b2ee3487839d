"""
scriptagent - An autonomous agent that acts by running scripts.

The agent pursues a goal by asking a language model to choose one
function per turn from a fixed registry. Script-backed functions run in
a sandbox; every outcome, success or failure, is fed back into the
transcript until a termination function is chosen.
"""

__version__ = "0.1.0"

from scriptagent.agent import Agent, ScriptWriter, SubAgent, SubAgentConfig
from scriptagent.context import AgentContext
from scriptagent.dispatcher import ScriptDispatcher
from scriptagent.functions import FunctionDefinition, FunctionRegistry
from scriptagent.llm import ChatResponse, LLMClient, LLMError
from scriptagent.loop import FunctionCallLoop, LoopPhase, run_to_end
from scriptagent.sandbox import HttpSandboxEngine, SandboxClient, SubprocessEngine
from scriptagent.scripts import Scripts
from scriptagent.transcript import Transcript
from scriptagent.types import FunctionCall, FunctionOutcome, Message, Role, RunResult, Script, StepOutput
from scriptagent.workspace import FileSystemWorkspace, InMemoryWorkspace

__all__ = [
    "Agent",
    "AgentContext",
    "ChatResponse",
    "FileSystemWorkspace",
    "FunctionCall",
    "FunctionCallLoop",
    "FunctionDefinition",
    "FunctionOutcome",
    "FunctionRegistry",
    "HttpSandboxEngine",
    "InMemoryWorkspace",
    "LLMClient",
    "LLMError",
    "LoopPhase",
    "Message",
    "Role",
    "RunResult",
    "SandboxClient",
    "Script",
    "ScriptDispatcher",
    "ScriptWriter",
    "Scripts",
    "StepOutput",
    "SubAgent",
    "SubAgentConfig",
    "SubprocessEngine",
    "Transcript",
    "run_to_end",
]
