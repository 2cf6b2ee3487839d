"""
Built-in function sets.

agent_functions() is what the top-level Agent offers the model: finish
or give up, talk to the user, find / run / create scripts, and read and
write workspace files. script_writer_functions() is the smaller set the
ScriptWriter sub-agent works with.

The top-level functions are native: handlers return the result text and
raise on failure, and the registry turns either into a FunctionOutcome.
The ScriptWriter's file functions are script-backed and run the built-in
fs.* scripts, which seed_builtin_scripts() adds to the repository.
"""

import json
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from scriptagent.dispatcher import ScriptDispatcher
from scriptagent.errors import ScriptFailedError
from scriptagent.functions import FunctionDefinition, format_params
from scriptagent.loop import run_to_end
from scriptagent.types import FunctionOutcome, Script

if TYPE_CHECKING:
    from scriptagent.agent import ScriptWriter
    from scriptagent.context import AgentContext
    from scriptagent.scripts import Scripts

logger = logging.getLogger(__name__)

SCRIPT_FILE = "script.py"


def _message_param(description: str) -> dict[str, Any]:
    return {
        "type": "object",
        "properties": {
            "message": {"type": "string", "description": description},
        },
        "required": ["message"],
    }


def _echo_message(context: "AgentContext", params: dict[str, Any]) -> str:
    return str(params.get("message", ""))


def _goal_achieved(
    agent_name: str,
    function_name: str,
    params: dict[str, Any],
    result: str | None = None,
) -> FunctionOutcome:
    return FunctionOutcome.success(
        result or "Goal achieved.",
        title=f"[{agent_name}] Goal achieved",
    )


def _goal_failed(
    agent_name: str,
    function_name: str,
    params: dict[str, Any],
    result: str | None = None,
) -> FunctionOutcome:
    return FunctionOutcome.failure(
        result or "Goal could not be achieved.",
        title=f"[{agent_name}] Goal failed",
    )


def termination_functions() -> list[FunctionDefinition]:
    """agent_onGoalAchieved and agent_onGoalFailed, shared by every agent."""
    return [
        FunctionDefinition(
            name="agent_onGoalAchieved",
            description="Call this when the goal has been achieved. Ends the run.",
            parameters=_message_param("Summary of what was done"),
            is_termination=True,
            success=_goal_achieved,
            handler=_echo_message,
        ),
        FunctionDefinition(
            name="agent_onGoalFailed",
            description="Call this when the goal cannot be achieved. Ends the run.",
            parameters=_message_param("Why the goal could not be achieved"),
            is_termination=True,
            success=_goal_failed,
            handler=_echo_message,
        ),
    ]


def _parse_arguments(raw: Any) -> dict[str, Any]:
    if raw is None or raw == "":
        return {}
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError(f"arguments must be a JSON object: {e}") from e
        if isinstance(parsed, dict):
            return parsed
    raise ValueError("arguments must be a JSON object")


def _find_script(context: "AgentContext", params: dict[str, Any]) -> str:
    query = str(params.get("query", ""))
    found = context.scripts.search(query)
    if not found:
        return f"No scripts found for '{query}'. Use createScript to write one."
    lines = [f"Found {len(found)} script(s):"]
    for script in found:
        lines.append(f"- {script.name}({script.arguments}): {script.description}")
    return "\n".join(lines)


def _execute_script(context: "AgentContext", params: dict[str, Any]) -> str:
    namespace = str(params.get("namespace", ""))
    arguments = _parse_arguments(params.get("arguments"))

    outcome = ScriptDispatcher().execute(
        context,
        namespace,
        arguments,
        on_success=lambda _p, result: FunctionOutcome.success(result or ""),
        on_failure=lambda _p, error: FunctionOutcome.failure(error or "Unknown error"),
    )
    if not outcome.ok:
        raise ScriptFailedError(outcome.content)
    return outcome.content or f"{namespace} completed with no output."


def _read_file(context: "AgentContext", params: dict[str, Any]) -> str:
    return context.workspace.read_file(str(params.get("path", "")))


def _write_file(context: "AgentContext", params: dict[str, Any]) -> str:
    path = str(params.get("path", ""))
    content = str(params.get("data", ""))
    context.workspace.write_file(path, content)
    return f"Wrote {len(content)} characters to {path}."


def _make_create_script(
    create_script_writer: Callable[["AgentContext"], "ScriptWriter"],
) -> Callable[["AgentContext", dict[str, Any]], str]:
    from scriptagent.agent import ScriptWriterArgs

    def create_script(context: "AgentContext", params: dict[str, Any]) -> str:
        namespace = str(params.get("namespace", ""))
        if not namespace:
            raise ValueError("namespace is required")

        writer = create_script_writer(context)
        result = run_to_end(writer.run(ScriptWriterArgs(
            namespace=namespace,
            description=str(params.get("description", "")),
            arguments=str(params.get("arguments", "")),
        )))
        if not result.ok:
            raise ScriptFailedError(f"ScriptWriter failed: {result.error}")
        if not writer.workspace.exists(SCRIPT_FILE):
            raise ScriptFailedError("ScriptWriter finished without writing a script")

        context.scripts.add_script(Script(
            name=namespace,
            code=writer.workspace.read_file(SCRIPT_FILE),
            description=str(params.get("description", "")),
            arguments=str(params.get("arguments", "")),
        ))
        logger.info(f"Created script {namespace}")
        return f"Created script {namespace}. Run it with executeScript."

    return create_script


def _script_created(
    agent_name: str,
    function_name: str,
    params: dict[str, Any],
    result: str | None = None,
) -> FunctionOutcome:
    return FunctionOutcome.success(
        result or f"Created script {params.get('namespace')}",
        title=f"[{agent_name}] Created script {params.get('namespace')}",
    )


def _script_executed(
    agent_name: str,
    function_name: str,
    params: dict[str, Any],
    result: str | None = None,
) -> FunctionOutcome:
    namespace = params.get("namespace")
    return FunctionOutcome.success(
        f"## Function Call\n{function_name}({format_params(params)})\n"
        f"## Result\n{result}",
        title=f"[{agent_name}] Executed {namespace}",
    )


def agent_functions(
    create_script_writer: Callable[["AgentContext"], "ScriptWriter"],
) -> list[FunctionDefinition]:
    """Function set for the top-level agent."""
    return [
        *termination_functions(),
        FunctionDefinition(
            name="agent_speak",
            description="Tell the user something. Does not end the run.",
            parameters=_message_param("What to tell the user"),
            handler=_echo_message,
        ),
        FunctionDefinition(
            name="findScript",
            description="Search the script repository by name or description.",
            parameters={
                "type": "object",
                "properties": {
                    "query": {"type": "string", "description": "Words describing what the script should do"},
                },
                "required": ["query"],
            },
            handler=_find_script,
        ),
        FunctionDefinition(
            name="executeScript",
            description="Run a script from the repository with the given arguments.",
            parameters={
                "type": "object",
                "properties": {
                    "namespace": {"type": "string", "description": "Script name, e.g. fs.readFile"},
                    "arguments": {"type": "string", "description": "JSON object of arguments"},
                },
                "required": ["namespace"],
            },
            success=_script_executed,
            handler=_execute_script,
        ),
        FunctionDefinition(
            name="createScript",
            description="Have a new script written and added to the repository.",
            parameters={
                "type": "object",
                "properties": {
                    "namespace": {"type": "string", "description": "Name for the new script"},
                    "description": {"type": "string", "description": "What the script must do"},
                    "arguments": {"type": "string", "description": "Argument names and types"},
                },
                "required": ["namespace", "description"],
            },
            success=_script_created,
            handler=_make_create_script(create_script_writer),
        ),
        FunctionDefinition(
            name="readFile",
            description="Read a file from the workspace.",
            parameters={
                "type": "object",
                "properties": {"path": {"type": "string"}},
                "required": ["path"],
            },
            handler=_read_file,
        ),
        FunctionDefinition(
            name="writeFile",
            description="Write a file to the workspace, replacing it if it exists.",
            parameters={
                "type": "object",
                "properties": {
                    "path": {"type": "string"},
                    "data": {"type": "string"},
                },
                "required": ["path", "data"],
            },
            handler=_write_file,
        ),
    ]


FS_WRITE_FILE = """\
import os

if os.path.isabs(path) or os.path.normpath(path).split(os.sep)[0] == "..":
    raise ValueError(f"Path escapes the workspace: {path}")
directory = os.path.dirname(path)
if directory:
    os.makedirs(directory, exist_ok=True)
with open(path, "w") as f:
    f.write(data)
return f"Wrote {len(data)} characters to {path}."
"""

FS_READ_FILE = """\
import os

if os.path.isabs(path) or os.path.normpath(path).split(os.sep)[0] == "..":
    raise ValueError(f"Path escapes the workspace: {path}")
with open(path) as f:
    return f.read()
"""


def builtin_scripts() -> list[Script]:
    """Scripts backing the script-backed functions shipped with the agents."""
    return [
        Script(
            name="fs.writeFile",
            code=FS_WRITE_FILE,
            description="Write a text file in the workspace",
            arguments="path: str, data: str",
        ),
        Script(
            name="fs.readFile",
            code=FS_READ_FILE,
            description="Read a text file from the workspace",
            arguments="path: str",
        ),
    ]


def seed_builtin_scripts(scripts: "Scripts") -> None:
    """Add the built-in scripts a repository does not already provide."""
    for script in builtin_scripts():
        if script.name not in scripts:
            scripts.add_script(script)


def script_writer_functions() -> list[FunctionDefinition]:
    """
    Function set for the ScriptWriter sub-agent.

    fs_writeFile and fs_readFile are script-backed: they run fs.writeFile
    and fs.readFile from the repository against the writer's workspace.
    """
    return [
        *termination_functions(),
        FunctionDefinition(
            name="fs_writeFile",
            description="Write a file to your workspace.",
            parameters={
                "type": "object",
                "properties": {
                    "path": {"type": "string"},
                    "data": {"type": "string"},
                },
                "required": ["path", "data"],
            },
        ),
        FunctionDefinition(
            name="fs_readFile",
            description="Read a file from your workspace.",
            parameters={
                "type": "object",
                "properties": {"path": {"type": "string"}},
                "required": ["path"],
            },
        ),
    ]
