"""
Sandbox - Script execution engines and the client handle the agent holds.

A script body is wrapped by shim_code() into a standalone Python program.
Parameters arrive as JSON text; the shim decodes them, defines the body as
a function taking the parameters as arguments, calls it, and prints exactly
one result line prefixed by RESULT_MARKER. Engines run that program
somewhere (a local subprocess, or a sandbox server reached over HTTP) and
parse the marker line back into an EngineResult.

Three outcomes are distinguished, mirroring what the dispatcher needs:

- EngineResult.ok is False: the engine itself failed (process crashed,
  timed out, server unreachable).
- EvalResult.error is set: the script could not be loaded (syntax error,
  error at definition time).
- EvalResult.output is set: the script ran; ScriptOutput says whether it
  returned a value or raised.

The result of a run is returned directly from run(); engines keep no
"last output" state between calls.

Scripts work on the workspace the SandboxClient is bound to. A workspace
with a root directory becomes the working directory of a local run. An
in-memory workspace is shipped with the program: the shim unpacks it into
a scratch directory, runs there, and reports the files back in its result
line so the client can write them into the workspace.
"""

import json
import logging
import os
import subprocess
import sys
import tempfile
import textwrap
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

import httpx

from scriptagent.workspace import InMemoryWorkspace, Workspace

logger = logging.getLogger(__name__)

RESULT_MARKER = "__SCRIPTAGENT_RESULT__"

# Matches the sandbox server's request limits
MAX_TIMEOUT = 120
MAX_CODE_LENGTH = 50_000

_SHIM_TEMPLATE = '''\
import json as __json
import keyword as __keyword
import os as __os
import shutil as __shutil
import sys as __sys
import tempfile as __tempfile

__MARKER = "@@MARKER@@"
__scratch = None

__files_text = globals().get("__files_text__")
if __files_text is not None:
    __scratch = __tempfile.mkdtemp(prefix="scriptagent-")
    for __path, __content in __json.loads(__files_text).items():
        __target = __os.path.join(__scratch, __path)
        __os.makedirs(__os.path.dirname(__target), exist_ok=True)
        with open(__target, "w") as __f:
            __f.write(__content)
    __os.chdir(__scratch)


def __collect():
    collected = {}
    for root, _dirs, names in __os.walk(__scratch):
        for name in names:
            full = __os.path.join(root, name)
            rel = __os.path.relpath(full, __scratch).replace(__os.sep, "/")
            try:
                with open(full) as f:
                    collected[rel] = f.read()
            except (OSError, UnicodeDecodeError):
                continue
    return collected


def __emit(payload):
    if __scratch is not None:
        payload["files"] = __collect()
        __os.chdir(__tempfile.gettempdir())
        __shutil.rmtree(__scratch, ignore_errors=True)
    __sys.stdout.write("\\n" + __MARKER + __json.dumps(payload) + "\\n")
    __sys.stdout.flush()


def __encode(value):
    if isinstance(value, str):
        return value
    try:
        return __json.dumps(value)
    except (TypeError, ValueError):
        return str(value)


__body = @@BODY@@
__params = {
    __key: __json.loads(__text)
    for __key, __text in __json.loads(globals().get("__globals_text__", "{}")).items()
}
__names = [n for n in __params if n.isidentifier() and not __keyword.iskeyword(n)]
__source = "def __script_main__(" + ", ".join(__names) + "):\\n" + __body + "\\n"
__namespace = {"__name__": "__script__"}

try:
    exec(compile(__source, "<script>", "exec"), __namespace)
except Exception as __err:
    __emit({"error": type(__err).__name__ + ": " + str(__err)})
else:
    try:
        __value = __namespace["__script_main__"](**{n: __params[n] for n in __names})
    except Exception as __err:
        __emit({"output": {"ok": False, "error": type(__err).__name__ + ": " + str(__err)}})
    else:
        __emit({"output": {"ok": True, "value": None if __value is None else __encode(__value)}})
'''


@dataclass
class GlobalVar:
    """A parameter binding passed into the sandbox; value is JSON text."""
    name: str
    value: str


@dataclass
class ScriptOutput:
    """What the script itself produced: a returned value or a raised error."""
    ok: bool
    value: str | None = None
    error: str | None = None


@dataclass
class EvalResult:
    """
    The engine ran the program. error is set if the script failed to load.

    files holds the scratch directory contents after the run when an
    in-memory workspace was shipped with the program.
    """
    error: str | None = None
    output: ScriptOutput | None = None
    stdout: str = ""
    files: dict[str, str] | None = None


@dataclass
class EngineResult:
    """Outcome of one engine call."""
    ok: bool
    value: EvalResult | None = None
    error: str | None = None

    @classmethod
    def engine_failure(cls, error: str) -> "EngineResult":
        return cls(ok=False, error=error)


def shim_code(code: str) -> str:
    """
    Wrap a script body into a standalone program.

    The body becomes the function __script_main__ whose arguments are the
    parameters, so a script may reassign them. A bare `return` in the body
    is the script's result.
    """
    body = textwrap.indent(textwrap.dedent(code), "    ").rstrip()
    if not body.strip():
        body = "    pass"
    return (
        _SHIM_TEMPLATE
        .replace("@@MARKER@@", RESULT_MARKER)
        .replace("@@BODY@@", repr(body))
    )


def bind_globals(
    src: str,
    globals_: list[GlobalVar],
    files: dict[str, str] | None = None,
) -> str:
    """Prepend the parameter bindings (and shipped workspace files) the shim reads."""
    payload = json.dumps({g.name: g.value for g in globals_})
    lines = [f"__globals_text__ = {payload!r}"]
    if files is not None:
        lines.append(f"__files_text__ = {json.dumps(files)!r}")
    return "\n".join(lines) + "\n" + src


def parse_engine_output(stdout: str, stderr: str, exit_code: int) -> EngineResult:
    """Turn raw process output into an EngineResult."""
    result_line: str | None = None
    kept_lines: list[str] = []
    for line in stdout.splitlines():
        if line.startswith(RESULT_MARKER):
            result_line = line[len(RESULT_MARKER):]
        else:
            kept_lines.append(line)
    script_stdout = "\n".join(kept_lines).strip()

    if result_line is None:
        detail = stderr.strip() or f"Script process exited with code {exit_code} without a result"
        return EngineResult.engine_failure(detail)

    try:
        payload = json.loads(result_line)
    except json.JSONDecodeError as e:
        return EngineResult.engine_failure(f"Malformed script result: {e}")

    files = payload.get("files")

    if payload.get("error") is not None:
        return EngineResult(
            ok=True,
            value=EvalResult(error=str(payload["error"]), stdout=script_stdout, files=files),
        )

    output = payload.get("output") or {}
    return EngineResult(
        ok=True,
        value=EvalResult(
            output=ScriptOutput(
                ok=bool(output.get("ok", False)),
                value=output.get("value"),
                error=output.get("error"),
            ),
            stdout=script_stdout,
            files=files,
        ),
    )


class ExecutionEngine(Protocol):
    """Runs wrapped code with parameters and reports the outcome."""

    def run(
        self,
        code: str,
        globals_: list[GlobalVar],
        files: dict[str, str] | None = None,
        cwd: Path | None = None,
    ) -> EngineResult: ...


class SubprocessEngine:
    """
    Runs scripts with the current interpreter in a child process.

    The program is written to a temporary file and executed with a hard
    timeout. The working directory is the cwd passed to run() (the bound
    workspace root), falling back to the one given here.
    """

    def __init__(self, timeout: int = 30, cwd: str | Path | None = None) -> None:
        self.timeout = min(timeout, MAX_TIMEOUT)
        self.cwd = str(cwd) if cwd is not None else None

    def run(
        self,
        code: str,
        globals_: list[GlobalVar],
        files: dict[str, str] | None = None,
        cwd: Path | None = None,
    ) -> EngineResult:
        program = bind_globals(code, globals_, files)
        tmp_path = None
        try:
            with tempfile.NamedTemporaryFile(
                mode="w", suffix=".py", delete=False
            ) as f:
                f.write(program)
                f.flush()
                tmp_path = f.name

            completed = subprocess.run(
                [sys.executable, tmp_path],
                capture_output=True,
                text=True,
                timeout=self.timeout,
                cwd=str(cwd) if cwd is not None else self.cwd,
                env={**os.environ, "PYTHONDONTWRITEBYTECODE": "1"},
            )
            return parse_engine_output(completed.stdout, completed.stderr, completed.returncode)
        except subprocess.TimeoutExpired:
            logger.warning(f"Script timed out after {self.timeout}s")
            return EngineResult.engine_failure(f"Execution timed out after {self.timeout}s")
        except OSError as e:
            logger.error(f"Failed to start script process: {e}")
            return EngineResult.engine_failure(f"Failed to start script process: {e}")
        finally:
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)


class HttpSandboxEngine:
    """
    Runs scripts on a remote sandbox server.

    The server accepts POST /exec with {"code", "timeout"} and answers
    {"stdout", "stderr", "exit_code"}; GET /health reports liveness.
    A local cwd has no meaning on the server; in-memory workspace files
    travel inside the program.
    """

    def __init__(
        self,
        base_url: str,
        timeout: int = 30,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url
        self.timeout = min(timeout, MAX_TIMEOUT)
        self._client = httpx.Client(
            base_url=base_url,
            timeout=float(self.timeout + 10),
            transport=transport,
        )

    def run(
        self,
        code: str,
        globals_: list[GlobalVar],
        files: dict[str, str] | None = None,
        cwd: Path | None = None,
    ) -> EngineResult:
        if cwd is not None:
            logger.debug(f"Remote sandbox ignores local directory {cwd}")
        program = bind_globals(code, globals_, files)
        if len(program) > MAX_CODE_LENGTH:
            return EngineResult.engine_failure(f"Code exceeds {MAX_CODE_LENGTH} chars")

        try:
            resp = self._client.post(
                "/exec",
                json={"code": program, "timeout": self.timeout},
            )
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"Sandbox returned HTTP {e.response.status_code}")
            return EngineResult.engine_failure(
                f"Sandbox HTTP {e.response.status_code}: {e.response.text}"
            )
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Sandbox request failed: {e}")
            return EngineResult.engine_failure(f"Sandbox execution failed: {e}")

        return parse_engine_output(
            data.get("stdout", ""),
            data.get("stderr", ""),
            int(data.get("exit_code", -1)),
        )

    def health(self) -> bool:
        try:
            resp = self._client.get("/health")
        except httpx.HTTPError:
            return False
        return resp.status_code == 200

    def close(self) -> None:
        self._client.close()


class SandboxClient:
    """
    The handle an agent context holds for running scripts.

    Binds an engine to the workspace the scripts operate on. Every run
    sees that workspace and only that one.
    """

    def __init__(self, engine: ExecutionEngine, workspace: Workspace | None = None) -> None:
        self.engine = engine
        self.workspace = workspace

    def evaluate(self, src: str, globals_: list[GlobalVar]) -> EngineResult:
        logger.debug(f"Evaluating {len(src)} chars with {len(globals_)} globals")
        workspace = self.workspace

        if isinstance(workspace, InMemoryWorkspace):
            result = self.engine.run(src, globals_, files=workspace.snapshot())
            if result.ok and result.value is not None and result.value.files is not None:
                workspace.restore(result.value.files)
        elif workspace is not None and workspace.root is not None:
            result = self.engine.run(src, globals_, cwd=workspace.root)
        else:
            result = self.engine.run(src, globals_)

        if not result.ok:
            logger.debug(f"Engine failure: {result.error}")
        return result

    @classmethod
    def from_config(
        cls,
        url: str | None,
        timeout: int,
        workspace: Workspace | None = None,
    ) -> "SandboxClient":
        """Remote engine when a sandbox URL is set, local subprocess otherwise."""
        engine: Any
        if url:
            engine = HttpSandboxEngine(url, timeout=timeout)
        else:
            engine = SubprocessEngine(timeout=timeout)
        return cls(engine, workspace)
