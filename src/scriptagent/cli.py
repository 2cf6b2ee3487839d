"""
Command-line entry point.

    scriptagent run "summarize notes.txt into summary.md" --workspace ./ws --scripts ./scripts

Configuration comes from the environment (see scriptagent.config); flags
override the loop and sandbox settings. Each step is printed as it
happens.
"""

import argparse
import logging
import sys

from scriptagent.agent import Agent
from scriptagent.config import AgentConfig
from scriptagent.llm import LLMClient
from scriptagent.loop import run_to_end
from scriptagent.scripts import Scripts
from scriptagent.types import StepOutput
from scriptagent.workspace import FileSystemWorkspace


def format_step(step: StepOutput) -> str:
    marker = "[A]" if step.kind == "message" else ("[+]" if step.outcome and step.outcome.ok else "[X]")
    lines = [f"{marker} {step.title}"]
    if step.content:
        lines.extend(f"    {line}" for line in step.content.splitlines())
    return "\n".join(lines)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Script-running autonomous agent")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    run_parser = subparsers.add_parser("run", help="Pursue a goal")
    run_parser.add_argument("goal", help="What the agent should achieve")
    run_parser.add_argument("--workspace", default=".", help="Workspace directory")
    run_parser.add_argument("--scripts", default=None, help="Directory of <name>.py scripts")
    run_parser.add_argument("--max-turns", type=int, default=None, help="Turn limit")
    run_parser.add_argument("--sandbox-url", default=None, help="Remote sandbox server URL")

    scripts_parser = subparsers.add_parser("scripts", help="List available scripts")
    scripts_parser.add_argument("directory", help="Directory of <name>.py scripts")

    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "scripts":
        repo = Scripts.from_directory(args.directory)
        for name in repo.names:
            script = repo.get_script_by_name(name)
            print(f"{name}: {script.description if script else ''}")
        return 0

    if args.command != "run":
        parser.print_help()
        return 1

    config = AgentConfig.from_env()
    if args.max_turns is not None:
        config.loop.max_turns = args.max_turns
    if args.sandbox_url:
        config.sandbox.url = args.sandbox_url

    scripts = Scripts.from_directory(args.scripts) if args.scripts else Scripts()
    workspace = FileSystemWorkspace(args.workspace)

    with LLMClient(config.llm) as llm:
        agent = Agent.from_config(config, llm, workspace, scripts)
        result = run_to_end(agent.run(args.goal), on_step=lambda s: print(format_step(s)))

    if result.ok:
        print(result.value or "")
        return 0
    print(result.error or "", file=sys.stderr)
    return 1


if __name__ == "__main__":
    sys.exit(main())
