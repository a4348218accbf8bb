"""
agentrun entry point.

Handles startup concerns (arg-parsing, logging) and runs a single agent on one prompt against an
OpenAI-compatible backend, printing the answer or streaming it as it arrives.
"""

import argparse
import asyncio
import logging
import sys

from agentrun.agent import AgentDefinition
from agentrun.backends import BackendRegistry
from agentrun.backends.openai_compat import register_models
from agentrun.common import init_logging
from agentrun.config import settings
from agentrun.core.errors import AgentRunError
from agentrun.core.schema import ModelSettings
from agentrun.runner import AgentRunner

logger = logging.getLogger(__name__)

DEFAULT_INSTRUCTIONS = "You are a helpful assistant."


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def build_registry(model: str) -> BackendRegistry:
    registry = BackendRegistry()
    register_models([model], registry=registry)
    registry.freeze()
    return registry


def _print_fragment(fragment: str) -> None:
    print(fragment, end="", flush=True)


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------
def main(argv: list[str] | None = None) -> None:
    """
    Main entry point for the agentrun command.

    Parses the command line, initializes logging from ``--log-level`` (``settings.LOG_LEVEL`` by
    default) and runs the agent.  Exits with status 1 when the run fails.
    """
    if argv is None:
        argv = sys.argv[1:]

    parser = argparse.ArgumentParser(description="Run an agent on a single prompt")
    parser.add_argument("prompt", help="User input for the agent")
    parser.add_argument("--instructions", default=DEFAULT_INSTRUCTIONS, help="System instructions")
    parser.add_argument("--model", default=settings.DEFAULT_MODEL, help="Model name to run against")
    parser.add_argument("--stream", action="store_true", help="Print the answer as it streams in")
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error", "critical"],
        type=str.lower,
        default=settings.LOG_LEVEL,
    )
    args = parser.parse_args(argv)

    init_logging(args.log_level)

    agent: AgentDefinition[None] = AgentDefinition(
        name="cli",
        instructions=args.instructions,
        model_settings=ModelSettings(model_name=args.model),
    )
    runner = AgentRunner(build_registry(args.model))

    try:
        if args.stream:
            asyncio.run(runner.run_streamed(agent, args.prompt, None, _print_fragment))
            print()
        else:
            result = asyncio.run(runner.run(agent, args.prompt, None))
            print(result.final_output)
    except AgentRunError as exc:
        logger.error("Run failed: %s", exc)
        sys.exit(1)


if __name__ == "__main__":
    main()
