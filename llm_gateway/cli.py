"""CLI entry point for llm-gateway.

Thin operator tool over the adapters: check backends, run a one-off
completion, or watch a stream arrive.

Entry point:
    llm-gateway status [--backend ID | --all]
    llm-gateway generate PROMPT [--backend ID] [--system TEXT] [--history FILE]
    llm-gateway stream PROMPT [--backend ID] [--system TEXT] [--history FILE]
"""

import argparse
import asyncio
import json
import logging
import sys
from contextlib import aclosing
from pathlib import Path
from typing import Optional

from llm_gateway.errors import GatewayError

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────
# ARGUMENT PARSING
# ─────────────────────────────────────────────────────────────────────


def _add_generation_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("prompt", help="User message")
    parser.add_argument("--backend", "-b", default=None, help="Backend ID (default: AI_PROVIDER)")
    parser.add_argument("--system", "-s", default=None, help="System instruction")
    parser.add_argument(
        "--history", default=None,
        help="JSON file with prior turns: [{\"role\": \"user\", \"content\": \"...\"}, ...]",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="llm-gateway",
        description="Generate text through local or hosted language-model backends.",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable debug logging"
    )
    sub = parser.add_subparsers(dest="command")

    status_p = sub.add_parser("status", help="Show backend status")
    status_p.add_argument("--backend", "-b", default=None, help="Backend ID (default: AI_PROVIDER)")
    status_p.add_argument("--all", action="store_true", dest="all_backends", help="All backends")

    _add_generation_args(sub.add_parser("generate", help="Generate a complete response"))
    _add_generation_args(sub.add_parser("stream", help="Stream a response as it is generated"))

    return parser


def _load_history(path: Optional[str]) -> list[dict]:
    if not path:
        return []
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(data, list):
        raise ValueError(f"History file must contain a JSON list: {path}")
    return data


# ─────────────────────────────────────────────────────────────────────
# COMMANDS
# ─────────────────────────────────────────────────────────────────────


async def _cmd_status(backend: Optional[str], all_backends: bool) -> int:
    from llm_gateway.registry import ADAPTERS, get_adapter

    names = sorted(ADAPTERS) if all_backends else [backend]
    statuses = []
    for name in names:
        adapter = get_adapter(name)
        status = await adapter.status()
        statuses.append(status.model_dump(exclude_none=True))

    json.dump(statuses if all_backends else statuses[0], sys.stdout, indent=2)
    sys.stdout.write("\n")
    return 0


async def _cmd_generate(
    prompt: str,
    backend: Optional[str],
    system: Optional[str],
    history: list[dict],
) -> int:
    from llm_gateway.registry import get_adapter

    adapter = get_adapter(backend)
    try:
        text = await adapter.generate(prompt, history, system)
    except GatewayError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    print(text)
    return 0


async def _cmd_stream(
    prompt: str,
    backend: Optional[str],
    system: Optional[str],
    history: list[dict],
) -> int:
    from llm_gateway.registry import get_adapter

    adapter = get_adapter(backend)
    try:
        async with aclosing(adapter.generate_stream(prompt, history, system)) as stream:
            async for fragment in stream:
                sys.stdout.write(fragment)
                sys.stdout.flush()
    except GatewayError as e:
        sys.stdout.write("\n")
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    sys.stdout.write("\n")
    return 0


# ─────────────────────────────────────────────────────────────────────
# ENTRY POINT
# ─────────────────────────────────────────────────────────────────────


def main(argv: Optional[list[str]] = None):
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    # Logging
    level = logging.DEBUG if args.verbose else logging.WARNING
    logging.basicConfig(level=level, format="%(name)s %(message)s", stream=sys.stderr)
    # httpx logs full request URLs, and the Gemini key is a query parameter.
    logging.getLogger("httpx").setLevel(logging.WARNING)

    # Load env
    from dotenv import load_dotenv
    load_dotenv()

    try:
        if args.command == "status":
            code = asyncio.run(_cmd_status(args.backend, args.all_backends))
        elif args.command in ("generate", "stream"):
            history = _load_history(args.history)
            command = _cmd_generate if args.command == "generate" else _cmd_stream
            code = asyncio.run(command(args.prompt, args.backend, args.system, history))
        else:
            parser.print_help()
            code = 1
    except (ValueError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        code = 1

    sys.exit(code)


if __name__ == "__main__":
    main()
