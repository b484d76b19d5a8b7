"""
Command line entry point

    python -m guardsymbi run pipeline.yaml --entry report --operations myproject.ops
    python -m guardsymbi serve --port 8000
"""

import argparse
import asyncio
import os
import sys
from typing import List, Optional

from dotenv import load_dotenv

from .config import EngineConfig, setup_logging
from .engine import Engine
from .errors import BuildError
from .loader import load_many
from .modules import OperationRegistry, import_operations


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="guardsymbi", description="GuardSymbi execution engine")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Execute a module set and print the JSON report")
    run.add_argument("files", nargs="+", help="Module documents (YAML or JSON)")
    run.add_argument("--entry", default=None, help="Entry task (defaults to the run directive)")
    run.add_argument("--operations", action="append", default=[], metavar="PKG",
                     help="Python module exposing register_operations(registry); repeatable")
    run.add_argument("--mcp-url", default=None, help="MCP collaborator base URL")
    run.add_argument("--events", action="store_true", help="Include the execution log in the report")

    serve = sub.add_parser("serve", help="Start the HTTP API")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=int(os.getenv("HTTP_PORT", "8000")))
    serve.add_argument("--operations", action="append", default=[], metavar="PKG")
    serve.add_argument("--mcp-url", default=None)

    return parser


def _engine(args: argparse.Namespace) -> Engine:
    config = EngineConfig.from_env()
    if args.mcp_url:
        config.mcp_url = args.mcp_url
    setup_logging(config.log_level)

    registry = OperationRegistry()
    for package in args.operations:
        import_operations(registry, package)
    return Engine.from_config(registry, config)


async def _run(args: argparse.Namespace) -> int:
    engine = _engine(args)
    await engine.start()
    try:
        report = await engine.run(load_many(args.files), entry=args.entry)
    except BuildError as e:
        print(f"Build failed [{e.code}]: {e.message}", file=sys.stderr)
        return 2
    finally:
        await engine.close()

    if not args.events:
        report.events = []
    print(report.to_json())
    return 0 if report.succeeded else 1


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    from .api import create_app

    app = create_app(_engine(args))
    uvicorn.run(app, host=args.host, port=args.port, log_level="info")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    if args.command == "run":
        return asyncio.run(_run(args))
    return _serve(args)


if __name__ == "__main__":
    sys.exit(main())
