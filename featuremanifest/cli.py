"""Command line entry point: ``mfst``."""

from __future__ import annotations

import argparse
import logging
import os
import sys

from featuremanifest.protocol import SERVER_VERSION, run_stdio_server

logger = logging.getLogger("featuremanifest")

DEFAULT_PORT = 17010
DEFAULT_BIND = "127.0.0.1"

_handler: logging.Handler | None = None


def _configure_logging(use_stderr: bool) -> None:
    global _handler
    level_name = os.environ.get("MANIFEST_LOG", "DEBUG").upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.DEBUG
    if _handler is not None:
        logger.removeHandler(_handler)
    _handler = logging.StreamHandler(sys.stderr if use_stderr else sys.stdout)
    _handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    )
    logger.addHandler(_handler)
    logger.setLevel(level)


def _port(text: str) -> int:
    try:
        value = int(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid port: {text!r}") from None
    if not 0 <= value <= 65535:
        raise argparse.ArgumentTypeError(f"port out of range: {value}")
    return value


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mfst",
        description="Living feature documentation for AI-assisted development",
    )
    parser.add_argument(
        "-V", "--version", action="version", version=f"%(prog)s {SERVER_VERSION}"
    )
    commands = parser.add_subparsers(dest="command")

    serve = commands.add_parser("serve", help="Start the Manifest server")
    serve.add_argument("-p", "--port", type=_port, default=DEFAULT_PORT,
                       help="Port for HTTP API")
    serve.add_argument("-b", "--bind", default=DEFAULT_BIND,
                       help="Bind address (use 0.0.0.0 for remote/container deployment)")
    serve.add_argument("-d", "--daemon", action="store_true", help="Run as daemon")

    commands.add_parser("mcp", help="Start MCP server via stdio (for Claude Code integration)")
    commands.add_parser("status", help="Check server status")
    commands.add_parser("stop", help="Stop the daemon")
    return parser


def _env_port() -> int:
    try:
        return _port(os.environ.get("MANIFEST_PORT", ""))
    except argparse.ArgumentTypeError:
        return DEFAULT_PORT


def _serve(bind: str, port: int) -> int:
    logger.info("Starting Manifest server on %s:%s", bind, port)
    print(
        f"mfst: cannot start the Manifest server on {bind}:{port}: "
        "no storage backend is available",
        file=sys.stderr,
    )
    return 1


def main(argv: list[str] | None = None) -> int:
    """Run the ``mfst`` command; return the exit status."""
    args = _build_parser().parse_args(argv)
    _configure_logging(use_stderr=args.command == "mcp")

    if args.command == "serve":
        return _serve(os.environ.get("MANIFEST_BIND_ADDR", args.bind), args.port)
    if args.command == "mcp":
        run_stdio_server()
        return 0
    if args.command == "status":
        print("Checking Manifest server status...")
        return 0
    if args.command == "stop":
        print("Stopping Manifest server...")
        return 0
    return _serve(os.environ.get("MANIFEST_BIND_ADDR", DEFAULT_BIND), _env_port())


if __name__ == "__main__":
    sys.exit(main())