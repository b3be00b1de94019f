"""CLI entrypoint for august-chat."""

from __future__ import annotations

import argparse
from importlib import metadata
import logging
from pathlib import Path
from typing import Sequence

from .config import ensure_config_dir, load_config
from .logging_utils import configure_logging


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="august-chat", description="August Chat")
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print version and exit",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config.toml (default: ~/.config/august-chat/config.toml)",
    )
    subcommands = parser.add_subparsers(dest="command")
    serve = subcommands.add_parser("serve", help="Run the completion gateway")
    serve.add_argument("--host", default=None, help="Override server.host")
    serve.add_argument("--port", type=int, default=None, help="Override server.port")
    return parser


def _version() -> str:
    try:
        return metadata.version("august-chat")
    except metadata.PackageNotFoundError:
        return "0.0.0"


def serve(config: dict, host: str | None = None, port: int | None = None) -> None:
    """Run the gateway app under uvicorn."""
    import uvicorn

    from .gateway.server import create_app

    configure_logging(config["logging"], console_floor=logging.DEBUG)
    server_cfg = config["server"]
    uvicorn.run(
        create_app(config),
        host=host or str(server_cfg["host"]),
        port=port or int(server_cfg["port"]),
        log_config=None,
    )


def main(argv: Sequence[str] | None = None) -> None:
    """Ensure configuration exists, handle CLI flags, and run the TUI or gateway."""

    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    if args.version:
        print(f"august-chat {_version()}")
        return

    ensure_config_dir()
    config = load_config(args.config)
    if args.command == "serve":
        serve(config, host=args.host, port=args.port)
        return

    from .app import AugustChatApp

    app = AugustChatApp(config=config)
    app.run()


if __name__ == "__main__":
    main()
