"""Main entry point for agent-sync."""

import argparse
import asyncio
from pathlib import Path

import uvicorn
from dotenv import load_dotenv

from agent_sync.api import create_fastapi_app
from agent_sync.app import Application
from agent_sync.config import Settings
from agent_sync.logging_config import get_logger, setup_logging

logger = get_logger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agent-sync",
        description="Database-driven agent messaging and live configuration sync.",
    )
    subparsers = parser.add_subparsers(dest="command")

    serve = subparsers.add_parser("serve", help="Run the API and reconcilers (default)")
    serve.add_argument("--host", default=None, help="Override API_HOST")
    serve.add_argument("--port", type=int, default=None, help="Override API_PORT")

    subparsers.add_parser(
        "sync-once", help="Rebuild and publish agents.json once, then exit"
    )
    return parser


async def _sync_once(settings: Settings) -> bool:
    application = Application(settings)
    await application.start(run_reconcilers=False)
    try:
        return await application.config_sync.run_cycle()
    finally:
        await application.stop()


def serve(settings: Settings) -> None:
    """Run the application."""
    app = create_fastapi_app(Application(settings))
    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


def main(argv: list[str] | None = None) -> None:
    project_root = Path(__file__).resolve().parent.parent
    load_dotenv(project_root / ".env")

    args = _build_parser().parse_args(argv)
    settings = Settings.from_environment()
    setup_logging(settings.log_level)

    if args.command == "sync-once":
        changed = asyncio.run(_sync_once(settings))
        logger.info("Sync finished (%s)", "changed" if changed else "unchanged")
        return

    if getattr(args, "host", None):
        settings.api_host = args.host
    if getattr(args, "port", None):
        settings.api_port = args.port
    serve(settings)


if __name__ == "__main__":
    main()
