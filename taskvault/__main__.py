# taskvault/__main__.py
# Description: Command line entry point
#
# Imports
import argparse
import asyncio
import signal
import sys
from pathlib import Path
from typing import List, Optional
#
# Third-Party Imports
from loguru import logger
#
# Local Imports
from .config import DEFAULT_CONFIG_PATH, SyncSettings, get_setting, load_config
from .Sync.cursor_store import CursorStore
from .Sync.errors import ConfigurationError
from .Sync.models import SyncStatus
from .Sync.sync_service import SyncService
from .Utils.logging_config import configure_logging
#
########################################################################################################################
#
# Functions:

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="taskvault",
        description="Mirror a Todoist account into a markdown vault and send local edits back.",
    )
    parser.add_argument("--config", default=None, help=f"Config file (default: {DEFAULT_CONFIG_PATH})")
    parser.add_argument("--log-level", default=None, help="Log level (DEBUG, INFO, WARNING, ...)")

    subparsers = parser.add_subparsers(dest="command", required=True)

    sync_parser = subparsers.add_parser("sync", help="Run one sync pass")
    sync_parser.add_argument("--full", action="store_true", help="Fetch everything and run the cleanup sweep")

    watch_parser = subparsers.add_parser("watch", help="Sync, then keep watching the vault for edits")
    watch_parser.add_argument("--full", action="store_true", help="Make the initial pass a full one")

    subparsers.add_parser("reset-cursor", help="Forget the sync cursor so the next pass is full")
    return parser


async def _run_once(service: SyncService, full: bool) -> int:
    try:
        progress = await service.run_sync(full=full)
    finally:
        await service.remote.close()
    if progress is None or progress.status is not SyncStatus.COMPLETED:
        return 1
    print(progress.summary())
    return 0


async def _watch(service: SyncService, full: bool) -> int:
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers; Ctrl+C still raises
            pass

    service.on_command_rejected = lambda rejection: logger.warning(f"Todoist refused a change: {rejection}")
    await service.start(initial_full=full)
    try:
        await stop_event.wait()
    finally:
        await service.stop()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    config = load_config(config_path=Path(args.config).expanduser() if args.config else None)
    configure_logging(
        args.log_level or get_setting("logging", "level", config=config),
        get_setting("logging", "log_file", config=config) or None,
    )
    settings = SyncSettings.from_config(config)

    if args.command == "reset-cursor":
        CursorStore(settings.cursor_path).clear()
        return 0

    try:
        settings.require_token()
    except ConfigurationError as e:
        logger.error(str(e))
        return 1

    service = SyncService(settings)
    try:
        if args.command == "sync":
            return asyncio.run(_run_once(service, args.full))
        if args.command == "watch":
            return asyncio.run(_watch(service, args.full))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    return 2


if __name__ == "__main__":
    sys.exit(main())
