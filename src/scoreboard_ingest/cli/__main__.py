"""CLI entry point: python -m scoreboard_ingest.cli {cleanup,register-device}"""

import argparse
import asyncio
import sys

import structlog

from scoreboard_ingest.config.settings import get_settings
from scoreboard_ingest.db.session import get_session_factory
from scoreboard_ingest.devices.registry import register_device
from scoreboard_ingest.ingestion.store import ImageStore
from scoreboard_ingest.logging_config import configure_logging
from scoreboard_ingest.retention.cleanup import cleanup_ingests


async def run_cleanup(retention_days: int | None) -> None:
    """Delete expired ingests and their photos."""
    settings = get_settings()
    result = await cleanup_ingests(
        get_session_factory(), ImageStore(settings.image_dir), retention_days=retention_days
    )
    print(
        f"retention_days={result.retention_days} "
        f"deleted_ingests={result.deleted_ingests} deleted_images={result.deleted_images}"
    )


async def run_register_device(name: str | None, enabled: bool) -> None:
    log = structlog.get_logger()
    async with get_session_factory()() as db:
        registered = await register_device(db, name, enabled=enabled)
    log.info("device_registered_cli", device_id=registered.device_id)
    # The key is shown once and never stored in clear text
    print(f"device_id={registered.device_id}")
    print(f"device_key={registered.device_key}")
    print(f"poll_url={registered.poll_url}")
    print(f"upload_url={registered.upload_url}")


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="scoreboard_ingest.cli",
        description="Scoreboard Ingest CLI",
    )
    subparsers = parser.add_subparsers(dest="command")

    cleanup_parser = subparsers.add_parser("cleanup", help="Delete ingests past the retention window")
    cleanup_parser.add_argument(
        "--retention-days",
        type=int,
        default=None,
        help="Override the stored retention setting (days)",
    )

    register_parser = subparsers.add_parser("register-device", help="Register a capture device")
    register_parser.add_argument("--name", type=str, default=None, help="Display name")
    register_parser.add_argument(
        "--disabled",
        action="store_true",
        help="Create the device disabled until an admin enables it",
    )

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    settings = get_settings()
    configure_logging(json_output=settings.log_json, log_level=settings.log_level)

    if args.command == "cleanup":
        asyncio.run(run_cleanup(args.retention_days))
    elif args.command == "register-device":
        asyncio.run(run_register_device(args.name, enabled=not args.disabled))


if __name__ == "__main__":
    main()
