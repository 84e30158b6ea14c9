"""Command line interface of the media indexer."""

import argparse
import logging
import sys
from datetime import timedelta
from pathlib import Path
from typing import List, Optional

from mediavault.common import ConfigLoader, absolute_path, setup_logging

from .config import MediaVaultConfig
from .errors import IndexerError
from .library import MediaLibrary
from .tool_checker import check_required_tools

APP_NAME = "mediavault"

logger = logging.getLogger(__name__)


def _open_library(config: MediaVaultConfig) -> MediaLibrary:
    check_required_tools(
        use_ffprobe=config.scanner.use_ffprobe,
        use_ffmpeg=config.scanner.use_ffmpeg,
        use_exiftool=config.scanner.use_exiftool,
    )
    return MediaLibrary(config)


def scan_command(config: MediaVaultConfig, username: Optional[str] = None,
                 regenerate_thumbnails: bool = False) -> int:
    """Scan one user (or every user with root paths) and wait for completion.

    Returns:
        Exit code (0 when every scan succeeded)
    """
    with _open_library(config) as library:
        if username:
            user = library.catalog.get_user_by_name(username)
            jobs = [library.scan_user(user.user_id, regenerate_thumbnails=regenerate_thumbnails)]
        else:
            jobs = library.scan_all()

        if not jobs:
            logger.warning("No user has a root path; nothing to scan")
            return 0

        library.orchestrator.wait_idle()

        failed = 0
        for job in jobs:
            result = job.result
            if result.success:
                logger.info(f"Scan complete: {{'user_id': {job.user_id!r}, 'message': {result.message!r}}}")
            else:
                failed += 1
                logger.error(f"Scan failed: {{'user_id': {job.user_id!r}, 'message': {result.message!r}}}")
        return 1 if failed else 0


def add_user_command(config: MediaVaultConfig, username: str, is_admin: bool) -> int:
    library = MediaLibrary(config)
    try:
        user = library.create_user(username, is_admin)
        print(user.user_id)
        return 0
    finally:
        library.close()


def add_root_command(config: MediaVaultConfig, username: str, path: Path) -> int:
    library = MediaLibrary(config)
    try:
        user = library.catalog.get_user_by_name(username)
        album = library.user_add_root_path(user.user_id, path)
        print(album.album_id)
        return 0
    finally:
        library.close()


def remove_root_command(config: MediaVaultConfig, username: str, path: Path) -> int:
    library = MediaLibrary(config)
    try:
        user = library.catalog.get_user_by_name(username)
        root_path = absolute_path(path)
        for album in library.catalog.list_root_albums(user.user_id):
            if album.path == root_path:
                library.user_remove_root_album(user.user_id, album.album_id)
                return 0
        logger.error(f"Root path not registered: {{'user': {username!r}, 'path': {root_path!r}}}")
        return 1
    finally:
        library.close()


def purge_command(config: MediaVaultConfig, older_than_days: int) -> int:
    library = MediaLibrary(config)
    try:
        removed = library.purge_missing(timedelta(days=older_than_days))
        logger.info(f"Purged missing media: {{'removed': {removed}}}")
        return 0
    finally:
        library.close()


def serve_command(config: MediaVaultConfig) -> int:
    """Run the admin API with the scanner in the background."""
    import uvicorn

    from .api.server import create_app

    with _open_library(config) as library:
        app = create_app(config, library)
        logger.info(f"Starting API server: {{'host': {config.api.host!r}, 'port': {config.api.port}}}")
        uvicorn.run(app, host=config.api.host, port=config.api.port, log_config=None)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        description="Index photo and video libraries: metadata, thumbnails and faces"
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Path to config file (defaults.toml)"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (overrides config)"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    scan = subparsers.add_parser("scan", help="Scan root paths and update the catalog")
    scan.add_argument("--user", help="Only scan this user (default: every user)")
    scan.add_argument(
        "--regenerate-thumbnails",
        action="store_true",
        help="Regenerate derived images of unchanged media with the current filter"
    )

    add_user = subparsers.add_parser("add-user", help="Create a user")
    add_user.add_argument("username")
    add_user.add_argument("--admin", action="store_true", help="Grant admin rights")

    add_root = subparsers.add_parser("add-root", help="Register a root path for a user")
    add_root.add_argument("username")
    add_root.add_argument("path", type=Path)

    remove_root = subparsers.add_parser("remove-root", help="Remove a root path and its albums")
    remove_root.add_argument("username")
    remove_root.add_argument("path", type=Path)

    purge = subparsers.add_parser("purge", help="Hard-delete media and albums missing on disk")
    purge.add_argument("--older-than-days", type=int, default=30)

    subparsers.add_parser("serve", help="Run the admin HTTP API and background scanner")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    loader = ConfigLoader(app_name=APP_NAME, config_class=MediaVaultConfig)
    config = loader.load(defaults_path=args.config)

    log_file = config.logging.file_path
    setup_logging(
        level=args.log_level or config.logging.level,
        format=config.logging.format,
        log_file=log_file,
    )

    try:
        if args.command == "scan":
            return scan_command(config, args.user, args.regenerate_thumbnails)
        if args.command == "add-user":
            return add_user_command(config, args.username, args.admin)
        if args.command == "add-root":
            return add_root_command(config, args.username, args.path)
        if args.command == "remove-root":
            return remove_root_command(config, args.username, args.path)
        if args.command == "purge":
            return purge_command(config, args.older_than_days)
        return serve_command(config)
    except IndexerError as e:
        logger.error(f"{e.message}: {e.context}")
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
