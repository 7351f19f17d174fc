#!/usr/bin/env python3
"""
CLI for backing up tracked folders and restoring them.

Usage:
    lh-backup init --track ~/projects/* --cloud-folder ~/Dropbox
    lh-backup add ~/notes
    lh-backup ls
    lh-backup backup
    lh-backup start
    lh-backup restore [BACKUP_DIR] --output ./restored
"""

import argparse
import logging
import os
import signal
import sys
import time
from pathlib import Path

from dotenv import load_dotenv

from .config import (
    BACKUP_DIR_NAME,
    DEFAULT_IGNORE_FROM,
    DEFAULT_MAX_FILE_SIZE,
    OBJECTS_DIR_NAME,
    load_config,
    parse_size,
    upsert_config,
)
from .exceptions import BackupError
from .ignore import load_common_patterns
from .session import BackupSession, RestoreSession

logger = logging.getLogger("lhbackup.cli")


class GracefulShutdown:
    """Handle graceful shutdown on SIGINT/SIGTERM."""

    def __init__(self):
        self.should_exit = False
        signal.signal(signal.SIGINT, self._handler)
        signal.signal(signal.SIGTERM, self._handler)

    def _handler(self, signum, frame):
        logger.info("Received shutdown signal, stopping...")
        self.should_exit = True


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else os.environ.get("LH_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _absolute(value: str) -> str:
    value = value.strip()
    suffix = "/*" if value.endswith("/*") else ""
    base = value[: -len(suffix)] if suffix else value
    return str(Path(base).expanduser().absolute()) + suffix


def cmd_init(args) -> int:
    """Write a new config file and create the object store."""
    cloud_folder = Path(_absolute(args.cloud_folder))
    parse_size(args.max_file_size)

    config_path = upsert_config({
        "cloudFolder": str(cloud_folder),
        "maxFileSize": args.max_file_size,
        "track": [_absolute(track) for track in args.track],
        "ignore": None if args.no_ignore else load_common_patterns(),
        "ignoreFrom": None if args.no_ignore else list(DEFAULT_IGNORE_FROM),
    }, args.config)

    (cloud_folder / BACKUP_DIR_NAME / OBJECTS_DIR_NAME).mkdir(parents=True, exist_ok=True)
    print(f'Config successfully created at "{config_path}"\n')
    print(config_path.read_text(encoding="utf-8"))
    return 0


def cmd_add(args) -> int:
    """Add a directory to the tracked list."""
    path = Path(_absolute(args.path))
    if not str(path).endswith("/*") and not path.is_dir():
        logger.error(f"Track path should refer to a directory: {path}")
        return 1
    upsert_config({"track": [str(path)]}, args.config)
    print(f"Tracking {path}")
    return 0


def cmd_ls(args) -> int:
    """List all tracked directories."""
    config = load_config(args.config)
    for path in config.track_paths:
        print(path)
    return 0


def _run_backup(args, keep_watching: bool) -> int:
    config = load_config(args.config)
    processed = 0

    def on_processed(name, path):
        nonlocal processed
        processed += 1
        logger.debug(f"{processed} file(s) indexed, last {path}")

    session = BackupSession(config, on_persisted=on_processed, on_skipped=on_processed)
    shutdown = GracefulShutdown() if keep_watching else None
    should_stop = (lambda: shutdown.should_exit) if shutdown is not None else None

    try:
        report = session.run(keep_watching=keep_watching, should_stop=should_stop)
        if report.interrupted:
            print(f"Stopped before indexation completed, {report.kept} file(s) indexed so far")
            return 0
        print(
            f"Indexation is complete!, found {report.orphans_removed} outdated objects, "
            f"keep track of {report.kept} files!"
        )
        if report.failed or report.failed_roots:
            print(f"{report.failed} file(s) and {len(report.failed_roots)} tracked root(s) failed, see log")

        if keep_watching:
            logger.info(f"Watching {len(session.daemons)} root(s), press Ctrl+C to stop")
            while not shutdown.should_exit:
                time.sleep(1)
    finally:
        session.stop()

    logger.info("Backup stopped")
    return 0


def cmd_backup(args) -> int:
    """Run one backup session and exit."""
    return _run_backup(args, keep_watching=False)


def cmd_start(args) -> int:
    """Back up all tracked folders, then keep watching them."""
    return _run_backup(args, keep_watching=True)


def cmd_restore(args) -> int:
    """Restore all objects of a backup into the output directory."""
    if args.backup_dir:
        backup_dir = Path(args.backup_dir).expanduser()
    else:
        backup_dir = load_config(args.config).backup_dir
    output_dir = Path(args.output).expanduser().absolute()

    count = 0

    def on_extracted(name):
        nonlocal count
        count += 1
        logger.debug(f"Extracted {count} object(s)")

    report = RestoreSession(backup_dir, output_dir, on_extracted=on_extracted).run()
    print(f'Successfully restored {report.extracted} files into "{output_dir}".')
    if report.failed:
        print(f"{report.failed} object(s) could not be extracted, see log")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lh-backup",
        description="Incrementally mirror folders into a compressed object store",
    )
    parser.add_argument("--config", type=Path, default=None, help="Path to the config file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    init_parser = subparsers.add_parser("init", help="Set up a config")
    init_parser.add_argument("--track", nargs="+", required=True,
                             help="Folders to track, DIR/* tracks every subfolder")
    init_parser.add_argument("--cloud-folder", required=True,
                             help="Sync folder where the backup will live")
    init_parser.add_argument("--max-file-size", default=DEFAULT_MAX_FILE_SIZE,
                             help="Largest file that will be stored")
    init_parser.add_argument("--no-ignore", action="store_true",
                             help="Do not skip files listed in .gitignore or common ignore rules")
    init_parser.set_defaults(func=cmd_init)

    add_parser = subparsers.add_parser("add", help="Add a new directory to track")
    add_parser.add_argument("path", help="Path to a directory")
    add_parser.set_defaults(func=cmd_add)

    ls_parser = subparsers.add_parser("ls", help="List all tracked directories")
    ls_parser.set_defaults(func=cmd_ls)

    backup_parser = subparsers.add_parser("backup", help="Back up all tracked folders once")
    backup_parser.set_defaults(func=cmd_backup)

    start_parser = subparsers.add_parser("start", help="Back up, then keep watching tracked folders")
    start_parser.set_defaults(func=cmd_start)

    restore_parser = subparsers.add_parser("restore", help="Restore a backup")
    restore_parser.add_argument("backup_dir", nargs="?", default=None,
                                help="Backup folder, defaults to the one in the config")
    restore_parser.add_argument("--output", default=os.getcwd(),
                                help="Directory to restore into (default: current directory)")
    restore_parser.set_defaults(func=cmd_restore)

    return parser


def main(argv=None) -> int:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    try:
        return args.func(args)
    except BackupError as e:
        logger.error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
