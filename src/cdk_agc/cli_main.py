"""cdk-agc CLI: CDK Assembly Garbage Collector.

Cleans up unused assets in a CDK output directory, and optionally the CDK
scratch directories left in ``$TMPDIR``.

Examples:
    cdk-agc                      # clean ./cdk.out
    cdk-agc -o build/cdk.out -d  # dry run against another output directory
    cdk-agc -k 24                # keep anything modified in the last day
    cdk-agc -t                   # clean temporary cdk.out directories
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from cdk_agc import __version__
from cdk_agc.config import DEFAULT_OUTDIR, AgcConfig, load_config, parse_keep_hours
from cdk_agc.errors import AgcError, ConfigError
from cdk_agc.gc import AssetGarbageCollector, GCMode, GCResult
from cdk_agc.images import DockerImageStore
from cdk_agc.report import render_header, render_result
from cdk_agc.temp_cleanup import TempDirectoryCollector

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the cdk-agc CLI."""
    parser = argparse.ArgumentParser(
        prog="cdk-agc",
        description="CDK Assembly Garbage Collector - Clean up unused assets in cdk.out",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-o",
        "--outdir",
        default=None,
        metavar="PATH",
        help="CDK output directory (default: cdk.out; cannot be changed together with --cleanup-tmp)",
    )
    parser.add_argument(
        "-d",
        "--dry-run",
        action="store_true",
        help="Show what would be deleted without actually deleting",
    )
    parser.add_argument(
        "-k",
        "--keep-hours",
        default=None,
        metavar="NUMBER",
        help="Protect files modified within this many hours (default: 0)",
    )
    parser.add_argument(
        "-t",
        "--cleanup-tmp",
        action="store_true",
        help="Clean up all temporary cdk.out directories in $TMPDIR",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        metavar="PATH",
        help="YAML file with default settings (default: .cdk-agc.yaml if present)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the result as JSON instead of the text report",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (can be repeated)",
    )
    return parser


def _log(msg: str, quiet: bool = False) -> None:
    """Print a message unless quiet mode is enabled."""
    if not quiet:
        sys.stdout.write(msg + "\n")


def _error(msg: str) -> int:
    sys.stderr.write(f"Error: {msg}\n")
    return 1


def _resolve_config(args: argparse.Namespace) -> AgcConfig:
    keep_hours = None
    if args.keep_hours is not None:
        try:
            keep_hours = parse_keep_hours(args.keep_hours)
        except ConfigError as e:
            raise ConfigError("--keep-hours must be a non-negative number") from e

    # An explicit default outdir does not conflict with temp cleanup
    if args.cleanup_tmp and args.outdir is not None and os.path.normpath(args.outdir) != DEFAULT_OUTDIR:
        raise ConfigError("--cleanup-tmp and --outdir cannot be used together")

    config = load_config(args.config)
    return config.with_overrides(outdir=args.outdir, keep_hours=keep_hours)


def _run(config: AgcConfig, cleanup_tmp: bool, dry_run: bool, quiet: bool) -> GCResult:
    if cleanup_tmp:
        collector = TempDirectoryCollector(temp_root=config.temp_dir, keep_hours=config.keep_hours)
        for line in render_header(GCMode.TEMP, collector.temp_root, collector.keep_hours):
            _log(line, quiet)
        return collector.run(dry_run=dry_run)

    gc = AssetGarbageCollector(
        config.outdir,
        keep_hours=config.keep_hours,
        image_store=DockerImageStore(command=config.docker_command),
    )
    for line in render_header(GCMode.ASSETS, config.outdir, gc.keep_hours):
        _log(line, quiet)
    return gc.run(dry_run=dry_run)


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point for the cdk-agc CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv).

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    log_level = logging.WARNING
    if args.verbose >= 1:
        log_level = logging.INFO
    if args.verbose >= 2:
        log_level = logging.DEBUG
    logging.basicConfig(level=log_level, format="%(levelname)s: %(message)s")

    try:
        config = _resolve_config(args)
        result = _run(config, args.cleanup_tmp, args.dry_run, quiet=args.json)
    except AgcError as e:
        return _error(str(e))

    if args.json:
        _log(result.to_json())
    else:
        for line in render_result(result):
            _log(line)

    if result.errors:
        logger.error("%d error(s) during cleanup", len(result.errors))
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
