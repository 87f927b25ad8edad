"""
Command line interface for the Magento export pipeline.

    magento-export [--kind orders|customers] download [--resume] [--force]
    magento-export [--kind orders|customers] process [--resume] [--keep-files] [--output FILE] [--force]
    magento-export [--kind orders|customers] export [--resume] [--keep-files] [--output FILE]
    magento-export [--kind orders|customers] status
    magento-export [--kind orders|customers] cleanup

Exits with 1 on unrecoverable failures (authentication, missing cache,
nothing to process, retries exhausted, missing configuration).
"""

import argparse
import asyncio
import logging
from typing import List, Optional

from core.config import Settings
from core.exceptions import ExportException
from core.logging import setup_logging
from ingestion.pipeline import ExportPipeline
from models.base import EntityKind
from models.checkpoint import StageCheckpoint

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="magento-export",
        description="Resumable export of Magento orders and customers to CSV",
    )
    parser.add_argument(
        "--kind",
        choices=[kind.value for kind in EntityKind],
        default=EntityKind.ORDERS.value,
        help="Collection to export (default: orders)",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    download = commands.add_parser("download", help="Download all records to cache files")
    download.add_argument("--resume", action="store_true", help="Resume an interrupted download")
    download.add_argument("--force", action="store_true", help="Download again even if completed")

    process = commands.add_parser("process", help="Process cached records into a CSV file")
    process.add_argument("--resume", action="store_true", help="Resume interrupted processing")
    process.add_argument("--keep-files", action="store_true", help="Keep cache files after processing")
    process.add_argument("--output", metavar="FILE", help="Output CSV file name")
    process.add_argument("--force", action="store_true", help="Process again even if completed")

    export = commands.add_parser("export", help="Download and process in one run")
    export.add_argument("--resume", action="store_true", help="Resume both stages")
    export.add_argument("--keep-files", action="store_true", help="Keep cache files after processing")
    export.add_argument("--output", metavar="FILE", help="Output CSV file name")

    commands.add_parser("status", help="Show download and processing progress")
    commands.add_parser("cleanup", help="Delete all cache files and checkpoints")

    return parser


def _log_checkpoint(title: str, checkpoint: Optional[StageCheckpoint]):
    if checkpoint is None:
        logger.info(f"{title}: no status found")
        return

    logger.info(f"{title}:")
    logger.info(f"   Expected: {checkpoint.total_expected}")
    logger.info(f"   Processed: {checkpoint.processed_count} ({checkpoint.progress}%)")
    logger.info(f"   Last cursor: {checkpoint.last_cursor}")
    logger.info(f"   Completed: {'Yes' if checkpoint.completed else 'No'}")
    logger.info(f"   Errors: {len(checkpoint.errors)}")
    if getattr(checkpoint, "output_file", None):
        logger.info(f"   Lines generated: {checkpoint.total_lines}")
        logger.info(f"   Output file: {checkpoint.output_file}")


def show_status(pipeline: ExportPipeline):
    status = pipeline.status()
    logger.info(f"Cache directory: {status['cache_dir']} ({status['cached_units']} units)")
    _log_checkpoint("Download status", status["download"])
    _log_checkpoint("Processing status", status["process"])


async def run_command(args: argparse.Namespace, settings: Settings) -> int:
    pipeline = ExportPipeline(settings, EntityKind(args.kind))

    if args.command == "download":
        await pipeline.download(resume=args.resume, force=args.force)
    elif args.command == "process":
        pipeline.process(
            resume=args.resume,
            output_filename=args.output,
            keep_files=args.keep_files,
            force=args.force,
        )
    elif args.command == "export":
        await pipeline.export(
            resume=args.resume,
            output_filename=args.output,
            keep_files=args.keep_files,
        )
    elif args.command == "status":
        show_status(pipeline)
    elif args.command == "cleanup":
        pipeline.cleanup()

    return 0


def main(argv: Optional[List[str]] = None, settings: Optional[Settings] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = settings or Settings()
    setup_logging(settings)

    try:
        return asyncio.run(run_command(args, settings))
    except ExportException as e:
        logger.error(f"{args.command} failed: {e.message}", extra={"error_context": e.to_dict()})
        return 1
