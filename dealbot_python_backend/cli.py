"""
Command-line ingestion runner.

Usage:
    python -m dealbot_python_backend.cli [--prefix logs/2024/] [--backend gcs|local|auto] [--create-tables]
"""

import argparse
import asyncio
import logging
import sys

logger = logging.getLogger("dealbot_ingestion_cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dealbot-ingest",
        description="Ingest deal bot service logs from object storage into the analytics database.",
    )
    parser.add_argument("--prefix", default=None, help="Only process objects whose key starts with this prefix")
    parser.add_argument(
        "--backend",
        choices=["auto", "gcs", "local"],
        default=None,
        help="Object source (default: OBJECT_SOURCE_BACKEND or auto)",
    )
    parser.add_argument("--batch-size", type=int, default=None, help="Entries per transaction")
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="Create the conversations/messages tables before ingesting",
    )
    return parser


async def _create_tables() -> None:
    from dealbot_python_backend.db_session import async_engine
    from dealbot_python_backend.models import Base

    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all, checkfirst=True)
    logger.info("Database tables ready")


async def run(args) -> bool:
    from dealbot_python_backend.db_session import async_engine, get_async_session_context
    from dealbot_python_backend.services.ingestion_coordinator import IngestionCoordinator
    from dealbot_python_backend.services.object_source import build_object_source

    try:
        if args.create_tables:
            await _create_tables()

        options = {"batch_size": args.batch_size} if args.batch_size else {}
        coordinator = IngestionCoordinator(
            get_async_session_context,
            build_object_source(args.backend),
            **options,
        )
        result = await coordinator.ingest_all(args.prefix)
    finally:
        await async_engine.dispose()

    logger.info("=" * 50)
    logger.info("INGESTION COMPLETED")
    logger.info("=" * 50)
    logger.info("Status: %s", "SUCCESS" if result.success else "FAILED")
    logger.info("Processed entries: %d", result.processed_entries)
    logger.info("Conversations created: %d", result.conversations_created)
    logger.info("Messages created: %d", result.messages_created)
    if result.errors:
        logger.info("Errors: %d", len(result.errors))
        for index, error in enumerate(result.errors, start=1):
            logger.error("  %d. %s", index, error)

    return result.success


def main(argv=None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    args = build_parser().parse_args(argv)

    try:
        success = asyncio.run(run(args))
    except Exception:  # noqa: BLE001
        logger.exception("Ingestion failed")
        return 1
    return 0 if success else 1


if __name__ == "__main__":
    sys.exit(main())
