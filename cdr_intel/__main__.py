"""
Command-line runner

    python -m cdr_intel ingest calls.xlsx [--store mongo] [--output analysis.json]
    python -m cdr_intel samples [--output-dir samples]
    python -m cdr_intel check-db
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

from cdr_intel import config
from cdr_intel.cdr_processor import IngestionError, process_cdr_file
from cdr_intel.database import close_connection, get_database, test_connection
from cdr_intel.logger import get_logger, setup_logger
from cdr_intel.samples import write_samples
from cdr_intel.storage import create_store

logger = get_logger(__name__)


async def ingest(path: str, store_kind: str, output: str = None) -> int:
    store = create_store(store_kind)
    file_path = Path(path)
    try:
        result = await process_cdr_file(file_path.read_bytes(), store, filename=file_path.name)
    except IngestionError as e:
        logger.error(f"Failed to process {file_path.name}: {e}")
        return 1
    finally:
        if store_kind == "mongo":
            await close_connection()

    document = json.dumps(result, indent=2, default=str)
    if output:
        Path(output).write_text(document, encoding='utf-8')
        logger.info(f"Analysis written to {output}")
    else:
        print(document)
    return 0


async def check_db() -> int:
    logger.info(f"MongoDB URL: {config.MONGODB_URL}")
    logger.info(f"Database Name: {config.DATABASE_NAME}")

    try:
        if not await test_connection():
            logger.error("MongoDB connection failed")
            return 1

        db = await get_database()
        collections = await db.list_collection_names()
        logger.info(f"Database accessible. Collections: {collections}")

        count = await db.cdr_records.count_documents({})
        logger.info(f"CDR records collection exists. Current records: {count}")
        return 0
    finally:
        await close_connection()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="cdr_intel", description="CDR ingestion and analytics")
    parser.add_argument("--log-level", default=None)
    sub = parser.add_subparsers(dest="command", required=True)

    ingest_parser = sub.add_parser("ingest", help="ingest a CDR spreadsheet and print its analysis")
    ingest_parser.add_argument("file")
    ingest_parser.add_argument("--store", choices=["memory", "mongo"], default=config.CDR_STORE)
    ingest_parser.add_argument("--output")

    samples_parser = sub.add_parser("samples", help="write sample CDR workbooks")
    samples_parser.add_argument("--output-dir", default="samples")
    samples_parser.add_argument("--records", type=int, default=50)
    samples_parser.add_argument("--seed", type=int)

    sub.add_parser("check-db", help="test the MongoDB connection")

    args = parser.parse_args(argv)
    setup_logger(args.log_level)

    if args.command == "ingest":
        return asyncio.run(ingest(args.file, args.store, args.output))
    if args.command == "samples":
        write_samples(args.output_dir, args.records, args.seed)
        return 0
    return asyncio.run(check_db())


if __name__ == "__main__":
    sys.exit(main())
