"""Seed the Qdrant collection with the clinic's reference information.

Usage:
    python scripts/ingest_clinic_info.py             # create collection if needed, upsert
    python scripts/ingest_clinic_info.py --dry-run   # list what would be inserted
"""

from __future__ import annotations

import argparse
import logging
import sys

from dotenv import load_dotenv

from clinic_assistant.clinic_info import clinic_documents
from clinic_assistant.services.retrieval import ContextRetriever

logger = logging.getLogger("ingest_clinic_info")


def main() -> int:
    parser = argparse.ArgumentParser(description="Insert clinic information into Qdrant")
    parser.add_argument("--dry-run", action="store_true", help="Print documents and exit")
    args = parser.parse_args()

    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)-8s %(message)s")

    documents = clinic_documents()
    if args.dry_run:
        for doc in documents:
            print(f"[{doc['intent']}] {doc['text']}")
        return 0

    retriever = ContextRetriever(enabled=True)
    try:
        if retriever.ensure_collection():
            logger.info("Collection created")
        count = retriever.upsert_documents(documents)
    except Exception:
        logger.exception("Error inserting clinic information")
        return 1

    logger.info("Inserted %d clinic information items", count)
    return 0


if __name__ == "__main__":
    sys.exit(main())
