#!/usr/bin/env python3
"""
Run the document pipeline inline for one document (no Celery).

Uploaded documents are processed; failed ones are retried while retries remain.

Usage:
    python scripts/reprocess_document.py <document_id>

Example:
    python scripts/reprocess_document.py acafec2a-00e1-4484-96e7-ccb05e43185f
"""
import sys
import os
import asyncio
from uuid import UUID

# Add parent directory to path so we can import modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from packages.common.config import settings
from packages.common.database import sessionmanager
from packages.common.document_repository import document_repository
from packages.common.errors import EngineError
from packages.common.log_config import configure_logging
from packages.domain.documents.pipeline import document_pipeline


async def main():
    if len(sys.argv) < 2:
        print("Usage: python scripts/reprocess_document.py <document_id>")
        sys.exit(1)

    configure_logging()
    document_id = UUID(sys.argv[1])
    print(f"Processing document {document_id}...")

    await sessionmanager.init(settings.database_url)
    try:
        try:
            await document_pipeline.process(document_id)
        except EngineError as e:
            print(f"  Error: {e.code}: {e.message}")
            sys.exit(1)

        async with sessionmanager.session() as db:
            document = await document_repository.get_document(db, document_id)
    finally:
        await sessionmanager.close()

    print("\nResult:")
    print(f"  Status: {document.status.value}")
    if document.error_reason:
        print(f"  Error reason: {document.error_reason} (retry {document.retry_count})")
    if document.suggested_summary:
        summary = document.suggested_summary
        print(f"  Type: {summary.document_type.value} ({summary.classification_confidence}%)")
        print(f"  Needing review: {summary.statistics.needing_review}/{summary.statistics.total_items}")
    for item in document.items:
        print(f"  {item.line_number:>3} {item.original_description[:40]:<40} "
              f"{item.amount_display or '-':>16}  {item.suggested_code} ({item.suggestion_confidence})")


if __name__ == "__main__":
    asyncio.run(main())
