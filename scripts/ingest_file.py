#!/usr/bin/env python3
"""CLI helper that ingests a local document, or the pending job queue, end to end."""

from __future__ import annotations

import argparse
import json
import logging
import mimetypes
import sys
import uuid
from pathlib import Path

from dotenv import load_dotenv


def _load_dotenv() -> None:
    project_root = Path(__file__).resolve().parents[1]
    env_file = project_root / ".env"
    if env_file.exists():
        load_dotenv(dotenv_path=env_file)
    else:
        load_dotenv()


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("path", nargs="?", help="Document to upload and ingest.")
    parser.add_argument("--user-id", help="Owner of the document.")
    parser.add_argument("--class-id", help="Class the document belongs to.")
    parser.add_argument("--folder-id", default=None)
    parser.add_argument("--mime-type", default=None, help="Override the guessed MIME type.")
    parser.add_argument(
        "--pending",
        action="store_true",
        help="Process jobs already waiting in the processing queue instead of a file.",
    )
    parser.add_argument("--limit", type=int, default=10, help="Maximum pending jobs to process.")
    args = parser.parse_args(argv)
    if not args.pending and (not args.path or not args.user_id or not args.class_id):
        parser.error("path, --user-id and --class-id are required unless --pending is given")
    return args


def main(argv: list[str] | None = None) -> int:
    _load_dotenv()
    args = _parse_args(argv)

    from studydesk.embeddings import get_embedding_model
    from studydesk.ingest.dispatch import QueuedBatchDispatcher
    from studydesk.ingest.models import IngestionJobPayload
    from studydesk.ingest.service import build_coordinator
    from studydesk.logging_config import configure_logging
    from studydesk.records import get_record_store
    from studydesk.settings import get_settings
    from studydesk.storage import build_storage_path, get_object_storage
    from studydesk.vectorstore import get_vector_store

    configure_logging()
    settings = get_settings()
    records = get_record_store()
    storage = get_object_storage()
    dispatcher = QueuedBatchDispatcher()
    coordinator = build_coordinator(
        settings,
        records=records,
        storage=storage,
        vector_store=get_vector_store(),
        embedder=get_embedding_model(),
        dispatcher=dispatcher,
    )

    if args.pending:
        jobs = [
            IngestionJobPayload(
                id=row.id,
                user_id=row.user_id,
                class_id=row.class_id,
                storage_path=row.storage_path,
                original_name=row.original_name,
                mime_type=row.mime_type,
                size=row.size,
                folder_id=row.folder_id,
            )
            for row in records.list_pending_jobs(limit=args.limit)
        ]
    else:
        source = Path(args.path)
        if not source.is_file():
            logging.error("File not found: %s", source)
            return 1
        data = source.read_bytes()
        storage_path = build_storage_path(args.user_id, source.name)
        storage.write_bytes(storage_path, data)
        mime_type = args.mime_type or mimetypes.guess_type(source.name)[0] or "application/octet-stream"
        job = IngestionJobPayload(
            id=str(uuid.uuid4()),
            user_id=args.user_id,
            class_id=args.class_id,
            storage_path=storage_path,
            original_name=source.name,
            mime_type=mime_type,
            size=len(data),
            folder_id=args.folder_id,
        )
        records.create_job(job)
        jobs = [job]

    failures = 0
    for job in jobs:
        try:
            outcome = coordinator.run(job)
            batches = 1 + dispatcher.drain() if outcome.first_batch is not None else 0
        except Exception as error:
            failures += 1
            logging.error("Job %s (%s) failed: %s", job.id, job.original_name, error)
            continue
        record = records.get_file(outcome.file_id)
        print(
            json.dumps(
                {
                    "job_id": job.id,
                    "file_id": record.id,
                    "status": record.status,
                    "pages": record.page_count,
                    "batches": batches,
                }
            )
        )

    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(main())
