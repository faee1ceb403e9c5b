from __future__ import annotations

import uuid
from concurrent.futures import Executor
from pathlib import PurePath
from typing import Optional

from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from common.config import ChunkingConfig, yaml_config
from common.logger import get_logger
from ingestion.chunkers import chunk_records, chunk_text
from ingestion.document_models import (
    ChunkRecord,
    DocumentRecord,
    ProcessingOutcome,
    ProcessingStatus,
)
from ingestion.pdf_extractor import extract_text_with_details
from storage.local_store import DocumentStore

log = get_logger(__name__)


class UploadRejected(ValueError):
    """The upload fails validation before anything is stored."""


def validate_upload(filename: str | None, content_type: str | None, size: int) -> None:
    cfg = yaml_config.ingestion
    if not filename:
        raise UploadRejected("No file provided")
    if content_type not in cfg.allowed_mime_types:
        raise UploadRejected("Only PDF files are supported")
    if size > cfg.max_file_bytes:
        limit_mb = cfg.max_file_bytes // (1024 * 1024)
        raise UploadRejected(f"File size must be less than {limit_mb}MB")


def _storage_path(filename: str) -> str:
    ext = PurePath(filename).suffix.lstrip(".") or "pdf"
    return f"documents/{uuid.uuid4()}.{ext}"


@retry(
    retry=retry_if_exception_type(OSError),
    wait=wait_exponential(multiplier=1, min=1, max=8),
    stop=stop_after_attempt(3),
    reraise=True,
)
def _insert_with_retry(store: DocumentStore, record: ChunkRecord) -> None:
    """
    Retry wrapper around chunk inserts with exponential backoff.
    """
    store.insert_chunk(record)


def process_document(
    store: DocumentStore,
    document_id: str,
    storage_path: str,
    chunking: Optional[ChunkingConfig] = None,
) -> ProcessingOutcome:
    """
    Turn a stored upload into chunk records and mark the document
    completed or failed. Failures are recorded on the document, not raised.
    """
    chunking = chunking or yaml_config.chunking
    try:
        store.update_document(document_id, processing_status=ProcessingStatus.PROCESSING)

        try:
            data = store.load_file(storage_path)
        except OSError as e:
            raise RuntimeError(f"Failed to download file: {e}") from e

        extraction = extract_text_with_details(data)
        if extraction.placeholder:
            log.warning("Document %s: storing placeholder text (%s)", document_id, extraction.strategy)

        chunks = chunk_text(
            extraction.text,
            max_size=chunking.chunk_size,
            overlap=chunking.chunk_overlap,
            min_chunk_length=chunking.min_chunk_length,
        )
        for record in chunk_records(document_id, chunks):
            _insert_with_retry(store, record)

        store.update_document(
            document_id,
            processing_status=ProcessingStatus.COMPLETED,
            chunk_count=len(chunks),
            processing_error=None,
        )
        log.info("Document %s processed successfully with %d chunks", document_id, len(chunks))
        return ProcessingOutcome(document_id=document_id, success=True, chunk_count=len(chunks))

    except Exception as e:
        log.error("Error processing document %s: %s", document_id, e, exc_info=True)
        try:
            store.update_document(
                document_id,
                processing_status=ProcessingStatus.FAILED,
                processing_error=str(e),
            )
        except Exception as update_error:
            log.error("Could not mark document %s as failed: %s", document_id, update_error)
        return ProcessingOutcome(document_id=document_id, success=False, error=str(e))


def ingest_upload(
    store: DocumentStore,
    filename: str,
    data: bytes,
    content_type: str | None,
    title: str | None = None,
    user_id: str | None = None,
    executor: Executor | None = None,
    chunking: Optional[ChunkingConfig] = None,
) -> DocumentRecord:
    """
    Validate and store an upload, create its pending document record, then
    process it, in the background when an executor is given.
    - Validates name, type and size
    - Stores the bytes under documents/<uuid>.<ext>
    - Creates the document record (the stored file is removed if this fails)
    - Extracts, chunks and persists chunks via process_document
    """
    validate_upload(filename, content_type, len(data))

    storage_path = _storage_path(filename)
    store.save_file(storage_path, data)

    try:
        document = store.create_document(
            DocumentRecord(
                id=str(uuid.uuid4()),
                title=title or filename,
                filename=filename,
                storage_path=storage_path,
                file_size=len(data),
                mime_type=content_type or "",
                user_id=user_id,
            )
        )
    except Exception:
        log.error("Failed to save document record for %s", filename, exc_info=True)
        store.remove_file(storage_path)
        raise

    if executor is not None:
        executor.submit(process_document, store, document.id, storage_path, chunking)
    else:
        process_document(store, document.id, storage_path, chunking)
    return document
