from concurrent.futures import ThreadPoolExecutor

import pytest

from common.config import ChunkingConfig
from ingestion.document_models import DocumentRecord, ProcessingStatus
from ingestion.ingest_pipeline import (
    UploadRejected,
    ingest_upload,
    process_document,
    validate_upload,
)
from ingestion.pdf_extractor import NO_TEXT_MESSAGE

PDF = "application/pdf"
SENTENCE = b"Retrieval works best on clean and well bounded text chunks."


@pytest.fixture
def text_pdf(build_pdf):
    return build_pdf(b"BT (" + SENTENCE + b") Tj ET")


def _stored_files(store):
    return [p for p in store.files_dir.rglob("*") if p.is_file()]


def test_upload_is_processed_into_chunks(store, text_pdf):
    document = ingest_upload(store, "report.pdf", text_pdf, PDF, user_id="u-1")
    assert document.processing_status is ProcessingStatus.PENDING
    assert document.title == "report.pdf"
    assert document.storage_path.startswith("documents/")
    assert document.storage_path.endswith(".pdf")
    assert document.file_size == len(text_pdf)

    stored = store.get_document(document.id)
    assert stored.processing_status is ProcessingStatus.COMPLETED
    assert stored.chunk_count == 1
    assert stored.processing_error is None

    chunks = store.list_chunks(document.id)
    assert len(chunks) == 1
    assert chunks[0].chunk_index == 0
    assert chunks[0].content == SENTENCE.decode()
    assert chunks[0].metadata == {"chunk_size": len(SENTENCE)}


def test_title_overrides_filename(store, text_pdf):
    document = ingest_upload(store, "report.pdf", text_pdf, PDF, title="Q3 Report")
    assert document.title == "Q3 Report"
    assert document.filename == "report.pdf"


def test_image_only_upload_stores_placeholder_chunk(store, image_only_pdf):
    document = ingest_upload(store, "scan.pdf", image_only_pdf, PDF)
    assert store.get_document(document.id).processing_status is ProcessingStatus.COMPLETED
    chunks = store.list_chunks(document.id)
    assert [c.content for c in chunks] == [NO_TEXT_MESSAGE]


@pytest.mark.parametrize(
    "filename, content_type, size, message",
    [
        ("", PDF, 10, "No file provided"),
        ("notes.txt", "text/plain", 10, "Only PDF files are supported"),
        ("big.pdf", PDF, 10 * 1024 * 1024 + 1, "File size must be less than 10MB"),
    ],
)
def test_validate_upload_rejects(filename, content_type, size, message):
    with pytest.raises(UploadRejected, match=message):
        validate_upload(filename, content_type, size)


def test_rejected_upload_stores_nothing(store, text_pdf):
    with pytest.raises(UploadRejected):
        ingest_upload(store, "notes.txt", text_pdf, "text/plain")
    assert _stored_files(store) == []
    assert store.list_documents() == []


def test_failed_record_creation_removes_file(tmp_path, text_pdf):
    from storage.local_store import LocalDocumentStore

    class BrokenStore(LocalDocumentStore):
        def create_document(self, record):
            raise RuntimeError("database unavailable")

    store = BrokenStore(tmp_path / "store")
    with pytest.raises(RuntimeError, match="database unavailable"):
        ingest_upload(store, "report.pdf", text_pdf, PDF)
    assert _stored_files(store) == []


def test_missing_file_marks_document_failed(store):
    store.create_document(
        DocumentRecord(
            id="doc-1",
            title="gone.pdf",
            filename="gone.pdf",
            storage_path="documents/gone.pdf",
            file_size=10,
            mime_type=PDF,
        )
    )
    outcome = process_document(store, "doc-1", "documents/gone.pdf")
    assert not outcome.success
    assert outcome.error.startswith("Failed to download file")

    stored = store.get_document("doc-1")
    assert stored.processing_status is ProcessingStatus.FAILED
    assert stored.processing_error == outcome.error
    assert store.list_chunks("doc-1") == []


def test_chunk_insert_failure_marks_document_failed(tmp_path, text_pdf):
    from storage.local_store import LocalDocumentStore

    class RejectingStore(LocalDocumentStore):
        def insert_chunk(self, chunk):
            raise ValueError("constraint violation")

    store = RejectingStore(tmp_path / "store")
    document = ingest_upload(store, "report.pdf", text_pdf, PDF)
    stored = store.get_document(document.id)
    assert stored.processing_status is ProcessingStatus.FAILED
    assert stored.processing_error == "constraint violation"


def test_custom_chunking_is_applied(store, build_pdf):
    pages = [
        b"BT (" + b" ".join(b"word%02d" % i for i in range(p * 20, p * 20 + 20)) + b") Tj ET"
        for p in range(3)
    ]
    default = ingest_upload(store, "long.pdf", build_pdf(*pages), PDF)
    assert store.get_document(default.id).chunk_count == 1

    small = ingest_upload(
        store,
        "long.pdf",
        build_pdf(*pages),
        PDF,
        chunking=ChunkingConfig(chunk_size=200, chunk_overlap=0),
    )
    assert store.get_document(small.id).chunk_count == 3
    assert [c.chunk_index for c in store.list_chunks(small.id)] == [0, 1, 2]


def test_background_processing_with_executor(store, text_pdf):
    with ThreadPoolExecutor(max_workers=2) as executor:
        documents = [
            ingest_upload(store, f"report-{i}.pdf", text_pdf, PDF, executor=executor)
            for i in range(3)
        ]
    for document in documents:
        stored = store.get_document(document.id)
        assert stored.processing_status is ProcessingStatus.COMPLETED
        assert len(store.list_chunks(document.id)) == 1
