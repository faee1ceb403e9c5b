from __future__ import annotations

import threading
from dataclasses import asdict, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Protocol

import orjson

from common.config import yaml_config
from common.logger import get_logger
from ingestion.document_models import ChunkRecord, DocumentRecord, ProcessingStatus

log = get_logger(__name__)


class DocumentStore(Protocol):
    """File storage plus document/chunk tables, as the ingest pipeline sees them."""

    def save_file(self, storage_path: str, data: bytes) -> None: ...

    def load_file(self, storage_path: str) -> bytes: ...

    def remove_file(self, storage_path: str) -> None: ...

    def create_document(self, record: DocumentRecord) -> DocumentRecord: ...

    def get_document(self, document_id: str) -> DocumentRecord: ...

    def update_document(self, document_id: str, **fields: Any) -> DocumentRecord: ...

    def insert_chunk(self, chunk: ChunkRecord) -> None: ...

    def list_chunks(self, document_id: str) -> List[ChunkRecord]: ...


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class LocalDocumentStore:
    def __init__(self, root: Path | str | None = None):
        """
        Directory-backed DocumentStore.

        Layout:
          <root>/files/<storage_path>     uploaded bytes
          <root>/documents.json           document records keyed by id
          <root>/chunks/<document_id>.json chunk records in index order
        """
        self.root = Path(root or yaml_config.app.store_dir)
        self.files_dir = self.root / "files"
        self.chunks_dir = self.root / "chunks"
        self.documents_path = self.root / "documents.json"
        self.files_dir.mkdir(parents=True, exist_ok=True)
        self.chunks_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    # --- files ---

    def _file_path(self, storage_path: str) -> Path:
        path = (self.files_dir / storage_path).resolve()
        if self.files_dir.resolve() not in path.parents:
            raise ValueError(f"Storage path escapes the store: {storage_path}")
        return path

    def save_file(self, storage_path: str, data: bytes) -> None:
        path = self._file_path(storage_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    def load_file(self, storage_path: str) -> bytes:
        path = self._file_path(storage_path)
        if not path.exists():
            raise FileNotFoundError(f"No stored file at {storage_path}")
        return path.read_bytes()

    def remove_file(self, storage_path: str) -> None:
        self._file_path(storage_path).unlink(missing_ok=True)

    # --- documents ---

    def _read_documents(self) -> Dict[str, Dict[str, Any]]:
        if not self.documents_path.exists():
            return {}
        return orjson.loads(self.documents_path.read_bytes())

    def _write_documents(self, docs: Dict[str, Dict[str, Any]]) -> None:
        self.documents_path.write_bytes(orjson.dumps(docs, option=orjson.OPT_INDENT_2))

    @staticmethod
    def _to_record(raw: Dict[str, Any]) -> DocumentRecord:
        return DocumentRecord(
            **{**raw, "processing_status": ProcessingStatus(raw["processing_status"])}
        )

    def create_document(self, record: DocumentRecord) -> DocumentRecord:
        with self._lock:
            docs = self._read_documents()
            if record.id in docs:
                raise ValueError(f"Document {record.id} already exists")
            now = _now()
            record = replace(record, created_at=now, updated_at=now)
            docs[record.id] = asdict(record)
            self._write_documents(docs)
        log.info("Created document %s (%s)", record.id, record.filename)
        return record

    def get_document(self, document_id: str) -> DocumentRecord:
        with self._lock:
            docs = self._read_documents()
        if document_id not in docs:
            raise KeyError(document_id)
        return self._to_record(docs[document_id])

    def update_document(self, document_id: str, **fields: Any) -> DocumentRecord:
        with self._lock:
            docs = self._read_documents()
            if document_id not in docs:
                raise KeyError(document_id)
            docs[document_id].update(fields, updated_at=_now())
            self._write_documents(docs)
            return self._to_record(docs[document_id])

    def list_documents(self) -> List[DocumentRecord]:
        with self._lock:
            docs = self._read_documents()
        return [self._to_record(d) for d in docs.values()]

    # --- chunks ---

    def _chunks_path(self, document_id: str) -> Path:
        return self.chunks_dir / f"{document_id}.json"

    def insert_chunk(self, chunk: ChunkRecord) -> None:
        with self._lock:
            path = self._chunks_path(chunk.document_id)
            rows: List[Dict[str, Any]] = orjson.loads(path.read_bytes()) if path.exists() else []
            if any(r["chunk_index"] == chunk.chunk_index for r in rows):
                raise ValueError(
                    f"Chunk {chunk.chunk_index} already stored for document {chunk.document_id}"
                )
            rows.append(asdict(chunk))
            rows.sort(key=lambda r: r["chunk_index"])
            path.write_bytes(orjson.dumps(rows, option=orjson.OPT_INDENT_2))

    def list_chunks(self, document_id: str) -> List[ChunkRecord]:
        path = self._chunks_path(document_id)
        with self._lock:
            if not path.exists():
                return []
            rows = orjson.loads(path.read_bytes())
        return [ChunkRecord(**r) for r in rows]

