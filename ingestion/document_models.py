from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class Chunk:
    index: int  # 0-based, sequential in emission order
    content: str
    length: int  # == len(content)


@dataclass(frozen=True)
class ExtractionResult:
    text: str
    strategy: str  # tier that produced the text, "none" or "error" for sentinels
    placeholder: bool = False


class ProcessingStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class DocumentRecord:
    id: str
    title: str
    filename: str
    storage_path: str
    file_size: int
    mime_type: str
    user_id: Optional[str] = None
    processing_status: ProcessingStatus = ProcessingStatus.PENDING
    chunk_count: Optional[int] = None
    processing_error: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class ChunkRecord:
    document_id: str
    chunk_index: int
    content: str
    metadata: Dict[str, Any] = field(default_factory=dict)  # {"chunk_size": ...}


@dataclass(frozen=True)
class ProcessingOutcome:
    document_id: str
    success: bool
    chunk_count: int = 0
    error: Optional[str] = None
