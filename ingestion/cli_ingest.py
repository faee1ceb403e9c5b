from __future__ import annotations

import argparse
from pathlib import Path
from typing import List

from tqdm import tqdm

from common.config import ChunkingConfig, yaml_config
from common.logger import get_logger
from ingestion.document_models import ProcessingStatus
from ingestion.ingest_pipeline import UploadRejected, ingest_upload
from storage.local_store import LocalDocumentStore

log = get_logger(__name__)

PDF_MIME = "application/pdf"


def discover_pdfs(root: Path) -> List[Path]:
    """
    Recursively find all PDF files in the input directory.
    """
    return sorted(p for p in root.rglob("*") if p.is_file() and p.suffix.lower() == ".pdf")


def main(argv: List[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Extract and chunk PDFs from a folder into a local document store."
    )
    parser.add_argument("--input_dir", type=str, required=True, help="Folder with PDFs")
    parser.add_argument(
        "--store_dir",
        type=str,
        default=str(yaml_config.app.store_dir),
        help="Local document store directory",
    )
    parser.add_argument(
        "--chunk_size", type=int, default=yaml_config.chunking.chunk_size
    )
    parser.add_argument(
        "--overlap", type=int, default=yaml_config.chunking.chunk_overlap
    )
    parser.add_argument(
        "--dump", action="store_true", help="Print the stored chunks of each document"
    )
    args = parser.parse_args(argv)

    input_dir = Path(args.input_dir)
    if not input_dir.exists():
        log.error("Input directory does not exist: %s", input_dir)
        raise SystemExit(1)

    try:
        chunking = ChunkingConfig(
            **{
                **yaml_config.chunking.model_dump(),
                "chunk_size": args.chunk_size,
                "chunk_overlap": args.overlap,
            }
        )
    except ValueError as e:
        log.error("Invalid chunking options: %s", e)
        raise SystemExit(2)

    store = LocalDocumentStore(args.store_dir)
    files = discover_pdfs(input_dir)
    log.info("Discovered %d PDF files", len(files))

    failed = 0
    for path in tqdm(files, desc="Ingesting PDFs"):
        data = path.read_bytes()
        try:
            document = ingest_upload(store, path.name, data, PDF_MIME, chunking=chunking)
        except UploadRejected as e:
            log.warning("Skipping %s: %s", path, e)
            failed += 1
            continue

        document = store.get_document(document.id)
        if document.processing_status is not ProcessingStatus.COMPLETED:
            log.warning("Failed %s: %s", path, document.processing_error)
            failed += 1
            continue

        if args.dump:
            for chunk in store.list_chunks(document.id):
                print(f"--- {path.name} [{chunk.chunk_index}] ({chunk.metadata['chunk_size']} chars)")
                print(chunk.content)

    completed = len(files) - failed
    log.info("Ingest complete: %d completed, %d failed", completed, failed)
    return 1 if failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
