from typing import Tuple, Union

import pytest

from storage.local_store import LocalDocumentStore

Stream = Union[bytes, Tuple[bytes, bytes]]


def _build_pdf(*streams: Stream) -> bytes:
    """Minimal uncompressed PDF: one indirect object per stream, no xref."""
    out = [b"%PDF-1.4\n"]
    for num, stream in enumerate(streams, start=1):
        entries, body = stream if isinstance(stream, tuple) else (b"", stream)
        out.append(b"%d 0 obj\n<< /Length %d %s>>\nstream\n" % (num, len(body), entries))
        out.append(body)
        out.append(b"\nendstream\nendobj\n")
    out.append(b"%%EOF\n")
    return b"".join(out)


@pytest.fixture
def build_pdf():
    return _build_pdf


@pytest.fixture
def image_only_pdf() -> bytes:
    pixels = bytes(range(128, 256)) + bytes(range(0, 32))
    return _build_pdf(
        (b"/Type /XObject /Subtype /Image /Width 8 /Height 20 /BitsPerComponent 8 ", pixels)
    )


@pytest.fixture
def store(tmp_path) -> LocalDocumentStore:
    return LocalDocumentStore(tmp_path / "store")
