"""
Best-effort plain-text recovery from raw PDF bytes, without a renderer.

The buffer is decoded one byte per character, content streams are located
(and inflated when Flate-compressed), then an ordered list of strategies is
tried until one recovers usable text:

  1. string operands inside BT ... ET text objects
  2. Tj / TJ show-text operators anywhere in the content
  3. printable ASCII runs inside stream bodies
  4. pypdf's own page text extraction (optional, see config.extraction)

Nothing here raises to the caller. A document with no recoverable text
yields NO_TEXT_MESSAGE; an unexpected fault yields EXTRACTION_FAILED_MESSAGE
with the error filled in.
"""

from __future__ import annotations

import logging
import re
import zlib
from dataclasses import dataclass
from functools import lru_cache
from io import BytesIO
from typing import Callable, Iterator, List, Optional, Sequence, Tuple

from pypdf import PdfReader

from common.config import yaml_config
from common.logger import get_logger
from ingestion.cleaners import is_meaningful_fragment, normalize_text
from ingestion.document_models import ExtractionResult

log = get_logger(__name__)

# PDF syntax bytes are single-byte safe; a multi-byte codec breaks operator matching.
SCAN_ENCODING = "latin-1"

NO_TEXT_MESSAGE = (
    "PDF processed but no readable text could be extracted. This may be a "
    "scanned document, image-based PDF, or the text may be encoded in a format "
    "not supported by this simple parser."
)
EXTRACTION_FAILED_MESSAGE = (
    "PDF uploaded successfully but text extraction failed: {error}. "
    "You may need to use OCR for scanned documents."
)

_STREAM = re.compile(r"\bstream\r?\n(.*?)\r?\n?endstream", re.S)
# Stream dictionaries we never treat as page content.
_SKIPPED_STREAM_KEYS = ("/Image", "/Metadata", "/XRef", "/ObjStm", "/Length1")

_TEXT_OBJECT = re.compile(r"\bBT\b(.*?)\bET\b", re.S)
_LITERAL = r"\(((?:\\.|[^\\)])*)\)"
_HEX = r"<([^<>]*)>"
_TJ_ARRAY = r"\[([^\]]*)\]\s*TJ"
_STRING_OPERAND = re.compile(_LITERAL + "|" + _HEX, re.S)
_TEXT_OPERAND = re.compile(_TJ_ARRAY + "|" + _LITERAL + "|" + _HEX, re.S)
_SHOW_TEXT = re.compile(_TJ_ARRAY + "|" + _LITERAL + r"\s*Tj", re.S)
_ESCAPE = re.compile(r"\\(\r\n|[\r\n]|[0-7]{3}|.)", re.S)
_ESCAPES = {"n": "\n", "r": "\r", "t": "\t", "b": "", "f": ""}

_PRINTABLE_RUN = re.compile(r"[\x20-\x7e]{4,}")
_WORDLIKE = re.compile(r"[A-Za-z]{3,}")
_NUMBER = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)")
_CONTENT_OPERATORS = frozenset(
    """
    b B b* B* BDC BI BMC BT BX c cm CS cs d d0 d1 Do DP EI EMC ET EX f F f* G g gs
    h i ID j J K k l m M MP n q Q re RG rg ri s S SC sc SCN scn sh T* Tc Td TD Tf
    Tj TJ TL Tm Tr Ts Tw Tz v w W W* y ' "
    """.split()
)


@dataclass(frozen=True)
class PdfSource:
    raw: bytes
    scan: str
    streams: Tuple[str, ...]  # decoded bodies of non-image streams

    @property
    def segments(self) -> Tuple[str, ...]:
        # Each content stream is scanned on its own; no streams means one segment.
        return self.streams or (self.scan,)


Strategy = Callable[[PdfSource], Optional[str]]


def _inflate(body: str) -> Optional[str]:
    limit = yaml_config.extraction.max_inflated_bytes
    inflater = zlib.decompressobj()
    try:
        data = inflater.decompress(body.encode(SCAN_ENCODING), limit)
    except zlib.error as e:
        log.debug("Skipping undecodable Flate stream: %s", e)
        return None
    if inflater.unconsumed_tail:
        log.warning("Flate stream inflates past %d bytes, truncating", limit)
    return data.decode(SCAN_ENCODING)


def _iter_stream_bodies(scan: str) -> Iterator[str]:
    for m in _STREAM.finditer(scan):
        obj_start = scan.rfind("obj", 0, m.start())
        header = scan[obj_start if obj_start >= 0 else max(0, m.start() - 512) : m.start()]
        if any(key in header for key in _SKIPPED_STREAM_KEYS):
            continue
        body = m.group(1)
        if "/FlateDecode" in header:
            body = _inflate(body)
            if body is None:
                continue
        yield body


def _prepare(data: bytes) -> PdfSource:
    scan = data.decode(SCAN_ENCODING)
    return PdfSource(raw=data, scan=scan, streams=tuple(_iter_stream_bodies(scan)))


def _unescape(literal: str) -> str:
    def _replace(m: re.Match) -> str:
        token = m.group(1)
        if token[0] in "\r\n" or len(token) == 3:
            # line continuation, or an octal code we do not map
            return ""
        return _ESCAPES.get(token, token)

    return _ESCAPE.sub(_replace, literal)


def _decode_hex(span: str) -> Optional[str]:
    digits = re.sub(r"\s+", "", span)
    if not re.fullmatch(r"[0-9A-Fa-f]+", digits):
        return None
    if len(digits) % 2:
        digits += "0"
    return bytes.fromhex(digits).decode(SCAN_ENCODING)


def _keep(fragment: Optional[str]) -> Optional[str]:
    min_len = yaml_config.extraction.min_fragment_length
    if fragment is None or not is_meaningful_fragment(fragment, min_len):
        return None
    return fragment.strip()


def _join_segments(source: PdfSource, scan_segment: Callable[[str], List[str]]) -> Optional[str]:
    pages = []
    for segment in source.segments:
        fragments = scan_segment(segment)
        if fragments:
            pages.append(" ".join(fragments))
    return "\n\n".join(pages) or None


def _array_text(array: str) -> str:
    # pieces of one TJ array are a single run split by kerning offsets
    pieces = []
    for m in _STRING_OPERAND.finditer(array):
        literal, hex_span = m.groups()
        piece = _unescape(literal) if literal is not None else _decode_hex(hex_span)
        if piece is not None:
            pieces.append(piece)
    return "".join(pieces)


def _text_object_fragments(segment: str) -> List[str]:
    out: List[str] = []
    for obj in _TEXT_OBJECT.finditer(segment):
        for m in _TEXT_OPERAND.finditer(obj.group(1)):
            array, literal, hex_span = m.groups()
            if array is not None:
                text = _keep(_array_text(array))
            elif literal is not None:
                text = _keep(_unescape(literal))
            else:
                text = _keep(_decode_hex(hex_span))
            if text:
                out.append(text)
    return out


def _show_text_fragments(segment: str) -> List[str]:
    out: List[str] = []
    for m in _SHOW_TEXT.finditer(segment):
        array, literal = m.groups()
        if array is not None:
            text = _keep(_array_text(array))
        else:
            text = _keep(_unescape(literal))
        if text:
            out.append(text)
    return out


def text_object_strategy(source: PdfSource) -> Optional[str]:
    return _join_segments(source, _text_object_fragments)


def show_text_strategy(source: PdfSource) -> Optional[str]:
    return _join_segments(source, _show_text_fragments)


def _strip_operators(run: str) -> str:
    words = [
        tok
        for tok in run.split()
        if not (
            _NUMBER.fullmatch(tok)
            or tok.startswith("/")
            or tok in _CONTENT_OPERATORS
            or not tok.strip("[]<>(){}")
        )
    ]
    return " ".join(words)


def stream_run_strategy(source: PdfSource) -> Optional[str]:
    """Last-resort heuristic: printable runs that look like words.

    Numbers, names and content-stream operators are dropped first, so drawing
    commands such as ``q 200 0 0 300 0 0 cm /Im0 Do Q`` yield nothing.
    """
    pages = []
    for body in source.streams:
        runs = []
        for run in _PRINTABLE_RUN.findall(body):
            words = _strip_operators(run)
            if _WORDLIKE.search(words):
                runs.append(words)
        if runs:
            pages.append(" ".join(runs))
    return "\n\n".join(pages) or None


@lru_cache(maxsize=None)
def configure_pdf_backend() -> None:
    """One-time pypdf setup; repeated calls are no-ops."""
    # pypdf warns loudly on every malformed xref it repairs.
    logging.getLogger("pypdf").setLevel(logging.ERROR)


def pdf_library_strategy(source: PdfSource) -> Optional[str]:
    if not yaml_config.extraction.pdf_library_fallback:
        return None
    configure_pdf_backend()
    try:
        reader = PdfReader(BytesIO(source.raw))
        pages = [page.extract_text() or "" for page in reader.pages]
    except Exception as e:
        log.debug("pypdf could not parse document: %s", e)
        return None
    return "\n\n".join(p.strip() for p in pages if p.strip()) or None


STRATEGIES: Sequence[Tuple[str, Strategy]] = (
    ("text_objects", text_object_strategy),
    ("show_text_operators", show_text_strategy),
    ("stream_runs", stream_run_strategy),
    ("pdf_library", pdf_library_strategy),
)


def extract_text_with_details(
    data: bytes, strategies: Sequence[Tuple[str, Strategy]] = STRATEGIES
) -> ExtractionResult:
    """
    Run the strategies in order and return the first usable, normalized text.
    Falls back to a sentinel message instead of raising.
    """
    try:
        source = _prepare(bytes(data))
        for name, strategy in strategies:
            found = strategy(source)
            text = normalize_text(found) if found else ""
            if text:
                log.info("Extracted %d characters via %s", len(text), name)
                return ExtractionResult(text=text, strategy=name)
        log.warning("No readable text found in %d-byte document", len(source.raw))
        return ExtractionResult(text=NO_TEXT_MESSAGE, strategy="none", placeholder=True)
    except Exception as e:
        log.error("PDF extraction failed: %s", e, exc_info=True)
        return ExtractionResult(
            text=EXTRACTION_FAILED_MESSAGE.format(error=e),
            strategy="error",
            placeholder=True,
        )


def extract_text(data: bytes) -> str:
    """Best-effort plain text for a PDF; never empty, never raises."""
    return extract_text_with_details(data).text
