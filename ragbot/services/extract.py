
import copy
import io
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

import chardet
import httpx
from bs4 import BeautifulSoup
from pdfminer.high_level import extract_text as pdf_extract
from pdfminer.pdfparser import PDFSyntaxError
from pdfminer.psparser import PSEOF, PSException
from fastapi.concurrency import run_in_threadpool

from ..config import settings
from ..errors import EmptyContentError, FetchError, ParseError, UnsupportedTypeError
from ..logging_config import get_logger
from ..utils.text import collapse_whitespace

logger = get_logger(__name__)

PDF_TYPES = {"application/pdf"}
TEXT_TYPES = {"text/plain"}
PDF_EXTENSIONS = (".pdf",)
TEXT_EXTENSIONS = (".txt",)

# Main-content containers, most specific first
CONTENT_SELECTORS = (
    ".entry-content",
    ".post-content",
    ".article-content",
    "article",
    ".content",
    "main",
)
CONTENT_NOISE = "div.elementor, style, script, nav, header, footer"
BODY_NOISE = "nav, header, footer, script, style"
TITLE_SELECTORS = ("h1.entry-title", "h1", "title")
DATE_SELECTORS = (
    'meta[property="article:published_time"]',
    'meta[name="date"]',
    'meta[property="article:modified_time"]',
)

@dataclass
class UploadedFile:
    filename: str
    content_type: str
    content: bytes

    @property
    def size(self) -> int:
        return len(self.content)

@dataclass
class ExtractedDocument:
    text: str
    metadata: Dict[str, Any] = field(default_factory=dict)

def detect_kind(filename: str, content_type: str) -> Optional[str]:
    """Return "pdf" or "text" by declared MIME type, falling back to the extension."""
    ctype = (content_type or "").split(";")[0].strip().lower()
    if ctype in PDF_TYPES:
        return "pdf"
    if ctype in TEXT_TYPES:
        return "text"
    name = (filename or "").lower()
    if name.endswith(PDF_EXTENSIONS):
        return "pdf"
    if name.endswith(TEXT_EXTENSIONS):
        return "text"
    return None

def _decode_text(content: bytes) -> str:
    try:
        return content.decode("utf-8")
    except UnicodeDecodeError:
        enc = chardet.detect(content).get("encoding") or "utf-8"
        return content.decode(enc, errors="ignore")

def _pdf_text(content: bytes) -> str:
    return pdf_extract(io.BytesIO(content))

async def _extract_pdf(content: bytes) -> str:
    try:
        try:
            text = await run_in_threadpool(_pdf_text, content)
        except PSEOF:
            # pdfminer can hit a premature end-of-stream on the first pass; one retry only
            logger.warning("PDF decoder hit end-of-stream, retrying once")
            text = await run_in_threadpool(_pdf_text, content)
    except (PDFSyntaxError, PSException, KeyError, TypeError, ValueError) as e:
        raise ParseError(
            "Failed to parse PDF. The file might be corrupted.", details=str(e) or e.__class__.__name__
        ) from e
    if not text or not text.strip():
        raise EmptyContentError(
            "PDF appears to be empty or contains only images. Please use a PDF with selectable text."
        )
    return text

async def extract_file(upload: UploadedFile) -> ExtractedDocument:
    kind = detect_kind(upload.filename, upload.content_type)
    if kind == "pdf":
        text = await _extract_pdf(upload.content)
    elif kind == "text":
        text = _decode_text(upload.content)
        if not text.strip():
            raise EmptyContentError("Text file is empty")
    else:
        raise UnsupportedTypeError(
            f"Unsupported file type: {upload.content_type or 'unknown'}. Supported types: PDF, TXT"
        )
    return ExtractedDocument(
        text=text.strip(),
        metadata={"source": upload.filename, "type": "file", "file_type": upload.content_type},
    )

def _first_text(soup: BeautifulSoup, selectors) -> Optional[str]:
    for sel in selectors:
        el = soup.select_one(sel)
        if el is not None:
            value = collapse_whitespace(el.get_text(" "))
            if value:
                return value
    return None

def _first_meta(soup: BeautifulSoup, selectors) -> Optional[str]:
    for sel in selectors:
        el = soup.select_one(sel)
        if el is not None and el.get("content"):
            return el["content"]
    return None

def _without(element, noise: str) -> str:
    clone = copy.copy(element)
    for junk in clone.select(noise):
        junk.decompose()
    return clone.get_text(" ")

def parse_html(html: str, source: str) -> ExtractedDocument:
    soup = BeautifulSoup(html, "html.parser")

    content = ""
    for sel in CONTENT_SELECTORS:
        for el in soup.select(sel):
            content = collapse_whitespace(_without(el, CONTENT_NOISE))
            if content:
                break
        if content:
            break

    if not content and soup.body is not None:
        content = collapse_whitespace(_without(soup.body, BODY_NOISE))

    metadata = {
        "source": source,
        "title": _first_text(soup, TITLE_SELECTORS),
        "date": _first_meta(soup, DATE_SELECTORS),
        "content_length": len(content.split()),
        "type": "url",
    }
    return ExtractedDocument(text=content, metadata=metadata)

async def extract_url(url: str, client: httpx.AsyncClient | None = None) -> ExtractedDocument:
    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(timeout=httpx.Timeout(settings.FETCH_TIMEOUT), follow_redirects=True)
    try:
        resp = await client.get(url)
        resp.raise_for_status()
        html = resp.text
    except httpx.HTTPError as e:
        raise FetchError(f"Failed to fetch URL: {url}", details=str(e) or e.__class__.__name__) from e
    finally:
        if owns_client:
            await client.aclose()

    doc = parse_html(html, url)
    if not doc.text:
        raise EmptyContentError("No content found at the provided URL")
    return doc

async def extract(source: Union[UploadedFile, str], client: httpx.AsyncClient | None = None) -> ExtractedDocument:
    """Extract plain text and metadata from an uploaded file or a URL."""
    if isinstance(source, UploadedFile):
        return await extract_file(source)
    return await extract_url(source, client=client)
