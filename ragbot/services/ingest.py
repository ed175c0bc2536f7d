from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union
from urllib.parse import urlparse

import httpx

from ..config import Settings, settings as default_settings
from ..errors import AuthenticationError, EmptyContentError, ValidationError
from ..logging_config import get_logger
from ..models import Tenant
from ..stores import DocumentStore, SectionRow, TenantStore
from ..utils.text import TextSplitter
from .embedding import EmbeddingClient
from .extract import UploadedFile, extract
from .usage import INGEST_UPLOAD_ENDPOINT, INGEST_URL_ENDPOINT, UsageTracker

logger = get_logger(__name__)

ALLOWED_TYPES = {"application/pdf", "text/plain"}
ALLOWED_EXTENSIONS = (".pdf", ".txt")


@dataclass
class UrlSource:
    url: str


Source = Union[UploadedFile, UrlSource]


@dataclass
class IngestResult:
    document_id: int
    sections_count: int
    name: str
    metadata: Dict[str, Any] = field(default_factory=dict)


def validate_url(url: Optional[str]) -> str:
    if not url or not url.strip():
        raise ValidationError("URL is required")
    url = url.strip()
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError("Invalid URL format", details=url)
    return url


class IngestionCoordinator:
    """Extract → chunk → create document → embed → bulk insert sections → count usage."""

    def __init__(
        self,
        tenants: TenantStore,
        documents: DocumentStore,
        embedder: EmbeddingClient,
        usage: UsageTracker,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.tenants = tenants
        self.documents = documents
        self.embedder = embedder
        self.usage = usage
        self.settings = settings or default_settings
        self.splitter = TextSplitter(self.settings.CHUNK_SIZE, self.settings.CHUNK_OVERLAP)
        self.http_client = http_client

    async def authenticate(self, api_key: Optional[str]) -> Tenant:
        if not api_key:
            raise AuthenticationError("Missing or invalid authorization header")
        tenant = await self.tenants.get_by_api_key(api_key)
        if tenant is None:
            raise AuthenticationError("Invalid API key")
        return tenant

    def check_size(self, size: int) -> None:
        if size > self.settings.MAX_UPLOAD_BYTES:
            limit_mb = self.settings.MAX_UPLOAD_BYTES // (1024 * 1024)
            raise ValidationError(f"File size exceeds {limit_mb}MB limit")

    def validate(self, source: Optional[Source]) -> None:
        if source is None:
            raise ValidationError("No file provided")
        if isinstance(source, UrlSource):
            source.url = validate_url(source.url)
            return
        self.check_size(source.size)
        # Either a whitelisted MIME type or extension is enough; client MIME headers are unreliable
        ctype = (source.content_type or "").split(";")[0].strip().lower()
        has_type = ctype in ALLOWED_TYPES
        has_ext = (source.filename or "").lower().endswith(ALLOWED_EXTENSIONS)
        if not (has_type or has_ext):
            raise ValidationError("Unsupported file type. Supported types: PDF, TXT", details=source.content_type)

    async def ingest(self, tenant_id: str, source: Optional[Source]) -> IngestResult:
        self.validate(source)

        if isinstance(source, UrlSource):
            extracted = await extract(source.url, client=self.http_client)
            name = extracted.metadata.get("title") or "URL Content"
            origin = source.url
            endpoint = INGEST_URL_ENDPOINT
        else:
            extracted = await extract(source)
            name = source.filename
            origin = f"upload://{source.filename}"
            endpoint = INGEST_UPLOAD_ENDPOINT

        if not extracted.text.strip():
            raise EmptyContentError("No text content found in the source")

        chunks = list(self.splitter.split(extracted.text))
        if not chunks:
            raise EmptyContentError("No text content found in the source")

        # No rollback: if a later step fails the document stays without sections
        doc = await self.documents.create_document(tenant_id, name, origin)
        logger.info("Created document %s for tenant %s (%d chunks)", doc.id, tenant_id, len(chunks))

        vectors = await self.embedder.embed_batch(chunks)
        rows = [SectionRow(content=c, embedding=v) for c, v in zip(chunks, vectors)]
        count = await self.documents.add_sections(doc.id, tenant_id, rows)
        logger.info("Stored %d sections for document %s", count, doc.id)

        await self.usage.track(tenant_id, endpoint)
        return IngestResult(document_id=doc.id, sections_count=count, name=name, metadata=extracted.metadata)
