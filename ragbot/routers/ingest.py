from typing import Optional

from fastapi import APIRouter, Body, Depends, File, UploadFile

from ..deps import bearer_token, get_ingestion_coordinator
from ..errors import ValidationError
from ..schemas import ErrorResponse, IngestResponse, UrlIngestRequest
from ..services.extract import UploadedFile
from ..services.ingest import IngestionCoordinator, UrlSource

router = APIRouter(
    tags=["ingest"],
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)


@router.post("/ingest/upload", response_model=IngestResponse, response_model_exclude_none=True)
async def ingest_upload(
    file: Optional[UploadFile] = File(None),
    api_key: Optional[str] = Depends(bearer_token),
    coordinator: IngestionCoordinator = Depends(get_ingestion_coordinator),
):
    tenant = await coordinator.authenticate(api_key)
    if file is None:
        raise ValidationError("No file provided")
    # Multipart parsing records the size; reject before reading into memory
    if file.size is not None:
        coordinator.check_size(file.size)

    content = await file.read()
    upload = UploadedFile(
        filename=file.filename or "upload",
        content_type=file.content_type or "",
        content=content,
    )
    result = await coordinator.ingest(tenant.id, upload)
    return IngestResponse(
        documentId=result.document_id,
        sectionsCount=result.sections_count,
        fileName=upload.filename,
        fileSize=upload.size,
        message=f"Successfully ingested {result.sections_count} sections from file",
    )


@router.post("/ingest/url", response_model=IngestResponse, response_model_exclude_none=True)
async def ingest_url(
    body: Optional[UrlIngestRequest] = Body(None),
    api_key: Optional[str] = Depends(bearer_token),
    coordinator: IngestionCoordinator = Depends(get_ingestion_coordinator),
):
    tenant = await coordinator.authenticate(api_key)
    source = UrlSource(url=body.url if body else None)
    result = await coordinator.ingest(tenant.id, source)
    return IngestResponse(
        documentId=result.document_id,
        sectionsCount=result.sections_count,
        url=source.url,
        title=result.metadata.get("title"),
        message=f"Successfully ingested {result.sections_count} sections from URL",
    )
