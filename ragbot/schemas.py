
import json
from pydantic import AliasChoices, BaseModel, Field
from pydantic import ValidationError as PydanticValidationError
from typing import Any, List, Literal, Optional
from .logging_config import get_logger

logger = get_logger(__name__)

class ErrorResponse(BaseModel):
    error: str
    details: Optional[Any] = None

class IngestResponse(BaseModel):
    success: bool = True
    documentId: int
    sectionsCount: int
    message: str
    fileName: Optional[str] = None
    fileSize: Optional[int] = None
    url: Optional[str] = None
    title: Optional[str] = None

class UrlIngestRequest(BaseModel):
    url: Optional[str] = None

class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str

class ChatRequest(BaseModel):
    id: Optional[str] = None
    messages: List[ChatMessage] = Field(min_length=1)

class WidgetSettings(BaseModel):
    """Canonical widget settings; each field accepts every alias found in stored blobs."""
    color: str = Field("#4F46E5", validation_alias=AliasChoices("primaryColor", "color"))
    position: str = "bottom-right"
    logoUrl: Optional[str] = Field(None, validation_alias=AliasChoices("logo", "logoUrl"))
    buttonText: str = "💬"
    greetingMessage: str = Field(
        "Hello! How can I help you today?",
        validation_alias=AliasChoices("greeting", "greetingMessage"),
    )

def normalize_widget_settings(raw: Any) -> WidgetSettings:
    """Map a stored settings blob (dict or JSON string) onto WidgetSettings."""
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            raw = {}
    if not isinstance(raw, dict):
        return WidgetSettings()
    # Empty values fall through to the next alias or the default
    cleaned = {k: v for k, v in raw.items() if v not in (None, "")}
    try:
        return WidgetSettings.model_validate(cleaned)
    except PydanticValidationError:
        logger.warning("Ignoring malformed widget settings: %s", cleaned)
        return WidgetSettings()

class WidgetConfig(BaseModel):
    tenantId: str
    name: str
    settings: WidgetSettings
