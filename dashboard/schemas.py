from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, model_validator
from typing import Annotated, Optional, List, Dict, Any, Literal, Union
from uuid import UUID
from datetime import datetime

from dashboard.core.errors import FailureKind

# --- 1. Credential & Tenancy Context ---
class CredentialContext(BaseModel):
    """Organization-scoped secrets needed to call the Cloud API. Loaded per call, never cached."""
    model_config = ConfigDict(frozen=True)

    organization_id: Optional[UUID] = None
    access_token: Optional[str] = None
    phone_number_id: Optional[str] = None
    business_account_id: Optional[str] = None
    webhook_verify_token: Optional[str] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.access_token) and bool(self.phone_number_id)

class TenancyContext(BaseModel):
    model_config = ConfigDict(frozen=True)
    organization_id: UUID

# --- 2. Outbound Messages (provider payloads) ---
class TextMessage(BaseModel):
    kind: Literal["text"] = "text"
    to: str
    body: str

    def to_payload(self) -> Dict[str, Any]:
        return {
            "messaging_product": "whatsapp",
            "to": self.to,
            "type": "text",
            "text": {"body": self.body},
        }

class TemplateMessage(BaseModel):
    kind: Literal["template"] = "template"
    to: str
    template_name: str
    language_code: str = "en_US"
    body_parameters: List[str] = []
    cta_url: Optional[str] = None

    def components(self) -> List[Dict[str, Any]]:
        components: List[Dict[str, Any]] = []
        # "no parameters" and "empty parameters" differ on the provider side
        if self.body_parameters:
            components.append({
                "type": "body",
                "parameters": [{"type": "text", "text": value} for value in self.body_parameters],
            })
        if self.cta_url:
            components.append({
                "type": "button",
                "sub_type": "url",
                "index": "0",
                "parameters": [{"type": "text", "text": self.cta_url}],
            })
        return components

    def to_payload(self) -> Dict[str, Any]:
        template: Dict[str, Any] = {
            "name": self.template_name,
            "language": {"code": self.language_code},
        }
        components = self.components()
        if components:
            template["components"] = components
        return {
            "messaging_product": "whatsapp",
            "to": self.to,
            "type": "template",
            "template": template,
        }

MediaType = Literal["image", "video", "document"]

class MediaMessage(BaseModel):
    """Image, video or document, referenced by an uploaded media id or a public link."""
    kind: Literal["media"] = "media"
    to: str
    media_type: MediaType
    media_id: Optional[str] = None
    link: Optional[str] = None
    caption: Optional[str] = None
    filename: Optional[str] = None

    @model_validator(mode="after")
    def exactly_one_source(self):
        if bool(self.media_id) == bool(self.link):
            raise ValueError("a media message needs exactly one of media_id or link")
        return self

    def media_object(self) -> Dict[str, Any]:
        media: Dict[str, Any] = {"id": self.media_id} if self.media_id else {"link": self.link}
        if self.caption:
            media["caption"] = self.caption
        # Meta only honours a filename on documents
        if self.media_type == "document" and self.filename:
            media["filename"] = self.filename
        return media

    def to_payload(self) -> Dict[str, Any]:
        return {
            "messaging_product": "whatsapp",
            "to": self.to,
            "type": self.media_type,
            self.media_type: self.media_object(),
        }

OutboundMessage = Annotated[Union[TextMessage, TemplateMessage, MediaMessage], Field(discriminator="kind")]

# --- 3. Provider Results ---
class SendResult(BaseModel):
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    failure: Optional[FailureKind] = None

    @model_validator(mode="after")
    def exactly_one_outcome(self):
        if self.success and (not self.message_id or self.error):
            raise ValueError("a successful send carries a message_id and no error")
        if not self.success and (self.message_id or not self.error):
            raise ValueError("a failed send carries an error and no message_id")
        return self

    @classmethod
    def sent(cls, message_id: str) -> "SendResult":
        return cls(success=True, message_id=message_id)

    @classmethod
    def failed(cls, error: str, failure: FailureKind) -> "SendResult":
        return cls(success=False, error=error, failure=failure)

class ConnectionResult(BaseModel):
    success: bool
    error: Optional[str] = None
    display_phone_number: Optional[str] = None
    verified_name: Optional[str] = None

class VerificationResult(BaseModel):
    success: bool
    challenge: Optional[str] = None

class MediaUploadResult(BaseModel):
    success: bool
    media_id: Optional[str] = None
    error: Optional[str] = None
    failure: Optional[FailureKind] = None

    @model_validator(mode="after")
    def exactly_one_outcome(self):
        if self.success != bool(self.media_id) or self.success == bool(self.error):
            raise ValueError("an upload carries either a media_id or an error")
        return self

class MediaUrlResult(BaseModel):
    """Meta's short-lived download URL for a media id."""
    success: bool
    url: Optional[str] = None
    mime_type: Optional[str] = None
    file_size: Optional[int] = None
    error: Optional[str] = None
    failure: Optional[FailureKind] = None

    @model_validator(mode="after")
    def exactly_one_outcome(self):
        if self.success != bool(self.url) or self.success == bool(self.error):
            raise ValueError("a media lookup carries either a url or an error")
        return self

# --- 4. Inbound Webhook Events (normalized) ---
class MessageEvent(BaseModel):
    sender: str
    provider_message_id: str
    text: str = ""
    received_at: int  # epoch milliseconds
    phone_number_id: Optional[str] = None

class StatusEvent(BaseModel):
    provider_message_id: str
    status: Literal["sent", "delivered", "read", "failed"]
    occurred_at: int  # epoch milliseconds
    recipient: str
    phone_number_id: Optional[str] = None

class ParsedCallback(BaseModel):
    messages: List[MessageEvent] = []
    statuses: List[StatusEvent] = []

# --- 5. Inbound Webhook Wire Format (entry[].changes[].value) ---
def _none_as_blank(v):
    return "" if v is None else v

def _lenient_int(v):
    try:
        return int(str(v).strip())
    except (TypeError, ValueError):
        return 0

LenientInt = Annotated[int, BeforeValidator(_lenient_int)]
# Meta occasionally sends numeric ids or nulls where strings are documented
LenientStr = Annotated[str, BeforeValidator(_none_as_blank)]

class WireText(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)
    body: LenientStr = ""

class WireMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    sender: LenientStr = Field(default="", alias="from")
    id: LenientStr = ""
    timestamp: LenientInt = 0
    type: Optional[str] = None
    text: Optional[WireText] = None

class WireStatus(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    id: LenientStr = ""
    status: LenientStr = ""
    timestamp: LenientInt = 0
    recipient_id: LenientStr = ""

class WireMetadata(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    display_phone_number: Optional[str] = None
    phone_number_id: Optional[str] = None

# --- 6. Templates ---
class SyncedTemplate(BaseModel):
    name: str
    category: str = "general"
    language: str = "en_US"
    body_text: str = ""
    variable_placeholders: List[str] = []
    provider_template_id: str
    is_approved: bool = True

class SyncResult(BaseModel):
    success: bool
    templates: Optional[List[SyncedTemplate]] = None
    error: Optional[str] = None

class TemplateOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: UUID
    organization_id: UUID
    provider_template_id: Optional[str] = None
    name: str
    category: Optional[str] = None
    language: Optional[str] = None
    body_text: str
    variables: List[str] = []
    status: Literal["pending", "approved", "rejected"]

class TemplateSyncOut(BaseModel):
    success: bool = True
    synced: int
    created: int
    updated: int

# --- 7. API Request / Response Schemas ---
class CredentialsUpdate(BaseModel):
    """Omitted fields keep their stored value."""
    access_token: Optional[str] = None
    phone_number_id: Optional[str] = None
    business_account_id: Optional[str] = None
    webhook_verify_token: Optional[str] = None

class CredentialsOut(BaseModel):
    organization_id: UUID
    access_token: Optional[str] = None  # masked
    phone_number_id: Optional[str] = None
    business_account_id: Optional[str] = None
    webhook_verify_token: Optional[str] = None
    configured: bool

class SendTextRequest(BaseModel):
    to: str
    body: str

class SendTemplateRequest(BaseModel):
    to: str
    template_name: str
    language_code: str = "en_US"
    variables: List[str] = []
    cta_url: Optional[str] = None

class SendMediaRequest(BaseModel):
    """Exactly one of media_id, link or media_data (base64, uploaded first)."""
    to: str
    media_type: MediaType
    media_id: Optional[str] = None
    link: Optional[str] = None
    media_data: Optional[str] = None
    mime_type: Optional[str] = None
    caption: Optional[str] = None
    filename: Optional[str] = None

class BroadcastCreate(BaseModel):
    name: Optional[str] = None
    template_name: str
    language_code: str = "en_US"
    variables: List[str] = []
    cta_url: Optional[str] = None
    recipients: List[str] = Field(min_length=1)

class BroadcastOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: UUID
    organization_id: UUID
    name: Optional[str] = None
    template_name: str
    status: str
    total_sent: int = 0
    total_failed: int = 0
    created_at: Optional[datetime] = None
