import base64
import binascii
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from dashboard.core.errors import FailureKind, ValidationFailure
from dashboard.database import get_db
from dashboard.models import Organization
from dashboard.routes.deps import get_current_organization, get_whatsapp_client
from dashboard.schemas import (
    ConnectionResult,
    MediaUrlResult,
    OutboundMessage,
    SendMediaRequest,
    SendResult,
    SendTemplateRequest,
    SendTextRequest,
)
from dashboard.service.credentials import load_credentials
from dashboard.service.messages import record_outbound_message
from dashboard.whatsapp.builder import build_media_message, build_template_message, build_text_message
from dashboard.whatsapp.client import WhatsAppClient

logger = logging.getLogger("uvicorn.error")
router = APIRouter(prefix="/api/v1/whatsapp", tags=["WhatsApp"])

def _raise_for_failure(error: str, failure: Optional[FailureKind]):
    if failure == FailureKind.CONFIGURATION_MISSING:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=error)
    raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"WhatsApp API Error: {error}")

async def _send(
    db: Session,
    organization: Organization,
    client: WhatsAppClient,
    message: OutboundMessage,
    body: str
) -> SendResult:
    credentials = load_credentials(db, organization.id)
    result = await client.send_message(credentials, message)

    if not result.success:
        _raise_for_failure(result.error, result.failure)

    try:
        record_outbound_message(db, organization.id, message.to, result.message_id, message.kind, body)
        db.commit()
    except Exception as e:
        # The message is already out; losing the local copy must not turn it into an error
        db.rollback()
        logger.error(f"Failed to record outbound message {result.message_id}: {e}")
    return result

@router.post("/test-connection", response_model=ConnectionResult)
async def test_connection(
    organization: Organization = Depends(get_current_organization),
    db: Session = Depends(get_db),
    client: WhatsAppClient = Depends(get_whatsapp_client)
):
    """Checks that the stored token / phone number ID pair is accepted by Meta."""
    return await client.test_connection(load_credentials(db, organization.id))

@router.post("/messages/text", response_model=SendResult)
async def send_text_message(
    request: SendTextRequest,
    organization: Organization = Depends(get_current_organization),
    db: Session = Depends(get_db),
    client: WhatsAppClient = Depends(get_whatsapp_client)
):
    try:
        message = build_text_message(request.to, request.body)
    except ValidationFailure as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return await _send(db, organization, client, message, request.body)

@router.post("/messages/template", response_model=SendResult)
async def send_template_message(
    request: SendTemplateRequest,
    organization: Organization = Depends(get_current_organization),
    db: Session = Depends(get_db),
    client: WhatsAppClient = Depends(get_whatsapp_client)
):
    try:
        message = build_template_message(
            request.to,
            request.template_name,
            request.language_code,
            request.variables,
            request.cta_url
        )
    except ValidationFailure as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return await _send(db, organization, client, message, message.template_name)

@router.post("/messages/media", response_model=SendResult)
async def send_media_message(
    request: SendMediaRequest,
    organization: Organization = Depends(get_current_organization),
    db: Session = Depends(get_db),
    client: WhatsAppClient = Depends(get_whatsapp_client)
):
    """
    Sends an image, video or document. Raw media_data is uploaded to Meta
    first and the resulting media id is sent.
    """
    media_id = request.media_id
    if request.media_data:
        if media_id or request.link:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Send media_data, media_id or link, not several")
        if not request.mime_type:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="mime_type is required with media_data")
        try:
            content = base64.b64decode(request.media_data, validate=True)
        except (binascii.Error, ValueError):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="media_data is not valid base64")

        upload = await client.upload_media(load_credentials(db, organization.id), content, request.mime_type, request.filename)
        if not upload.success:
            _raise_for_failure(upload.error, upload.failure)
        media_id = upload.media_id

    try:
        message = build_media_message(
            request.to,
            request.media_type,
            media_id,
            request.link,
            request.caption,
            request.filename
        )
    except ValidationFailure as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return await _send(db, organization, client, message, request.caption or f"{request.media_type} message")

@router.get("/media/{media_id}", response_model=MediaUrlResult)
async def read_media_url(
    media_id: str,
    organization: Organization = Depends(get_current_organization),
    db: Session = Depends(get_db),
    client: WhatsAppClient = Depends(get_whatsapp_client)
):
    """Resolves a media id (e.g. from an inbound message) to Meta's download URL."""
    result = await client.get_media_url(load_credentials(db, organization.id), media_id)
    if not result.success:
        _raise_for_failure(result.error, result.failure)
    return result
