import json
import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Request, Depends, HTTPException, status, BackgroundTasks
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from dashboard.database import get_db
from dashboard.models import Organization
from dashboard.core.config import settings
from dashboard.service.webhook_processor import process_webhook_events
from dashboard.whatsapp.webhook import parse_callback, verify_signature, verify_subscription

# Public: Meta never sends an organization header, so tenancy middleware lets these through
logger = logging.getLogger("uvicorn.error")
router = APIRouter(prefix="/api/webhooks/whatsapp", tags=["Meta Webhooks"])

def _organization_or_404(db: Session, organization_id: uuid.UUID) -> Organization:
    organization = db.query(Organization).filter(Organization.id == organization_id).first()
    if not organization:
        raise HTTPException(status_code=404, detail="Organization not found")
    return organization

def _handshake(request: Request, expected_token: Optional[str]) -> PlainTextResponse:
    params = request.query_params
    result = verify_subscription(
        params.get("hub.mode"),
        params.get("hub.verify_token"),
        params.get("hub.challenge"),
        expected_token,
    )
    if not result.success:
        logger.warning(f"Webhook verification failed from {request.client.host if request.client else 'unknown'}")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Verification failed")
    # Meta compares the echoed challenge byte for byte
    return PlainTextResponse(result.challenge or "")

async def _accept_events(request: Request, background_tasks: BackgroundTasks, organization_id: Optional[uuid.UUID] = None):
    body = await request.body()

    if settings.META_CLIENT_SECRET:
        signature = request.headers.get("X-Hub-Signature-256", "")
        if not verify_signature(body, signature, settings.META_CLIENT_SECRET):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")

    try:
        payload = json.loads(body)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Body is not valid JSON")

    parsed = parse_callback(payload)
    logger.info(f"Webhook received: {len(parsed.messages)} messages, {len(parsed.statuses)} statuses")

    # Respond to Meta immediately to prevent timeouts
    background_tasks.add_task(process_webhook_events, parsed, payload, organization_id)
    return {"status": "success", "messages": len(parsed.messages), "statuses": len(parsed.statuses)}

# 1. WEBHOOK VERIFICATION (GET HANDSHAKE)
@router.get("")
async def verify_meta_webhook(request: Request):
    return _handshake(request, settings.META_WEBHOOK_VERIFY_TOKEN)

@router.get("/{organization_id}")
async def verify_organization_webhook(organization_id: uuid.UUID, request: Request, db: Session = Depends(get_db)):
    organization = _organization_or_404(db, organization_id)
    return _handshake(request, organization.whatsapp_webhook_verify_token)

# 2. WEBHOOK LISTENER (POST PAYLOADS)
@router.post("")
async def handle_whatsapp_webhook(request: Request, background_tasks: BackgroundTasks):
    return await _accept_events(request, background_tasks)

@router.post("/{organization_id}")
async def handle_organization_webhook(
    organization_id: uuid.UUID,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db)
):
    _organization_or_404(db, organization_id)
    return await _accept_events(request, background_tasks, organization_id)
