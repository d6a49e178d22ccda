import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from dashboard.database import get_db
from dashboard.models import MessageTemplate, Organization
from dashboard.routes.deps import get_current_organization, get_whatsapp_client
from dashboard.schemas import TemplateOut, TemplateSyncOut
from dashboard.service.credentials import load_credentials
from dashboard.service.template_store import mark_template_edited, upsert_synced_templates
from dashboard.whatsapp.client import WhatsAppClient
from dashboard.whatsapp.templates import extract_placeholders, sync_templates

logger = logging.getLogger("uvicorn.error")
router = APIRouter(prefix="/api/v1/templates", tags=["Templates"])

class TemplateEdit(BaseModel):
    body_text: Optional[str] = None
    category: Optional[str] = None
    language: Optional[str] = None

@router.get("", response_model=List[TemplateOut])
async def list_templates(
    organization: Organization = Depends(get_current_organization),
    db: Session = Depends(get_db)
):
    """Fetch all templates for the current organization."""
    return db.query(MessageTemplate).filter(
        MessageTemplate.organization_id == organization.id
    ).order_by(MessageTemplate.name).all()

@router.post("/sync", response_model=TemplateSyncOut)
async def sync_from_business_manager(
    organization: Organization = Depends(get_current_organization),
    db: Session = Depends(get_db),
    client: WhatsAppClient = Depends(get_whatsapp_client)
):
    """
    Pulls approved templates from Meta Business Manager and upserts them locally.
    Nothing is written unless the whole fetch succeeded.
    """
    credentials = load_credentials(db, organization.id)
    if not credentials.is_configured:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Phone Number ID and Access Token are required before syncing templates"
        )

    result = await sync_templates(client, credentials)
    if not result.success:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"Template sync failed: {result.error}")

    try:
        counts = upsert_synced_templates(db, organization.id, result.templates)
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Database error saving synced templates: {e}")
        raise HTTPException(status_code=500, detail="Failed to save synced templates")

    logger.info(f"Template sync for {organization.id}: {counts.created} created, {counts.updated} updated")
    return TemplateSyncOut(synced=len(result.templates), created=counts.created, updated=counts.updated)

@router.patch("/{template_id}", response_model=TemplateOut)
async def edit_template(
    template_id: UUID,
    edit: TemplateEdit,
    organization: Organization = Depends(get_current_organization),
    db: Session = Depends(get_db)
):
    """Local edits send the template back to review."""
    template = db.query(MessageTemplate).filter(
        MessageTemplate.id == template_id,
        MessageTemplate.organization_id == organization.id
    ).first()
    if not template:
        raise HTTPException(status_code=404, detail="Template not found")

    changes = edit.model_dump(exclude_unset=True, exclude_none=True)
    if "body_text" in changes:
        template.body_text = changes["body_text"]
        template.variables = extract_placeholders(changes["body_text"])
    if "category" in changes:
        template.category = changes["category"]
    if "language" in changes:
        template.language = changes["language"]
    if changes:
        mark_template_edited(template)

    db.commit()
    db.refresh(template)
    return template
