import logging
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from dashboard.database import get_db
from dashboard.models import Organization
from dashboard.core.security import mask_token
from dashboard.routes.deps import get_current_organization
from dashboard.schemas import CredentialsOut, CredentialsUpdate
from dashboard.service.credentials import apply_credentials_update, credentials_for

logger = logging.getLogger("uvicorn.error")
router = APIRouter(prefix="/api/v1/settings", tags=["Settings"])

def _credentials_out(organization: Organization) -> CredentialsOut:
    credentials = credentials_for(organization)
    return CredentialsOut(
        organization_id=organization.id,
        access_token=mask_token(credentials.access_token),
        phone_number_id=credentials.phone_number_id,
        business_account_id=credentials.business_account_id,
        webhook_verify_token=credentials.webhook_verify_token,
        configured=credentials.is_configured,
    )

@router.get("/whatsapp", response_model=CredentialsOut)
async def get_whatsapp_settings(organization: Organization = Depends(get_current_organization)):
    """Current WhatsApp credentials for the organization; the token is masked."""
    return _credentials_out(organization)

@router.put("/whatsapp", response_model=CredentialsOut)
async def update_whatsapp_settings(
    update: CredentialsUpdate,
    organization: Organization = Depends(get_current_organization),
    db: Session = Depends(get_db)
):
    apply_credentials_update(organization, update)
    try:
        db.commit()
        db.refresh(organization)
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to save WhatsApp settings for {organization.id}: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to save WhatsApp settings")

    logger.info(f"WhatsApp settings updated for organization {organization.id}")
    return _credentials_out(organization)
