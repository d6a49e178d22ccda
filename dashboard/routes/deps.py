from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from dashboard.database import get_db
from dashboard.middleware.tenancy import require_tenancy
from dashboard.models import Organization
from dashboard.schemas import TenancyContext
from dashboard.whatsapp.client import WhatsAppClient


def get_whatsapp_client(request: Request) -> WhatsAppClient:
    """The process-wide client built in the app lifespan (see main.create_app)."""
    return request.app.state.whatsapp_client


def get_current_organization(
    tenancy: TenancyContext = Depends(require_tenancy),
    db: Session = Depends(get_db)
) -> Organization:
    organization = db.query(Organization).filter(Organization.id == tenancy.organization_id).first()
    if not organization:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Organization not found")
    return organization
