import logging
from typing import List
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from dashboard.database import get_db
from dashboard.models import Broadcast, Organization
from dashboard.routes.deps import get_current_organization
from dashboard.schemas import BroadcastCreate, BroadcastOut
from dashboard.service.broadcast_worker import send_broadcast_task

logger = logging.getLogger("uvicorn.error")
router = APIRouter(prefix="/api/v1/broadcasts", tags=["Broadcasts"])

@router.post("", response_model=BroadcastOut)
async def create_broadcast(
    broadcast_in: BroadcastCreate,
    organization: Organization = Depends(get_current_organization),
    db: Session = Depends(get_db)
):
    """
    Stores the broadcast and hands delivery to the Celery/Redis queue.
    Per-recipient failures are counted by the worker; they never abort the batch.
    """
    broadcast = Broadcast(
        organization_id=organization.id,
        name=broadcast_in.name,
        template_name=broadcast_in.template_name,
        language_code=broadcast_in.language_code,
        variables=broadcast_in.variables,
        cta_url=broadcast_in.cta_url,
        recipients=broadcast_in.recipients,
        status="queued"
    )
    db.add(broadcast)
    db.commit()
    db.refresh(broadcast)

    # Passing strings for UUIDs for JSON serialization
    send_broadcast_task.delay(str(broadcast.id), str(organization.id))
    logger.info(f"Broadcast {broadcast.id} queued for {len(broadcast_in.recipients)} recipients")
    return broadcast

@router.get("", response_model=List[BroadcastOut])
async def list_broadcasts(
    organization: Organization = Depends(get_current_organization),
    db: Session = Depends(get_db)
):
    """Fetch all broadcasts for the current organization."""
    return db.query(Broadcast).filter(
        Broadcast.organization_id == organization.id
    ).order_by(Broadcast.created_at.desc()).all()
