import logging
import uuid
from datetime import datetime, timezone
from typing import Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from dashboard.database import SessionLocal
from dashboard.models import Message, Organization, WebhookLog
from dashboard.schemas import MessageEvent, ParsedCallback, StatusEvent
from dashboard.service.messages import find_or_create_contact

logger = logging.getLogger("uvicorn.error")

# 'failed' can land at any point; the rest only move forward
STATUS_RANK = {"sent": 1, "delivered": 2, "read": 3}


def _from_millis(millis: int) -> datetime:
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)


def should_apply_status(current: Optional[str], new: str) -> bool:
    if new == "failed":
        return current != "failed"
    return STATUS_RANK.get(new, 0) > STATUS_RANK.get(current, 0)


class _OrganizationLookup:
    """Maps phone_number_id to an organization for the lifetime of one callback."""

    def __init__(self, db: Session, organization_id: Optional[uuid.UUID]):
        self.db = db
        self.organization_id = organization_id
        self._by_phone: Dict[str, Optional[Organization]] = {}

    def resolve(self, phone_number_id: Optional[str]) -> Optional[Organization]:
        if self.organization_id:
            return self.db.query(Organization).filter(Organization.id == self.organization_id).first()
        if not phone_number_id:
            return None
        if phone_number_id not in self._by_phone:
            self._by_phone[phone_number_id] = self.db.query(Organization).filter(
                Organization.whatsapp_phone_number_id == phone_number_id
            ).first()
        return self._by_phone[phone_number_id]


def store_inbound_message(db: Session, organization: Organization, event: MessageEvent) -> Optional[Message]:
    # Meta retries deliveries, so the provider id is the idempotency key
    existing = db.query(Message).filter(Message.provider_message_id == event.provider_message_id).first()
    if existing:
        logger.info(f"Duplicate message ignored: {event.provider_message_id}")
        return None

    contact = find_or_create_contact(db, organization.id, event.sender, name="New Contact")

    message = Message(
        organization_id=organization.id,
        contact_id=contact.id,
        direction="in",
        status="received",
        body=event.text,
        provider_message_id=event.provider_message_id,
        timestamp=_from_millis(event.received_at),
    )
    db.add(message)
    db.flush()
    return message


def apply_status_event(db: Session, event: StatusEvent) -> bool:
    message = db.query(Message).filter(Message.provider_message_id == event.provider_message_id).first()
    if not message:
        return False
    if not should_apply_status(message.status, event.status):
        logger.info(f"Skipping stale status '{event.status}' for {event.provider_message_id} (currently '{message.status}')")
        return False
    message.status = event.status
    message.status_updated_at = _from_millis(event.occurred_at)
    return True


def process_webhook_events(parsed: ParsedCallback, payload: dict, organization_id: Optional[uuid.UUID] = None):
    """
    Background Task: persists a parsed callback.
    Uses its own SessionLocal since the request session is closed by now.
    """
    db = SessionLocal()
    try:
        db.add(WebhookLog(payload=payload, organization_id=organization_id))
        organizations = _OrganizationLookup(db, organization_id)

        for event in parsed.messages:
            organization = organizations.resolve(event.phone_number_id)
            if not organization:
                logger.warning(f"No organization for phone_number_id {event.phone_number_id}; message {event.provider_message_id} dropped")
                continue
            try:
                with db.begin_nested():
                    store_inbound_message(db, organization, event)
            except SQLAlchemyError as e:
                logger.error(f"Failed to store inbound message {event.provider_message_id}: {e}")

        for event in parsed.statuses:
            try:
                with db.begin_nested():
                    apply_status_event(db, event)
            except SQLAlchemyError as e:
                logger.error(f"Failed to apply status '{event.status}' to {event.provider_message_id}: {e}")

        db.commit()
    except Exception:
        db.rollback()
        logger.exception("Webhook background task failed")
    finally:
        db.close()
