import uuid
from typing import Optional

from sqlalchemy.orm import Session

from dashboard.models import Contact, Message


def contact_phone(address: str) -> str:
    """Inbound webhooks report senders without '+', so contacts are keyed the same way."""
    return address.lstrip("+")


def find_or_create_contact(db: Session, organization_id: uuid.UUID, phone_number: str, name: Optional[str] = None) -> Contact:
    contact = db.query(Contact).filter(
        Contact.organization_id == organization_id,
        Contact.phone_number == phone_number
    ).first()
    if not contact:
        contact = Contact(organization_id=organization_id, phone_number=phone_number, name=name)
        db.add(contact)
        db.flush()
    return contact


def record_outbound_message(
    db: Session,
    organization_id: uuid.UUID,
    address: str,
    provider_message_id: str,
    message_type: str,
    body: Optional[str],
    broadcast_id: Optional[uuid.UUID] = None,
) -> Message:
    """Stores an accepted send so later status webhooks have a row to update. The caller commits."""
    contact = find_or_create_contact(db, organization_id, contact_phone(address))
    message = Message(
        organization_id=organization_id,
        contact_id=contact.id,
        broadcast_id=broadcast_id,
        provider_message_id=provider_message_id,
        direction="out",
        message_type=message_type,
        body=body,
        status="sent",
    )
    db.add(message)
    db.flush()
    return message
