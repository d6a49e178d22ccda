import uuid
from typing import Iterable, NamedTuple

from sqlalchemy.orm import Session

from dashboard.models import MessageTemplate
from dashboard.schemas import SyncedTemplate


class SyncCounts(NamedTuple):
    created: int
    updated: int


def upsert_synced_templates(db: Session, organization_id: uuid.UUID, templates: Iterable[SyncedTemplate]) -> SyncCounts:
    """Upserts on (organization, provider template id). The caller commits."""
    created = 0
    updated = 0
    for synced in templates:
        record = db.query(MessageTemplate).filter(
            MessageTemplate.organization_id == organization_id,
            MessageTemplate.provider_template_id == synced.provider_template_id
        ).first()

        if record:
            updated += 1
        else:
            record = MessageTemplate(organization_id=organization_id, provider_template_id=synced.provider_template_id)
            db.add(record)
            created += 1

        record.name = synced.name
        record.category = synced.category
        record.language = synced.language
        record.body_text = synced.body_text
        record.variables = list(synced.variable_placeholders)
        record.status = "approved" if synced.is_approved else "pending"

    db.flush()
    return SyncCounts(created=created, updated=updated)


def mark_template_edited(template: MessageTemplate) -> None:
    """Any local edit needs a fresh review on Meta's side."""
    template.status = "pending"
