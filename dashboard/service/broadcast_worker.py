import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, List, NamedTuple, Optional, Sequence, Set

import httpx
from sqlalchemy.orm import Session

from dashboard.core.celery_app import celery_app
from dashboard.core.config import settings
from dashboard.core.errors import ValidationFailure
from dashboard.database import SessionLocal
from dashboard.models import Broadcast, Contact, Message
from dashboard.schemas import CredentialContext, SendResult
from dashboard.service.credentials import load_credentials
from dashboard.service.messages import record_outbound_message
from dashboard.whatsapp.builder import build_template_message
from dashboard.whatsapp.client import WhatsAppClient

logger = logging.getLogger("celery.worker")


class RecipientOutcome(NamedTuple):
    recipient: str
    address: Optional[str]
    result: SendResult


def _phone_key(recipient: str) -> Optional[str]:
    digits = "".join(ch for ch in recipient if ch.isdigit())
    return digits or None


async def deliver_broadcast(
    client: WhatsAppClient,
    credentials_provider: Callable[[], Optional[CredentialContext]],
    recipients: Sequence[str],
    template_name: str,
    language_code: str = "en_US",
    variables: Sequence[str] = (),
    cta_url: Optional[str] = None,
    on_outcome: Optional[Callable[[RecipientOutcome], None]] = None,
) -> List[RecipientOutcome]:
    """
    Sends one template to each recipient in turn. A failure for one recipient
    never stops the batch. Credentials are re-read before every send.
    """
    outcomes = []
    for recipient in recipients:
        try:
            message = build_template_message(recipient, template_name, language_code, variables, cta_url)
        except ValidationFailure as exc:
            outcome = RecipientOutcome(recipient, None, SendResult(success=False, error=str(exc)))
        else:
            credentials = credentials_provider() or CredentialContext()
            result = await client.send_message(credentials, message)
            outcome = RecipientOutcome(recipient, message.to, result)

        if not outcome.result.success:
            logger.info(f"Broadcast send to {recipient} failed: {outcome.result.error}")
        outcomes.append(outcome)
        if on_outcome:
            on_outcome(outcome)
    return outcomes


def _already_sent(db: Session, broadcast: Broadcast) -> Set[str]:
    rows = db.query(Contact.phone_number).join(Message, Message.contact_id == Contact.id).filter(
        Message.broadcast_id == broadcast.id
    ).all()
    return {row[0] for row in rows}


def _record_sent(db: Session, broadcast: Broadcast, outcome: RecipientOutcome) -> None:
    record_outbound_message(
        db,
        broadcast.organization_id,
        outcome.address,
        outcome.result.message_id,
        "template",
        broadcast.template_name,
        broadcast_id=broadcast.id,
    )
    db.commit()


def build_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=settings.META_HTTP_TIMEOUT)


async def _run_broadcast(db: Session, broadcast: Broadcast, recipients: Sequence[str], on_outcome) -> List[RecipientOutcome]:
    organization_id = broadcast.organization_id
    async with build_http_client() as http_client:
        client = WhatsAppClient(http_client)
        return await deliver_broadcast(
            client,
            lambda: load_credentials(db, organization_id),
            recipients,
            broadcast.template_name,
            broadcast.language_code or "en_US",
            broadcast.variables or [],
            broadcast.cta_url,
            on_outcome=on_outcome,
        )


@celery_app.task(name="send_broadcast_task", bind=True, max_retries=3)
def send_broadcast_task(self, broadcast_id: str, organization_id: str):
    db: Session = SessionLocal()
    broadcast = None

    try:
        broadcast = db.query(Broadcast).filter(
            Broadcast.id == uuid.UUID(broadcast_id),
            Broadcast.organization_id == uuid.UUID(organization_id)
        ).first()
        if not broadcast:
            return "FAILURE: Missing Entities"

        broadcast.status = "running"
        broadcast.started_at = datetime.now(timezone.utc)
        db.commit()

        # A retried task must not message anyone twice
        done = _already_sent(db, broadcast)
        pending = [r for r in broadcast.recipients if _phone_key(r) not in done]
        failed_count = 0

        def on_outcome(outcome: RecipientOutcome):
            nonlocal failed_count
            if outcome.result.success:
                _record_sent(db, broadcast, outcome)
            else:
                failed_count += 1

        asyncio.run(_run_broadcast(db, broadcast, pending, on_outcome))

        broadcast.total_sent = len(_already_sent(db, broadcast))
        broadcast.total_failed = failed_count
        broadcast.status = "completed"
        broadcast.completed_at = datetime.now(timezone.utc)
        db.commit()
        return f"SUCCESS: {broadcast.total_sent} sent."

    except Exception as exc:
        db.rollback()
        if broadcast:
            broadcast.status = "error"
            db.commit()
        raise self.retry(exc=exc, countdown=60)
    finally:
        db.close()
