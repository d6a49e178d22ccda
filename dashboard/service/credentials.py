import uuid
from typing import Optional

from sqlalchemy.orm import Session

from dashboard.core.security import decrypt_token, encrypt_token
from dashboard.models import Organization
from dashboard.schemas import CredentialContext, CredentialsUpdate


def credentials_for(organization: Organization) -> CredentialContext:
    """Builds the Credential Context from the row as it is right now."""
    return CredentialContext(
        organization_id=organization.id,
        access_token=decrypt_token(organization.whatsapp_access_token),
        phone_number_id=organization.whatsapp_phone_number_id,
        business_account_id=organization.whatsapp_business_account_id,
        webhook_verify_token=organization.whatsapp_webhook_verify_token,
    )


def load_credentials(db: Session, organization_id: uuid.UUID) -> Optional[CredentialContext]:
    """
    Re-reads the organization on every call. Tokens can be rotated at any
    time through the settings endpoint, so nothing here is cached.
    """
    organization = db.query(Organization).filter(Organization.id == organization_id).first()
    if not organization:
        return None
    db.refresh(organization)
    return credentials_for(organization)


def apply_credentials_update(organization: Organization, update: CredentialsUpdate) -> None:
    changes = update.model_dump(exclude_unset=True)
    if "access_token" in changes:
        organization.whatsapp_access_token = encrypt_token(changes["access_token"])
    if "phone_number_id" in changes:
        organization.whatsapp_phone_number_id = changes["phone_number_id"] or None
    if "business_account_id" in changes:
        organization.whatsapp_business_account_id = changes["business_account_id"] or None
    if "webhook_verify_token" in changes:
        organization.whatsapp_webhook_verify_token = changes["webhook_verify_token"] or None
