import logging
import re
from typing import Any, Dict, List, Optional

import httpx

from dashboard.core.errors import CREDENTIALS_NOT_CONFIGURED, ProviderError
from dashboard.schemas import CredentialContext, SyncedTemplate, SyncResult
from dashboard.whatsapp.client import WhatsAppClient

logger = logging.getLogger("uvicorn.error")

_PLACEHOLDER = re.compile(r"\{\{(\d+)\}\}")


def extract_placeholders(body_text: Optional[str]) -> List[str]:
    """Positional slots in order of appearance; a repeated {{1}} is two slots."""
    return _PLACEHOLDER.findall(body_text or "")


def _body_text(template: Dict[str, Any]) -> str:
    for component in template.get("components") or []:
        if isinstance(component, dict) and str(component.get("type", "")).upper() == "BODY":
            return component.get("text") or ""
    return ""


def to_synced_template(template: Dict[str, Any]) -> SyncedTemplate:
    body_text = _body_text(template)
    return SyncedTemplate(
        name=template.get("name") or "",
        category=template.get("category") or "general",
        language=template.get("language") or "en_US",
        body_text=body_text,
        variable_placeholders=extract_placeholders(body_text),
        provider_template_id=str(template.get("id") or ""),
        is_approved=True,
    )


async def sync_templates(client: WhatsAppClient, credentials: CredentialContext) -> SyncResult:
    """
    Pulls APPROVED templates from Business Manager. All-or-nothing: any failed
    lookup or fetch returns an error and no templates.
    """
    if not credentials.is_configured:
        return SyncResult(success=False, error=CREDENTIALS_NOT_CONFIGURED)

    try:
        business_account_id = credentials.business_account_id
        if not business_account_id:
            business_account_id = await client.fetch_business_account_id(credentials)

        logger.info(f"Fetching templates from WABA {business_account_id}")
        raw_templates = await client.fetch_message_templates(credentials, business_account_id)
    except ProviderError as exc:
        logger.error(f"Template sync failed: {exc}")
        return SyncResult(success=False, error=str(exc))
    except httpx.HTTPError as exc:
        logger.error(f"Template sync network error: {exc!r}")
        return SyncResult(success=False, error=str(exc) or "Network error")

    approved = [
        to_synced_template(template)
        for template in raw_templates
        if isinstance(template, dict) and template.get("status") == "APPROVED"
    ]
    logger.info(f"Found {len(approved)} approved templates out of {len(raw_templates)}")
    return SyncResult(success=True, templates=approved)
