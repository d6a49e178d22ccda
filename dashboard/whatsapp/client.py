import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx

from dashboard.core.config import settings
from dashboard.core.errors import CREDENTIALS_NOT_CONFIGURED, FailureKind, ProviderError
from dashboard.schemas import (
    ConnectionResult,
    CredentialContext,
    MediaUploadResult,
    MediaUrlResult,
    OutboundMessage,
    SendResult,
)
from dashboard.whatsapp.builder import build_media_message, build_template_message, build_text_message

logger = logging.getLogger("uvicorn.error")


def _json_or_empty(response: httpx.Response) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _provider_error_message(data: Dict[str, Any]) -> Optional[str]:
    error = data.get("error")
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return None


def _first_message_id(data: Dict[str, Any]) -> Optional[str]:
    messages = data.get("messages")
    if isinstance(messages, list) and messages and isinstance(messages[0], dict):
        message_id = messages[0].get("id")
        if message_id:
            return str(message_id)
    return None


class WhatsAppClient:
    """
    Transport for the WhatsApp Cloud API.

    Credentials are passed on every call and never stored on the client, so a
    token rotated in settings takes effect on the very next request. The
    underlying httpx.AsyncClient is injected; one attempt is made per call.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.http_client = http_client
        self.base_url = (base_url or settings.graph_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.META_HTTP_TIMEOUT

    @staticmethod
    def _auth_headers(credentials: CredentialContext) -> Dict[str, str]:
        return {"Authorization": f"Bearer {credentials.access_token}"}

    # --- Sending ---

    async def send_message(self, credentials: CredentialContext, message: OutboundMessage) -> SendResult:
        if not credentials.is_configured:
            return SendResult.failed(CREDENTIALS_NOT_CONFIGURED, FailureKind.CONFIGURATION_MISSING)

        url = f"{self.base_url}/{credentials.phone_number_id}/messages"
        try:
            response = await self.http_client.post(
                url,
                json=message.to_payload(),
                headers=self._auth_headers(credentials),
                timeout=self.timeout,
            )
        except httpx.HTTPError as exc:
            logger.error(f"WhatsApp network error for phone {credentials.phone_number_id}: {exc!r}")
            return SendResult.failed(str(exc) or "Network error", FailureKind.NETWORK_FAILURE)

        data = _json_or_empty(response)
        message_id = _first_message_id(data)
        if response.is_success and message_id:
            logger.info(f"WhatsApp {message.kind} message sent: {message_id}")
            return SendResult.sent(message_id)

        error = _provider_error_message(data) or f"HTTP {response.status_code}: {response.reason_phrase}"
        logger.warning(f"WhatsApp API rejected {message.kind} message: {error}")
        return SendResult.failed(error, FailureKind.PROVIDER_REJECTED)

    async def send_text(self, credentials: CredentialContext, to: str, body: str) -> SendResult:
        return await self.send_message(credentials, build_text_message(to, body))

    async def send_template(
        self,
        credentials: CredentialContext,
        to: str,
        template_name: str,
        language_code: str = "en_US",
        variables: Sequence[str] = (),
        cta_url: Optional[str] = None,
    ) -> SendResult:
        message = build_template_message(to, template_name, language_code, variables, cta_url)
        return await self.send_message(credentials, message)

    async def send_media(
        self,
        credentials: CredentialContext,
        to: str,
        media_type: str,
        media_id: Optional[str] = None,
        link: Optional[str] = None,
        caption: Optional[str] = None,
        filename: Optional[str] = None,
    ) -> SendResult:
        message = build_media_message(to, media_type, media_id, link, caption, filename)
        return await self.send_message(credentials, message)

    # --- Media ---

    async def upload_media(
        self,
        credentials: CredentialContext,
        content: bytes,
        mime_type: str,
        filename: Optional[str] = None,
    ) -> MediaUploadResult:
        """Multipart upload to /{phone_number_id}/media; the returned id is valid for 30 days."""
        if not credentials.is_configured:
            return MediaUploadResult(success=False, error=CREDENTIALS_NOT_CONFIGURED, failure=FailureKind.CONFIGURATION_MISSING)

        try:
            response = await self.http_client.post(
                f"{self.base_url}/{credentials.phone_number_id}/media",
                data={"messaging_product": "whatsapp", "type": mime_type},
                files={"file": (filename or "media", content, mime_type)},
                headers=self._auth_headers(credentials),
                timeout=self.timeout,
            )
        except httpx.HTTPError as exc:
            logger.error(f"WhatsApp media upload network error: {exc!r}")
            return MediaUploadResult(success=False, error=str(exc) or "Network error", failure=FailureKind.NETWORK_FAILURE)

        data = _json_or_empty(response)
        media_id = data.get("id")
        if response.is_success and media_id:
            logger.info(f"WhatsApp media uploaded: {media_id} ({mime_type}, {len(content)} bytes)")
            return MediaUploadResult(success=True, media_id=str(media_id))

        error = _provider_error_message(data) or "Media upload failed"
        logger.warning(f"WhatsApp API rejected media upload: {error}")
        return MediaUploadResult(success=False, error=error, failure=FailureKind.PROVIDER_REJECTED)

    async def get_media_url(self, credentials: CredentialContext, media_id: str) -> MediaUrlResult:
        if not credentials.is_configured:
            return MediaUrlResult(success=False, error=CREDENTIALS_NOT_CONFIGURED, failure=FailureKind.CONFIGURATION_MISSING)

        try:
            response = await self.http_client.get(
                f"{self.base_url}/{media_id}",
                headers=self._auth_headers(credentials),
                timeout=self.timeout,
            )
        except httpx.HTTPError as exc:
            return MediaUrlResult(success=False, error=str(exc) or "Network error", failure=FailureKind.NETWORK_FAILURE)

        data = _json_or_empty(response)
        if response.is_success and data.get("url"):
            return MediaUrlResult(
                success=True,
                url=data["url"],
                mime_type=data.get("mime_type"),
                file_size=data.get("file_size"),
            )
        return MediaUrlResult(
            success=False,
            error=_provider_error_message(data) or "Media download failed",
            failure=FailureKind.PROVIDER_REJECTED,
        )

    # --- Account reads ---

    async def test_connection(self, credentials: CredentialContext) -> ConnectionResult:
        if not credentials.is_configured:
            return ConnectionResult(success=False, error=CREDENTIALS_NOT_CONFIGURED)

        try:
            response = await self.http_client.get(
                f"{self.base_url}/{credentials.phone_number_id}",
                params={"fields": "id,display_phone_number,verified_name"},
                headers=self._auth_headers(credentials),
                timeout=self.timeout,
            )
        except httpx.HTTPError as exc:
            return ConnectionResult(success=False, error=str(exc) or "Network error")

        data = _json_or_empty(response)
        if not response.is_success or "error" in data:
            return ConnectionResult(
                success=False,
                error=_provider_error_message(data) or "WhatsApp API connection failed",
            )
        return ConnectionResult(
            success=True,
            display_phone_number=data.get("display_phone_number"),
            verified_name=data.get("verified_name"),
        )

    async def _get_json(self, credentials: CredentialContext, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        response = await self.http_client.get(
            f"{self.base_url}/{path}",
            params=params,
            headers=self._auth_headers(credentials),
            timeout=self.timeout,
        )
        data = _json_or_empty(response)
        if not response.is_success:
            raise ProviderError(
                _provider_error_message(data) or f"HTTP {response.status_code}: {response.reason_phrase}",
                status_code=response.status_code,
            )
        return data

    async def fetch_business_account_id(self, credentials: CredentialContext) -> str:
        """The template listing is keyed by business account, not by phone number."""
        data = await self._get_json(
            credentials,
            credentials.phone_number_id,
            {"fields": "id,whatsapp_business_account_id,display_phone_number"},
        )
        business_account_id = data.get("whatsapp_business_account_id")
        if not business_account_id:
            raise ProviderError("Could not find WhatsApp Business Account ID for this phone number")
        return str(business_account_id)

    async def fetch_message_templates(self, credentials: CredentialContext, business_account_id: str) -> List[Dict[str, Any]]:
        data = await self._get_json(
            credentials,
            f"{business_account_id}/message_templates",
            {"limit": 100, "fields": "id,name,status,category,language,components"},
        )
        templates = data.get("data")
        if not isinstance(templates, list):
            raise ProviderError("Invalid response from WhatsApp API: missing template list")
        return templates
