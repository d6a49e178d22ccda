"""
Outbound message construction for the WhatsApp Cloud API.

Pure functions: nothing here touches the network. The transport in
dashboard.whatsapp.client sends whatever these return.
"""
import re
from typing import Optional, Sequence

from dashboard.core.errors import EmptyContentError, InvalidAddressError, ValidationFailure
from dashboard.schemas import MediaMessage, TemplateMessage, TextMessage

MIN_PHONE_DIGITS = 8

_NON_DIGIT = re.compile(r"\D")
_TEMPLATE_NAME_INVALID = re.compile(r"[^a-z0-9_]")

MEDIA_TYPES = ("image", "video", "document")


def normalize_phone(to: str) -> str:
    """
    Strips everything except digits and a leading '+'.
    "+1 (234) 567-8900" -> "+12345678900"
    """
    raw = (to or "").strip()
    prefix = "+" if raw.startswith("+") else ""
    digits = _NON_DIGIT.sub("", raw)
    if len(digits) < MIN_PHONE_DIGITS:
        raise InvalidAddressError(f"Invalid phone number: {to!r}")
    return prefix + digits


def normalize_template_name(name: str) -> str:
    """Meta only accepts lowercase letters, digits and underscores in template names."""
    return _TEMPLATE_NAME_INVALID.sub("_", (name or "").lower())


def build_text_message(to: str, body: str) -> TextMessage:
    address = normalize_phone(to)
    if not body or not body.strip():
        raise EmptyContentError("Message body cannot be empty")
    return TextMessage(to=address, body=body)


def build_template_message(
    to: str,
    template_name: str,
    language_code: str = "en_US",
    variables: Sequence[str] = (),
    cta_url: Optional[str] = None,
) -> TemplateMessage:
    address = normalize_phone(to)
    name = normalize_template_name(template_name)
    if not name:
        raise EmptyContentError("Template name cannot be empty")
    return TemplateMessage(
        to=address,
        template_name=name,
        language_code=language_code or "en_US",
        body_parameters=[str(value) for value in variables],
        cta_url=cta_url or None,
    )


def build_media_message(
    to: str,
    media_type: str,
    media_id: Optional[str] = None,
    link: Optional[str] = None,
    caption: Optional[str] = None,
    filename: Optional[str] = None,
) -> MediaMessage:
    address = normalize_phone(to)
    if media_type not in MEDIA_TYPES:
        raise ValidationFailure(f"Unsupported media type: {media_type!r}")
    if bool(media_id) == bool(link):
        raise EmptyContentError("Exactly one of media_id or link is required")
    return MediaMessage(
        to=address,
        media_type=media_type,
        media_id=media_id or None,
        link=link or None,
        caption=caption or None,
        filename=filename or None,
    )
