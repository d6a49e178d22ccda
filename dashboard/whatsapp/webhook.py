import hashlib
import hmac
import logging
from typing import Any, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from dashboard.schemas import (
    MessageEvent,
    ParsedCallback,
    StatusEvent,
    VerificationResult,
    WireMessage,
    WireMetadata,
    WireStatus,
)

logger = logging.getLogger("uvicorn.error")

TRACKED_STATUSES = ("sent", "delivered", "read", "failed")

WireModel = TypeVar("WireModel", bound=BaseModel)


def verify_subscription(
    mode: Optional[str],
    token: Optional[str],
    challenge: Optional[str],
    expected_token: Optional[str],
) -> VerificationResult:
    """
    Meta's GET handshake. The challenge must be echoed back unchanged.
    Mismatches are routine (scanners hit this endpoint), so they are a result, not an error.
    """
    if not expected_token:
        return VerificationResult(success=False)
    if mode == "subscribe" and token == expected_token:
        return VerificationResult(success=True, challenge=challenge)
    return VerificationResult(success=False)


def verify_signature(payload: bytes, signature: Optional[str], secret: str) -> bool:
    """
    Validates that the request actually came from Meta using the App Secret.
    """
    if not signature:
        return False

    sha_type, _, signature_hash = signature.partition("=")
    if sha_type != "sha256" or not signature_hash:
        return False

    mac = hmac.new(secret.encode("utf-8"), msg=payload, digestmod=hashlib.sha256)
    return hmac.compare_digest(mac.hexdigest(), signature_hash)


def _items(container: Any, key: str) -> List[Any]:
    """container[key] when it is a list; anything else counts as empty."""
    if not isinstance(container, dict):
        return []
    value = container.get(key)
    return value if isinstance(value, list) else []


def _validate(model: Type[WireModel], raw: Any, kind: str) -> Optional[WireModel]:
    try:
        return model.model_validate(raw)
    except ValidationError as exc:
        logger.warning(f"Skipping malformed webhook {kind}: {exc.error_count()} validation errors")
        return None


def parse_callback(raw_payload: Any) -> ParsedCallback:
    """
    Flattens entry[].changes[].value.{messages,statuses} into one ordered event list each.

    Traversal order is preserved (entries, then changes, then items) because
    status history is rebuilt from it downstream. Missing arrays count as empty.
    Each item is validated on its own, so one malformed item never costs the
    rest of the callback.
    """
    messages = []
    statuses = []
    for entry in _items(raw_payload, "entry"):
        for change in _items(entry, "changes"):
            value = change.get("value") if isinstance(change, dict) else None
            if not isinstance(value, dict):
                continue

            metadata = _validate(WireMetadata, value.get("metadata") or {}, "metadata")
            phone_number_id = metadata.phone_number_id if metadata else None

            for raw_message in _items(value, "messages"):
                msg = _validate(WireMessage, raw_message, "message")
                if msg is None:
                    continue
                messages.append(MessageEvent(
                    sender=msg.sender,
                    provider_message_id=msg.id,
                    text=msg.text.body if msg.text else "",
                    received_at=msg.timestamp * 1000,
                    phone_number_id=phone_number_id,
                ))

            for raw_status in _items(value, "statuses"):
                stat = _validate(WireStatus, raw_status, "status")
                if stat is None:
                    continue
                if stat.status not in TRACKED_STATUSES:
                    logger.info(f"Ignoring untracked status '{stat.status}' for {stat.id}")
                    continue
                statuses.append(StatusEvent(
                    provider_message_id=stat.id,
                    status=stat.status,
                    occurred_at=stat.timestamp * 1000,
                    recipient=stat.recipient_id,
                    phone_number_id=phone_number_id,
                ))

    return ParsedCallback(messages=messages, statuses=statuses)
