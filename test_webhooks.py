import hashlib
import hmac
import json

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import IntegrityError

from conftest import PHONE_ID
from main import app
from dashboard.core.config import settings
from dashboard.database import SessionLocal
from dashboard.models import Contact, Message, WebhookLog
from dashboard.service import webhook_processor
from dashboard.whatsapp.webhook import parse_callback

client = TestClient(app)

# --- Helper: Generate Meta-style Signature ---
def generate_signature(payload_bytes: bytes, secret: str) -> str:
    mac = hmac.new(secret.encode("utf-8"), msg=payload_bytes, digestmod=hashlib.sha256)
    return f"sha256={mac.hexdigest()}"

def inbound_payload(wamid: str, sender: str = "15550008888", body: str = "Hello", phone_number_id: str = PHONE_ID):
    return {
        "object": "whatsapp_business_account",
        "entry": [{
            "id": "WABA_ID",
            "changes": [{
                "value": {
                    "messaging_product": "whatsapp",
                    "metadata": {"phone_number_id": phone_number_id},
                    "messages": [{
                        "from": sender,
                        "id": wamid,
                        "timestamp": "1700000000",
                        "text": {"body": body},
                        "type": "text"
                    }]
                },
                "field": "messages"
            }]
        }]
    }

def status_payload(wamid: str, status: str, timestamp: int = 1600000000):
    return {
        "object": "whatsapp_business_account",
        "entry": [{
            "id": "WABA_ID",
            "changes": [{
                "value": {
                    "messaging_product": "whatsapp",
                    "statuses": [{
                        "id": wamid,
                        "status": status,
                        "timestamp": str(timestamp),
                        "recipient_id": "15550009999"
                    }]
                },
                "field": "messages"
            }]
        }]
    }

def seed_outbound_message(organization_id, wamid: str, status: str = "sent"):
    db = SessionLocal()
    contact = Contact(organization_id=organization_id, phone_number="15550009999", name="Status Test User")
    db.add(contact)
    db.flush()
    db.add(Message(
        organization_id=organization_id,
        contact_id=contact.id,
        direction="out",
        status=status,
        provider_message_id=wamid
    ))
    db.commit()
    db.close()

def message_status(wamid: str) -> str:
    db = SessionLocal()
    message = db.query(Message).filter(Message.provider_message_id == wamid).one()
    db.close()
    return message.status

# --- 1. Webhook Verification (GET) ---

def test_verify_webhook_success():
    params = {
        "hub.mode": "subscribe",
        "hub.verify_token": settings.META_WEBHOOK_VERIFY_TOKEN,
        "hub.challenge": "123456789"
    }
    response = client.get("/api/webhooks/whatsapp", params=params)
    assert response.status_code == 200
    assert response.text == "123456789"
    assert response.headers["content-type"].startswith("text/plain")

def test_verify_webhook_wrong_token():
    params = {"hub.mode": "subscribe", "hub.verify_token": "nope", "hub.challenge": "123"}
    response = client.get("/api/webhooks/whatsapp", params=params)
    assert response.status_code == 403

def test_verify_webhook_wrong_mode():
    params = {"hub.mode": "unsubscribe", "hub.verify_token": settings.META_WEBHOOK_VERIFY_TOKEN, "hub.challenge": "123"}
    response = client.get("/api/webhooks/whatsapp", params=params)
    assert response.status_code == 403

def test_verify_organization_webhook(organization_id):
    params = {"hub.mode": "subscribe", "hub.verify_token": "org-verify-token", "hub.challenge": "abc"}
    response = client.get(f"/api/webhooks/whatsapp/{organization_id}", params=params)
    assert response.status_code == 200
    assert response.text == "abc"

    params["hub.verify_token"] = settings.META_WEBHOOK_VERIFY_TOKEN
    response = client.get(f"/api/webhooks/whatsapp/{organization_id}", params=params)
    assert response.status_code == 403

# --- 2. Inbound Messages (POST) ---

def test_inbound_message_creates_contact_and_message(organization_id):
    response = client.post("/api/webhooks/whatsapp", json=inbound_payload("wamid.IN_1", body="Hi there"))

    assert response.status_code == 200
    assert response.json() == {"status": "success", "messages": 1, "statuses": 0}

    db = SessionLocal()
    contact = db.query(Contact).filter(Contact.phone_number == "15550008888").one()
    message = db.query(Message).filter(Message.provider_message_id == "wamid.IN_1").one()
    assert contact.organization_id == organization_id
    assert contact.name == "New Contact"
    assert message.direction == "in"
    assert message.status == "received"
    assert message.body == "Hi there"
    assert db.query(WebhookLog).count() == 1
    db.close()

def test_webhook_idempotency(organization_id):
    body_bytes = json.dumps(inbound_payload("wamid.IDEMPOTENCY_999")).encode("utf-8")

    client.post("/api/webhooks/whatsapp", content=body_bytes)
    client.post("/api/webhooks/whatsapp", content=body_bytes)

    db = SessionLocal()
    assert db.query(Message).filter(Message.provider_message_id == "wamid.IDEMPOTENCY_999").count() == 1
    assert db.query(Contact).filter(Contact.phone_number == "15550008888").count() == 1
    db.close()

def test_inbound_message_for_unknown_phone_number_is_dropped(organization_id):
    response = client.post("/api/webhooks/whatsapp", json=inbound_payload("wamid.LOST", phone_number_id="SOMEONE_ELSE"))

    assert response.status_code == 200
    db = SessionLocal()
    assert db.query(Message).count() == 0
    assert db.query(WebhookLog).count() == 1
    db.close()

def test_organization_webhook_uses_path_organization(organization_id):
    payload = inbound_payload("wamid.PATH_1", phone_number_id="NOT_REGISTERED")
    response = client.post(f"/api/webhooks/whatsapp/{organization_id}", json=payload)

    assert response.status_code == 200
    db = SessionLocal()
    message = db.query(Message).filter(Message.provider_message_id == "wamid.PATH_1").one()
    assert message.organization_id == organization_id
    log = db.query(WebhookLog).one()
    assert log.organization_id == organization_id
    db.close()

def test_invalid_json_is_rejected():
    response = client.post(
        "/api/webhooks/whatsapp",
        content=b"{not json",
        headers={"content-type": "application/json"}
    )
    assert response.status_code == 400

# --- 3. Status Updates ---

def test_webhook_status_update(organization_id):
    seed_outbound_message(organization_id, "wamid.STATUS_TEST_001")

    response = client.post("/api/webhooks/whatsapp", json=status_payload("wamid.STATUS_TEST_001", "read"))

    assert response.json()["statuses"] == 1
    assert message_status("wamid.STATUS_TEST_001") == "read"

def test_stale_status_does_not_regress(organization_id):
    seed_outbound_message(organization_id, "wamid.ORDER_1", status="read")

    client.post("/api/webhooks/whatsapp", json=status_payload("wamid.ORDER_1", "delivered"))

    assert message_status("wamid.ORDER_1") == "read"

def test_failed_status_always_lands(organization_id):
    seed_outbound_message(organization_id, "wamid.FAIL_1", status="delivered")

    client.post("/api/webhooks/whatsapp", json=status_payload("wamid.FAIL_1", "failed"))

    assert message_status("wamid.FAIL_1") == "failed"

def test_status_for_unknown_message_is_ignored(organization_id):
    response = client.post("/api/webhooks/whatsapp", json=status_payload("wamid.UNKNOWN", "delivered"))
    assert response.status_code == 200

# --- 4. Signature Enforcement ---

@pytest.fixture
def app_secret(monkeypatch):
    monkeypatch.setattr(settings, "META_CLIENT_SECRET", "app-secret")
    return "app-secret"

def test_signed_payload_is_accepted(organization_id, app_secret):
    body_bytes = json.dumps(inbound_payload("wamid.SIGNED")).encode("utf-8")
    headers = {"X-Hub-Signature-256": generate_signature(body_bytes, app_secret)}

    response = client.post("/api/webhooks/whatsapp", content=body_bytes, headers=headers)

    assert response.status_code == 200
    assert message_status("wamid.SIGNED") == "received"

def test_bad_signature_is_rejected(organization_id, app_secret):
    body_bytes = json.dumps(inbound_payload("wamid.FORGED")).encode("utf-8")
    headers = {"X-Hub-Signature-256": generate_signature(body_bytes, "not-the-secret")}

    response = client.post("/api/webhooks/whatsapp", content=body_bytes, headers=headers)

    assert response.status_code == 401
    db = SessionLocal()
    assert db.query(Message).count() == 0
    db.close()

def test_missing_signature_is_rejected(app_secret):
    response = client.post("/api/webhooks/whatsapp", json={"entry": []})
    assert response.status_code == 401

# --- 5. Partially Malformed Callbacks ---

def test_malformed_item_does_not_cost_the_rest_of_the_callback(organization_id):
    seed_outbound_message(organization_id, "wamid.MIXED_STATUS")
    payload = status_payload("wamid.MIXED_STATUS", "delivered")
    inbound = inbound_payload("wamid.MIXED_IN")
    inbound["entry"][0]["changes"][0]["value"]["messages"][0]["from"] = 15550008888
    inbound["entry"][0]["changes"][0]["value"]["messages"].append(
        {"from": "15550008888", "id": "wamid.BROKEN", "text": ["not", "an", "object"]}
    )
    payload["entry"].extend(inbound["entry"])

    response = client.post("/api/webhooks/whatsapp", json=payload)

    assert response.json() == {"status": "success", "messages": 1, "statuses": 1}
    assert message_status("wamid.MIXED_STATUS") == "delivered"
    assert message_status("wamid.MIXED_IN") == "received"

def test_one_failing_insert_keeps_the_rest_of_the_callback(organization_id, monkeypatch):
    seed_outbound_message(organization_id, "wamid.ISOLATED_STATUS")
    store = webhook_processor.store_inbound_message

    def store_or_fail(db, organization, event):
        if event.provider_message_id == "wamid.CLASH":
            raise IntegrityError("INSERT INTO contacts", {}, Exception("duplicate key value"))
        return store(db, organization, event)

    monkeypatch.setattr(webhook_processor, "store_inbound_message", store_or_fail)

    payload = inbound_payload("wamid.KEPT_1")
    messages = payload["entry"][0]["changes"][0]["value"]["messages"]
    messages.append(dict(messages[0], id="wamid.CLASH"))
    messages.append(dict(messages[0], id="wamid.KEPT_2"))
    payload["entry"].extend(status_payload("wamid.ISOLATED_STATUS", "read")["entry"])

    webhook_processor.process_webhook_events(parse_callback(payload), payload)

    db = SessionLocal()
    stored = {m.provider_message_id for m in db.query(Message).filter(Message.direction == "in")}
    assert stored == {"wamid.KEPT_1", "wamid.KEPT_2"}
    assert db.query(WebhookLog).count() == 1
    db.close()
    assert message_status("wamid.ISOLATED_STATUS") == "read"
