import os

from cryptography.fernet import Fernet

# Settings are read at import time, so the test environment goes in first
os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("ENCRYPTION_KEY", Fernet.generate_key().decode())
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("META_WEBHOOK_VERIFY_TOKEN", "secret123")

import httpx
import pytest

from dashboard.core.security import encrypt_token
from dashboard.database import Base, SessionLocal, engine
from dashboard.models import Organization
from dashboard.whatsapp.client import WhatsAppClient

GRAPH = "https://graph.facebook.com/v21.0"
PHONE_ID = "PHONE_ID_555"
ACCESS_TOKEN = "EAAG_FAKE_TOKEN_123"


@pytest.fixture(autouse=True)
def setup_database():
    """Create and drop tables for each test run."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def organization_id():
    """Seeds an organization with working WhatsApp credentials."""
    db = SessionLocal()
    org = Organization(
        name="Test Biz",
        whatsapp_access_token=encrypt_token(ACCESS_TOKEN),
        whatsapp_phone_number_id=PHONE_ID,
        whatsapp_webhook_verify_token="org-verify-token",
    )
    db.add(org)
    db.commit()
    org_id = org.id
    db.close()
    return org_id


class RecordingProvider:
    """Stands in for graph.facebook.com; records every request it receives."""

    def __init__(self, responder):
        self.responder = responder
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responder(request)

    def client(self) -> WhatsAppClient:
        return WhatsAppClient(httpx.AsyncClient(transport=httpx.MockTransport(self)), base_url=GRAPH)


@pytest.fixture
def provider():
    def factory(responder):
        return RecordingProvider(responder)
    return factory
