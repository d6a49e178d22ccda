import uuid
from sqlalchemy import Column, String, Text, ForeignKey, TIMESTAMP, Integer, CheckConstraint, UniqueConstraint, Index, JSON, TypeDecorator
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from dashboard.database import Base

# --- SQLite Compatibility Type Decorator ---
class GUID(TypeDecorator):
    """Platform-independent GUID type.
    Uses PostgreSQL's UUID type, otherwise uses String(36).
    """
    impl = UUID(as_uuid=True)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == 'sqlite':
            return dialect.type_descriptor(String(36))
        else:
            return dialect.type_descriptor(UUID(as_uuid=True))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if dialect.name == 'sqlite':
            return str(value) # Converts UUID object to string for SQLite
        return value

    def process_result_value(self, value, dialect):
        if value is None or isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))

# --- Multi-DB Compatibility Helpers ---
CompatibleUUID = GUID()
CompatibleJSON = JSONB().with_variant(JSON, "sqlite")

MESSAGE_STATUSES = ('received', 'sent', 'delivered', 'read', 'failed')

# --- Core Models ---

class Organization(Base):
    __tablename__ = "organizations"

    id = Column(CompatibleUUID, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    # Credential Context; the access token is Fernet-encrypted
    whatsapp_access_token = Column(Text)
    whatsapp_phone_number_id = Column(String(100))
    whatsapp_business_account_id = Column(String(100))
    whatsapp_webhook_verify_token = Column(String(255))
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())

    contacts = relationship("Contact", back_populates="organization", cascade="all, delete-orphan")
    templates = relationship("MessageTemplate", back_populates="organization", cascade="all, delete-orphan")
    broadcasts = relationship("Broadcast", back_populates="organization", cascade="all, delete-orphan")

    __table_args__ = (
        Index('idx_organizations_phone_number_id', 'whatsapp_phone_number_id'),
    )

class Contact(Base):
    __tablename__ = "contacts"
    id = Column(CompatibleUUID, primary_key=True, default=uuid.uuid4)
    organization_id = Column(CompatibleUUID, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    phone_number = Column(String(20), nullable=False)
    name = Column(String(255))
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())

    organization = relationship("Organization", back_populates="contacts")
    messages = relationship("Message", back_populates="contact", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint('organization_id', 'phone_number'),
    )

class MessageTemplate(Base):
    __tablename__ = "message_templates"
    id = Column(CompatibleUUID, primary_key=True, default=uuid.uuid4)
    organization_id = Column(CompatibleUUID, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    provider_template_id = Column(String(100))
    name = Column(String(255), nullable=False)
    category = Column(String(50), server_default="general")
    language = Column(String(20), server_default="en_US")
    body_text = Column(Text, nullable=False, server_default="")
    variables = Column(CompatibleJSON, nullable=False, default=list)
    status = Column(String(20), server_default="pending")
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())

    organization = relationship("Organization", back_populates="templates")

    __table_args__ = (
        CheckConstraint("status IN ('pending', 'approved', 'rejected')"),
        UniqueConstraint('organization_id', 'provider_template_id'),
    )

class Broadcast(Base):
    __tablename__ = "broadcasts"
    id = Column(CompatibleUUID, primary_key=True, default=uuid.uuid4)
    organization_id = Column(CompatibleUUID, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(255))
    template_name = Column(String(255), nullable=False)
    language_code = Column(String(20), server_default="en_US")
    variables = Column(CompatibleJSON, nullable=False, default=list)
    cta_url = Column(Text)
    recipients = Column(CompatibleJSON, nullable=False, default=list)
    status = Column(String(20), server_default="draft")
    total_sent = Column(Integer, server_default="0")
    total_failed = Column(Integer, server_default="0")
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    started_at = Column(TIMESTAMP(timezone=True))
    completed_at = Column(TIMESTAMP(timezone=True))

    organization = relationship("Organization", back_populates="broadcasts")
    messages = relationship("Message", back_populates="broadcast")

    __table_args__ = (
        CheckConstraint("status IN ('draft', 'queued', 'running', 'completed', 'error')"),
    )

class Message(Base):
    __tablename__ = "messages"
    id = Column(CompatibleUUID, primary_key=True, default=uuid.uuid4)
    organization_id = Column(CompatibleUUID, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    contact_id = Column(CompatibleUUID, ForeignKey("contacts.id", ondelete="CASCADE"), nullable=False)
    broadcast_id = Column(CompatibleUUID, ForeignKey("broadcasts.id", ondelete="SET NULL"))
    provider_message_id = Column(String(255), unique=True)
    direction = Column(String(10), nullable=False)
    message_type = Column(String(20), server_default="text")
    body = Column(Text)
    status = Column(String(20), server_default="sent")
    timestamp = Column(TIMESTAMP(timezone=True), server_default=func.now())
    status_updated_at = Column(TIMESTAMP(timezone=True))

    organization = relationship("Organization")
    contact = relationship("Contact", back_populates="messages")
    broadcast = relationship("Broadcast", back_populates="messages")

    __table_args__ = (
        CheckConstraint("direction IN ('in', 'out')"),
        CheckConstraint(f"status IN {MESSAGE_STATUSES}"),
        Index('idx_messages_tracking', 'organization_id', 'provider_message_id'),
    )

class WebhookLog(Base):
    __tablename__ = "webhook_logs"
    id = Column(CompatibleUUID, primary_key=True, default=uuid.uuid4)
    organization_id = Column(CompatibleUUID, ForeignKey("organizations.id", ondelete="CASCADE"))
    payload = Column(CompatibleJSON, nullable=False)
    received_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
