# inbox_database.py

from extensions import db
from utils.datetime_utils import utc_now


# --- Credential Vault ---
class IntegrationCredential(db.Model):
    """Encrypted third-party credential, one row per (user, provider)"""
    __tablename__ = 'integration_credentials'
    __table_args__ = (
        db.UniqueConstraint('user_id', 'provider', name='uq_credential_user_provider'),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(100), nullable=False, index=True)
    provider = db.Column(db.String(50), nullable=False)
    provider_type = db.Column(db.String(20), nullable=False, default='oauth')  # 'oauth' or 'api_key'
    encrypted_data = db.Column(db.Text, nullable=False)  # Fernet token, never plaintext

    # External account pointer
    account_id = db.Column(db.String(200), nullable=True)
    account_name = db.Column(db.String(200), nullable=True)

    expires_at = db.Column(db.DateTime, nullable=True, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    last_synced_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    def __repr__(self):
        return f'<IntegrationCredential {self.id}: {self.user_id}/{self.provider} active={self.is_active}>'


# --- Canonical messaging model ---
class Contact(db.Model):
    __tablename__ = 'contacts'
    __table_args__ = (
        db.UniqueConstraint('user_id', 'platform', 'external_id', name='uq_contact_user_platform_external'),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(100), nullable=False, index=True)
    platform = db.Column(db.String(30), nullable=False)
    external_id = db.Column(db.String(255), nullable=False)  # normalized phone, email or platform user id

    display_name = db.Column(db.String(200), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(30), nullable=True)

    lifecycle_stage = db.Column(db.String(30), nullable=False, default='lead')
    priority = db.Column(db.String(20), nullable=False, default='medium')
    last_seen = db.Column(db.DateTime, nullable=True)
    contact_metadata = db.Column(db.JSON, nullable=True)  # For flexible data storage

    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    conversations = db.relationship('Conversation', backref='contact', lazy=True, cascade="all, delete-orphan")

    def __repr__(self):
        return f'<Contact {self.id}: {self.platform}:{self.external_id}>'


class Conversation(db.Model):
    __tablename__ = 'conversations'

    id = db.Column(db.Integer, primary_key=True)
    contact_id = db.Column(db.Integer, db.ForeignKey('contacts.id'), nullable=False, index=True)
    user_id = db.Column(db.String(100), nullable=False, index=True)
    platform = db.Column(db.String(30), nullable=False)
    thread_key = db.Column(db.String(255), nullable=False)

    status = db.Column(db.String(20), nullable=False, default='active')  # 'active' or 'closed'
    priority = db.Column(db.String(20), nullable=False, default='medium')

    # Activity tracking
    last_message_at = db.Column(db.DateTime, nullable=True)
    last_message_text = db.Column(db.String(100), nullable=True)  # Truncated preview

    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    messages = db.relationship('Message', backref='conversation', lazy=True, cascade="all, delete-orphan")

    __table_args__ = (
        db.Index('ix_conversation_thread', 'contact_id', 'platform', 'thread_key', 'status'),
    )

    def __repr__(self):
        return f'<Conversation {self.id}: {self.platform}:{self.thread_key} ({self.status})>'


class Message(db.Model):
    """Append-only message; only status and metadata change after insert"""
    __tablename__ = 'messages'
    __table_args__ = (
        db.UniqueConstraint('user_id', 'platform', 'platform_message_id', name='uq_message_user_platform_message_id'),
    )

    id = db.Column(db.Integer, primary_key=True)
    conversation_id = db.Column(db.Integer, db.ForeignKey('conversations.id'), nullable=False, index=True)
    contact_id = db.Column(db.Integer, db.ForeignKey('contacts.id'), nullable=True)
    user_id = db.Column(db.String(100), nullable=False, index=True)
    platform = db.Column(db.String(30), nullable=False)

    direction = db.Column(db.String(10), nullable=False)  # 'inbound' or 'outbound'
    content = db.Column(db.Text, nullable=True)
    platform_message_id = db.Column(db.String(255), nullable=True)
    status = db.Column(db.String(20), nullable=False, default='queued')
    message_metadata = db.Column(db.JSON, nullable=True)  # subject, headers, attachments, threading refs

    timestamp = db.Column(db.DateTime, nullable=False, default=utc_now)
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=True, onupdate=utc_now)

    def __repr__(self):
        return f'<Message {self.id}: {self.platform} {self.direction} {self.status}>'


# --- WebhookEvent Model (for reliability) ---
class WebhookEvent(db.Model):
    __tablename__ = 'webhook_events'

    id = db.Column(db.Integer, primary_key=True)
    integration_id = db.Column(db.Integer, db.ForeignKey('integration_credentials.id'), nullable=True, index=True)
    platform = db.Column(db.String(30), nullable=False)
    event_type = db.Column(db.String(50))  # 'message', 'status', 'url_verification', ...
    payload = db.Column(db.JSON)  # Full webhook payload for reprocessing
    processed = db.Column(db.Boolean, default=False)
    processed_at = db.Column(db.DateTime, nullable=True)
    error_message = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=utc_now)
