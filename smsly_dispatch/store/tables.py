"""
SQL Tables
==========
Relational layout of the dispatch state.
"""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)

from smsly_dispatch.database import Base


class MessageRow(Base):
    __tablename__ = "messages"

    id = Column(String(36), primary_key=True)
    campaign_id = Column(String(64), nullable=True, index=True)
    direction = Column(String(16), nullable=False)
    sender = Column(String(32), nullable=False)
    recipient = Column(String(32), nullable=False)
    text = Column(Text, nullable=False, default="")
    status = Column(String(16), nullable=False)
    encoding = Column(String(16), nullable=True)
    segments = Column(Integer, nullable=True)
    cost = Column(Numeric(12, 6), nullable=True)
    provider_correlation_id = Column(String(128), nullable=True, index=True)
    error_code = Column(String(64), nullable=True)
    retry_count = Column(Integer, nullable=False, default=0)
    archived = Column(Boolean, nullable=False, default=False)
    send_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    queued_at = Column(DateTime(timezone=True), nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    failed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_messages_conversation", "direction", "recipient", "sender", "created_at"),
    )


class DispatchAttemptRow(Base):
    __tablename__ = "dispatch_attempts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    message_id = Column(String(36), nullable=False, index=True)
    attempt = Column(Integer, nullable=False)
    outcome = Column(String(16), nullable=False)
    error_code = Column(String(64), nullable=True)
    provider_correlation_id = Column(String(128), nullable=True)
    attempted_at = Column(DateTime(timezone=True), nullable=False)


class OptOutRow(Base):
    __tablename__ = "opt_outs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    phone = Column(String(32), nullable=False)
    scope = Column(String(96), nullable=False)
    method = Column(String(16), nullable=False)
    keyword = Column(String(32), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (UniqueConstraint("phone", "scope", name="opt_outs_phone_scope"),)


class ProcessedEventRow(Base):
    __tablename__ = "processed_webhook_events"

    idempotency_key = Column(String(128), primary_key=True)
    event_type = Column(String(32), nullable=False)
    outcome = Column(String(32), nullable=False)
    payload = Column(Text, nullable=False)
    attempts = Column(Integer, nullable=False, default=1)
    processed_at = Column(DateTime(timezone=True), nullable=False)


class DeadLetterRow(Base):
    __tablename__ = "webhook_dead_letters"

    idempotency_key = Column(String(128), primary_key=True)
    event_type = Column(String(32), nullable=False)
    payload = Column(Text, nullable=False)
    reason = Column(String(64), nullable=False)
    attempts = Column(Integer, nullable=False, default=1)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
