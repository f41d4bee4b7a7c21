"""
Relational Schema

SQLAlchemy Core table definitions for the tables this service reads and
writes. The schema itself is owned by the portal's migration runner; these
definitions mirror it and are only used to create tables for local
development and tests.
"""

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    MetaData,
    String,
    Table,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB

metadata = MetaData()

JSONPayload = JSON().with_variant(JSONB(), "postgresql")


users = Table(
    "users",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(320), nullable=False),
    Column("full_name", String(255)),
)


projects = Table(
    "projects",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("project_number", String(64)),
    Column("client_user_id", String(36), ForeignKey("users.id")),
)


payments = Table(
    "payments",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("proposal_id", String(36), nullable=False),
    Column("project_id", String(36), ForeignKey("projects.id")),
    Column("amount", BigInteger, nullable=False),
    Column("currency", String(3), nullable=False, default="INR"),
    Column("payment_type", String(16), nullable=False),
    Column("status", String(16), nullable=False, default="pending"),
    Column("razorpay_order_id", String(64), nullable=False, unique=True),
    Column("razorpay_payment_id", String(64)),
    Column("payment_method", String(32)),
    Column("failure_reason", Text),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("completed_at", DateTime(timezone=True)),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)


payment_webhook_logs = Table(
    "payment_webhook_logs",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("event", Text, nullable=False),
    Column("razorpay_event_id", Text),
    Column("razorpay_order_id", Text),
    Column("razorpay_payment_id", Text),
    Column("payload", JSONPayload, nullable=False),
    Column("signature", Text, nullable=False, default=""),
    Column("signature_verified", Boolean, nullable=False, default=False),
    Column("status", String(16), nullable=False),
    Column("error", Text),
    Column("ip_address", Text),
    Column("payment_id", String(36), ForeignKey("payments.id")),
    Column("processed_at", DateTime(timezone=True)),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Index("ix_payment_webhook_logs_event_id", "razorpay_event_id"),
    Index("ix_payment_webhook_logs_order_id", "razorpay_order_id"),
    Index("ix_payment_webhook_logs_payment_id", "payment_id"),
)
