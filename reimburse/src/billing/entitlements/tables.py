"""
Billing tables.

SQLAlchemy Core definitions shared by the entitlement store, the referral
engine, the audit writer and the auth read model.
"""

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    false,
    func,
)

metadata = MetaData()

# SQLite only autoincrements INTEGER PRIMARY KEY
_Id = BigInteger().with_variant(Integer(), 'sqlite')


# Read model owned by the auth service
auth_users = Table(
    'auth_users',
    metadata,
    Column('id', String(64), primary_key=True),
    Column('email', String(320), nullable=False),
    Column('email_verified_at', DateTime(timezone=True), nullable=True),
    Column('referral_code', String(64), nullable=True, unique=True),
)

entitlements = Table(
    'entitlements',
    metadata,
    Column('user_id', String(64), ForeignKey('auth_users.id', ondelete='CASCADE'), primary_key=True),
    Column('tier', String(16), nullable=False, server_default='free'),
    Column('status', String(16), nullable=False, server_default='trial'),
    Column('trial_end', DateTime(timezone=True), nullable=True),
    Column('period_end', DateTime(timezone=True), nullable=True),
    Column('billing_customer_ref', String(255), nullable=True, unique=True),
    Column('billing_subscription_ref', String(255), nullable=True, unique=True),
    Column('early_adopter', Boolean, nullable=False, server_default=false()),
    Column('lifetime_discount_percent', Integer, nullable=False, server_default='0'),
    Column('receipt_uploads', Integer, nullable=False, server_default='0'),
    Column('report_exports', Integer, nullable=False, server_default='0'),
    Column('usage_reset_at', DateTime(timezone=True), nullable=True),
    Column('last_event_at', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column('updated_at', DateTime(timezone=True), nullable=False, server_default=func.now()),
)

# Append-only. external_event_id is the webhook deduplication key.
subscription_events = Table(
    'subscription_events',
    metadata,
    Column('id', _Id, primary_key=True, autoincrement=True),
    Column('user_id', String(64), nullable=False, index=True),
    Column('event_type', String(64), nullable=False),
    Column('old_tier', String(16), nullable=True),
    Column('new_tier', String(16), nullable=True),
    Column('old_status', String(16), nullable=True),
    Column('new_status', String(16), nullable=True),
    Column('external_event_id', String(255), nullable=True, unique=True),
    Column('metadata', JSON, nullable=True),
    Column('received_at', DateTime(timezone=True), nullable=False, server_default=func.now()),
)

# One row per referred user
referral_records = Table(
    'referral_records',
    metadata,
    Column('id', _Id, primary_key=True, autoincrement=True),
    Column('referrer_id', String(64), nullable=False, index=True),
    Column('referred_id', String(64), nullable=False, unique=True),
    Column('referral_code', String(64), nullable=False),
    Column('status', String(16), nullable=False, server_default='completed'),
    Column('reward_type', String(32), nullable=False),
    Column('reward_value', Numeric(10, 2), nullable=False),
    Column('created_at', DateTime(timezone=True), nullable=False, server_default=func.now()),
)

audit_log = Table(
    'audit_log',
    metadata,
    Column('id', _Id, primary_key=True, autoincrement=True),
    Column('user_id', String(64), nullable=True, index=True),
    Column('event', String(64), nullable=False),
    Column('meta', JSON, nullable=True),
    Column('created_at', DateTime(timezone=True), nullable=False, server_default=func.now()),
)
