"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults (static pool for in-memory SQLite)
- Table definitions for identities, licenses, organizations, sites and the
  credit ledger
"""
from typing import Optional
from contextlib import contextmanager
from sqlalchemy import (
    create_engine,
    MetaData,
    Table,
    Column,
    Integer,
    String,
    DateTime,
    Boolean,
    JSON,
    Text,
    Index,
    UniqueConstraint,
    CheckConstraint,
)
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.orm import sessionmaker
from sqlalchemy.sql import func
import logging
import os

from quota_backend.core.config import settings


logger = logging.getLogger(__name__)

# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour

# Global engine and session factory
_engine = None
_SessionLocal = None


def get_database_url() -> Optional[str]:
    """
    Get the database URL from settings or environment.

    For testing, use TEST_DATABASE_URL if available.
    """
    test_url = os.getenv("TEST_DATABASE_URL")
    if test_url:
        return test_url

    return os.getenv("DATABASE_URL") or settings.DATABASE_URL


def init_engine(database_url: Optional[str] = None):
    """
    Initialize the SQLAlchemy engine.

    Args:
        database_url: Optional override for DATABASE_URL
    """
    global _engine, _SessionLocal

    url = database_url or get_database_url()

    if not url:
        raise ValueError(
            "DATABASE_URL is not configured. "
            "Set DATABASE_URL in environment or .env file."
        )

    if url.startswith("sqlite"):
        # One shared connection so in-memory databases survive across sessions
        _engine = create_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
            echo=settings.DB_ECHO,
        )
    else:
        _engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=POOL_SIZE,
            max_overflow=MAX_OVERFLOW,
            pool_timeout=POOL_TIMEOUT,
            pool_recycle=POOL_RECYCLE,
            pool_pre_ping=True,
            echo=settings.DB_ECHO,
        )

    _SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=_engine
    )

    logger.info("database.engine_initialized", extra={"dialect": _engine.dialect.name})
    return _engine


def dispose_engine() -> None:
    """Dispose the current engine (tests switch databases between sessions)."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None


def get_engine():
    """Get the current SQLAlchemy engine."""
    global _engine
    if _engine is None:
        init_engine()
    return _engine


def get_session_factory():
    """Get the session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        init_engine()
    return _SessionLocal


@contextmanager
def get_db_session():
    """
    Context manager for database sessions.

    Usage:
        with get_db_session() as session:
            session.execute(...)
    """
    SessionLocal = get_session_factory()
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables():
    """
    Create all tables defined in metadata.

    This is idempotent - tables that already exist will not be recreated.
    """
    engine = get_engine()
    metadata.create_all(bind=engine)


def drop_all_tables():
    """
    Drop all tables defined in metadata.

    WARNING: This is destructive! Only use in tests or development.
    """
    engine = get_engine()
    metadata.drop_all(bind=engine)


def reset_database():
    """
    Reset the database by dropping and recreating all tables.

    WARNING: This is destructive! Only use in tests.
    """
    drop_all_tables()
    create_all_tables()


# Billing identities: the credit principal, keyed by normalized email
identities = Table(
    'identities',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('email', String(320), nullable=False, unique=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('last_seen_at', DateTime(timezone=True), nullable=True),
    Index('idx_identities_email', 'email'),
)

# Application accounts (registration)
users = Table(
    'app_users',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('email', String(320), nullable=False, unique=True),
    Column('name', Text, nullable=True),
    Column('plan', String(20), nullable=False, server_default='free'),
    Column('service', String(50), nullable=False, server_default='alttext-ai'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

# Quota grants
licenses = Table(
    'licenses',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('license_key', String(64), nullable=False, unique=True),
    Column('plan', String(20), nullable=False),
    Column('service', String(50), nullable=False),
    Column('token_limit', Integer, nullable=False),
    Column('tokens_remaining', Integer, nullable=False),
    Column('site_url', Text, nullable=True),
    Column('site_hash', String(128), nullable=True),
    Column('install_id', String(128), nullable=True),
    Column('auto_attach_status', String(20), nullable=False, server_default='manual'),
    Column('user_id', String(36), nullable=True),
    Column('organization_id', String(36), nullable=True),
    Column('stripe_customer_id', String(100), nullable=True),
    Column('stripe_subscription_id', String(100), nullable=True),
    Column('email_status', String(20), nullable=False, server_default='pending'),
    Column('license_email_sent_at', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    # A license is owned by a user or an organization, never both
    CheckConstraint(
        'user_id IS NULL OR organization_id IS NULL',
        name='ck_licenses_single_owner',
    ),
    Index('idx_licenses_user_id', 'user_id'),
    Index('idx_licenses_organization_id', 'organization_id'),
    Index('idx_licenses_stripe_subscription_id', 'stripe_subscription_id'),
)

organizations = Table(
    'organizations',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('name', Text, nullable=False),
    Column('license_key', String(64), nullable=False, unique=True),
    Column('plan', String(20), nullable=False, server_default='free'),
    Column('service', String(50), nullable=False, server_default='alttext-ai'),
    Column('max_sites', Integer, nullable=False, server_default='1'),
    Column('tokens_remaining', Integer, nullable=False, server_default='0'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

organization_members = Table(
    'organization_members',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('organization_id', String(36), nullable=False),
    Column('user_id', String(36), nullable=False),
    Column('role', String(20), nullable=False),  # 'owner', 'admin', 'member'
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    UniqueConstraint('organization_id', 'user_id', name='uq_organization_members_org_user'),
    Index('idx_organization_members_user_id', 'user_id'),
)

sites = Table(
    'sites',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('organization_id', String(36), nullable=False),
    Column('site_hash', String(128), nullable=False, unique=True),
    Column('install_id', String(128), nullable=True),
    Column('site_url', Text, nullable=True),
    Column('is_active', Boolean, nullable=False, server_default='1'),
    Column('first_seen', DateTime(timezone=True), nullable=False),
    Column('last_seen', DateTime(timezone=True), nullable=False),
    # Active-site counting pattern: (organization_id, is_active)
    Index('idx_sites_org_active', 'organization_id', 'is_active'),
    Index('idx_sites_install_id', 'install_id'),
)

# Append-only credit ledger; balance is SUM(amount) per identity
credit_transactions = Table(
    'credit_transactions',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('identity_id', String(36), nullable=False),
    Column('amount', Integer, nullable=False),
    Column('transaction_type', String(20), nullable=False),  # purchase, consumption, refund
    Column('idempotency_key', String(255), nullable=True),
    Column('details', JSON, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    # An idempotency key is recorded at most once per identity and type
    UniqueConstraint(
        'identity_id', 'transaction_type', 'idempotency_key',
        name='uq_credit_transactions_identity_type_key',
    ),
    Index('idx_credit_transactions_identity_created', 'identity_id', 'created_at'),
)

subscriptions = Table(
    'subscriptions',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('user_email', String(320), nullable=False),
    Column('plan', String(20), nullable=False),
    Column('status', String(30), nullable=False),
    Column('service', String(50), nullable=False, server_default='alttext-ai'),
    Column('stripe_subscription_id', String(100), nullable=True, unique=True),
    Column('stripe_customer_id', String(100), nullable=True),
    Column('renews_at', DateTime(timezone=True), nullable=True),
    Column('canceled_at', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_subscriptions_email_created', 'user_email', 'created_at'),
)

# Webhook idempotency
billing_events = Table(
    'billing_events',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('stripe_event_id', String(100), nullable=False, unique=True),
    Column('event_type', String(100), nullable=False, index=True),
    Column('payload_hash', String(64), nullable=False),  # SHA256 hash for deduplication
    Column('processed', Boolean, nullable=False, server_default='0', index=True),
    Column('processed_at', DateTime(timezone=True), nullable=True),
    Column('error', Text, nullable=True),
    Column('received_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

plugin_installations = Table(
    'plugin_installations',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('email', String(320), nullable=False),
    Column('plugin_slug', String(50), nullable=False),
    Column('site_url', Text, nullable=True),
    Column('site_hash', String(128), nullable=True),
    Column('install_id', String(128), nullable=True),
    Column('version', String(50), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('last_seen_at', DateTime(timezone=True), nullable=True),
    Index('idx_plugin_installations_email_plugin', 'email', 'plugin_slug'),
)
