"""
Database models for SimWeGo Gateway
"""
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column, String, DateTime, Boolean,
    Text, ForeignKey, Index
)
from sqlalchemy.orm import relationship

from ..core.database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp, the representation stored in every DateTime column"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_client_id() -> str:
    return str(uuid.uuid4())


class Client(Base):
    """Tenant with encrypted upstream credentials"""
    __tablename__ = "clients"

    id = Column(String(36), primary_key=True, default=new_client_id)
    name = Column(String(100), nullable=False)
    api_key = Column(String(100), unique=True, nullable=False, index=True)
    active = Column(Boolean, default=True, nullable=False, index=True)

    # Upstream credentials
    upstream_username = Column(String(50), nullable=False)
    upstream_password_encrypted = Column(Text, nullable=False)

    # Metadata
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    token_cache = relationship(
        "TokenCache",
        back_populates="client",
        uselist=False,
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self):
        return f"<Client(id={self.id}, name={self.name}, active={self.active})>"


class TokenCache(Base):
    """Most recent upstream session for a client"""
    __tablename__ = "token_cache"

    client_id = Column(
        String(36),
        ForeignKey("clients.id", ondelete="CASCADE", onupdate="CASCADE"),
        primary_key=True,
    )

    # Token data
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=True)
    expires_at = Column(DateTime, nullable=False)

    # Upstream identifiers returned at login
    agent_id = Column(String(50), nullable=True)
    reseller_id = Column(String(50), nullable=True)

    # Metadata
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    client = relationship("Client", back_populates="token_cache")

    __table_args__ = (
        Index('ix_token_cache_expires_at', 'expires_at'),
    )

    def __repr__(self):
        return f"<TokenCache(client_id={self.client_id}, expires_at={self.expires_at})>"
