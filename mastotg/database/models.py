"""
SQLAlchemy 2.0 models for the forwarding ledger.
The tables themselves are created by the versioned migrations in ``migrations.py``.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


class ForwardedPost(Base):
    """A feed post that has reached every configured channel."""
    __tablename__ = "forwarded_posts"

    post_id: Mapped[str] = mapped_column(Text, primary_key=True)
    forwarded_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class Delivery(Base):
    """Per-channel delivery of a post, with the first Telegram message id."""
    __tablename__ = "deliveries"

    post_id: Mapped[str] = mapped_column(Text, primary_key=True)
    chat_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    message_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    delivered_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class SchemaMigration(Base):
    """Applied schema migration."""
    __tablename__ = "schema_migrations"

    version: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    applied_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class PollState(Base):
    """Single-row poller state; its presence means the first round has run."""
    __tablename__ = "poll_state"

    pk: Mapped[int] = mapped_column(Integer, primary_key=True, default=1)
    initialized_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
