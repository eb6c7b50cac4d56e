"""SQLAlchemy ORM models: the schema of record for Alembic.

Runtime DB access goes through asyncpg directly; these classes are only read
by alembic/env.py as target_metadata.
"""

from datetime import UTC, datetime
from uuid import uuid4

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import relationship

from boltstore.core.constants import Embedding
from boltstore.core.db import Base


def _now() -> datetime:
    return datetime.now(UTC)


class User(Base):
    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    email = Column(String(255), unique=True, nullable=False)
    password_hash = Column(Text, nullable=False)
    name = Column(String(255), nullable=True)
    avatar_url = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_now, onupdate=_now, nullable=False)

    projects = relationship("Project", back_populates="user", cascade="all, delete-orphan")
    chats = relationship("Chat", back_populates="user", cascade="all, delete-orphan")


class Project(Base):
    __tablename__ = "projects"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    code_content = Column(JSONB, nullable=True)
    preview_url = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_now, onupdate=_now, nullable=False)

    user = relationship("User", back_populates="projects")
    conversations = relationship("Chat", back_populates="project", cascade="all, delete-orphan")

    __table_args__ = (Index("ix_projects_user_id", "user_id"),)


class Chat(Base):
    """A chat; with a project_id set it is that project's conversation."""

    __tablename__ = "chats"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    project_id = Column(
        UUID(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), nullable=True
    )
    description = Column(Text, nullable=True)
    metadata_ = Column("metadata", JSONB, nullable=True)
    embedding = Column(Vector(dim=Embedding.DIMENSIONS), nullable=True)  # type: ignore[var-annotated]
    created_at = Column(DateTime(timezone=True), default=_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_now, onupdate=_now, nullable=False)

    user = relationship("User", back_populates="chats")
    project = relationship("Project", back_populates="conversations")
    messages = relationship(
        "Message", back_populates="chat", cascade="all, delete-orphan", order_by="Message.position"
    )
    snapshots = relationship("Snapshot", back_populates="chat", cascade="all, delete-orphan")

    __table_args__ = (
        Index("ix_chats_user_id_updated_at", "user_id", "updated_at"),
        Index("ix_chats_project_id", "project_id"),
        Index(
            "ix_chats_embedding_hnsw",
            "embedding",
            postgresql_using="hnsw",
            postgresql_with={"m": 16, "ef_construction": 64},
            postgresql_ops={"embedding": "vector_cosine_ops"},
        ),
    )


class Message(Base):
    __tablename__ = "messages"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    chat_id = Column(UUID(as_uuid=True), ForeignKey("chats.id", ondelete="CASCADE"), nullable=False)
    position = Column(Integer, nullable=False)
    role = Column(String(20), nullable=False)
    content = Column(Text, nullable=False)
    embedding = Column(Vector(dim=Embedding.DIMENSIONS), nullable=True)  # type: ignore[var-annotated]
    created_at = Column(DateTime(timezone=True), default=_now, nullable=False)

    chat = relationship("Chat", back_populates="messages")

    __table_args__ = (
        UniqueConstraint("chat_id", "position", name="uq_messages_chat_position"),
        CheckConstraint(
            "role IN ('user', 'assistant', 'system', 'tool')",
            name="ck_messages_role",
        ),
        CheckConstraint("position >= 0", name="ck_messages_position"),
    )


class Snapshot(Base):
    __tablename__ = "snapshots"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    chat_id = Column(UUID(as_uuid=True), ForeignKey("chats.id", ondelete="CASCADE"), nullable=False)
    snapshot_data = Column(JSONB, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_now, nullable=False)

    chat = relationship("Chat", back_populates="snapshots")

    __table_args__ = (Index("ix_snapshots_chat_id_created_at", "chat_id", "created_at"),)
