"""Pydantic request/response schemas for all API routes.

Centralised here so routes never define BaseModel subclasses themselves.
"""

import uuid as _uuid
from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, field_validator

from boltstore.core.config import settings
from boltstore.core.constants import Embedding, SimilaritySearch

Role = Literal["user", "assistant", "system", "tool"]
EmbeddingVector = Annotated[
    list[float], Field(min_length=Embedding.DIMENSIONS, max_length=Embedding.DIMENSIONS)
]


def _validate_uuid(value: str, field_name: str) -> str:
    """Reject malformed UUIDs early so they never reach the DB.

    Returns the canonical lowercase form so it compares equal to `id::text`.
    """
    try:
        return str(_uuid.UUID(value))
    except ValueError:
        raise ValueError(f"{field_name} must be a valid UUID")


# ---------------------------------------------------------------------------
# Auth / users
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    password: str = Field(..., min_length=8, max_length=128)
    name: str | None = Field(default=None, max_length=255)
    avatar_url: str | None = None

    @field_validator("email", mode="before")
    @classmethod
    def normalise_email(cls, v: object) -> object:
        return v.strip().lower() if isinstance(v, str) else v


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1, max_length=128)

    @field_validator("email", mode="before")
    @classmethod
    def normalise_email(cls, v: object) -> object:
        return v.strip().lower() if isinstance(v, str) else v


class UserResponse(BaseModel):
    id: str
    email: str
    name: str | None = None
    avatar_url: str | None = None
    created_at: datetime | None = None


class AuthResponse(BaseModel):
    user: UserResponse
    access_token: str
    token_type: str = "bearer"


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


class ProjectCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    code_content: dict | list | None = None
    preview_url: str | None = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("name must not be whitespace-only")
        return v


class ProjectUpdate(BaseModel):
    """Only the fields present in the request body are changed."""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    code_content: dict | list | None = None
    preview_url: str | None = None


class ProjectResponse(BaseModel):
    id: str
    user_id: str
    name: str
    description: str | None = None
    code_content: Any = None
    preview_url: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


# ---------------------------------------------------------------------------
# Messages / conversations
# ---------------------------------------------------------------------------


class MessageIn(BaseModel):
    role: Role
    content: str = Field(..., max_length=200_000)
    embedding: EmbeddingVector | None = None


class MessageResponse(BaseModel):
    id: str
    role: str
    content: str
    position: int | None = None
    embedding: list[float] | None = None
    created_at: datetime | None = None


class ConversationCreate(BaseModel):
    messages: list[MessageIn] = Field(default_factory=list)
    description: str | None = None


class ConversationMessagesUpdate(BaseModel):
    messages: list[MessageIn]


class EmbeddingUpdate(BaseModel):
    embedding: EmbeddingVector


class SimilaritySearchRequest(BaseModel):
    embedding: EmbeddingVector
    limit: int = Field(default=SimilaritySearch.DEFAULT_LIMIT, ge=1, le=100)
    similarity_threshold: float = Field(
        default_factory=lambda: settings.SIMILARITY_THRESHOLD,
        ge=SimilaritySearch.MIN_SIMILARITY,
        le=SimilaritySearch.MAX_SIMILARITY,
    )


class ConversationResponse(BaseModel):
    id: str
    project_id: str | None = None
    description: str | None = None
    metadata: Any = None
    embedding: list[float] | None = None
    messages: list[MessageResponse] = Field(default_factory=list)
    similarity: float | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


# ---------------------------------------------------------------------------
# Chats
# ---------------------------------------------------------------------------


class ChatSaveRequest(BaseModel):
    messages: list[MessageIn] = Field(..., min_length=1)
    description: str | None = None
    metadata: dict | None = None


class ChatCreateRequest(ChatSaveRequest):
    description: str


class ChatUpdate(BaseModel):
    description: str | None = None
    metadata: dict | None = None


class ForkRequest(BaseModel):
    message_id: str

    @field_validator("message_id")
    @classmethod
    def validate_message_id(cls, v: str) -> str:
        return _validate_uuid(v, "message_id")


class ChatSummary(BaseModel):
    id: str
    project_id: str | None = None
    description: str | None = None
    metadata: Any = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ChatDetail(ChatSummary):
    messages: list[MessageResponse] = Field(default_factory=list)


class ChatIdResponse(BaseModel):
    chat_id: str


class SnapshotRequest(BaseModel):
    snapshot_data: Any

    @field_validator("snapshot_data")
    @classmethod
    def validate_snapshot_data(cls, v: Any) -> Any:
        if v is None:
            raise ValueError("snapshot_data is required")
        return v


class SnapshotResponse(BaseModel):
    id: str
    chat_id: str
    snapshot_data: Any = None
    created_at: datetime | None = None


class DeletedCount(BaseModel):
    deleted: int
