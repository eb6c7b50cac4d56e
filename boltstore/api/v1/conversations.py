"""Conversations router: project-scoped chats and similarity search.

Rule: No business logic here. Every route first checks that the caller owns
the project in the path, so a foreign project id is always a 404.
"""

import structlog
from fastapi import APIRouter, Depends, Response, status

from boltstore.api.dependencies import get_conversation_repository, get_project_repository
from boltstore.api.ownership import require_owned_project
from boltstore.core.auth import get_current_user
from boltstore.core.errors import BoltstoreError, InfrastructureError, NotFoundError
from boltstore.models.schemas import (
    ConversationCreate,
    ConversationMessagesUpdate,
    ConversationResponse,
    EmbeddingUpdate,
    SimilaritySearchRequest,
)
from boltstore.repositories.conversation import CONVERSATION_DELETE_FAILED, ConversationRepository
from boltstore.repositories.project import ProjectRepository

logger = structlog.get_logger(__name__)
router = APIRouter()


async def _run_service_call(action: str, detail: str, coro):
    """Translate unexpected repository failures to consistent 500 responses."""
    try:
        return await coro
    except BoltstoreError:
        raise
    except Exception:
        logger.exception(f"conversations.{action}.error")
        raise InfrastructureError(detail)


def _in_project(conversation: dict | None, project_id: str) -> dict:
    if conversation is None or conversation.get("project_id") != project_id:
        raise NotFoundError("Conversation not found")
    return conversation


@router.get("", response_model=list[ConversationResponse])
async def list_conversations(
    project_id: str,
    current_user: dict = Depends(get_current_user),
    projects: ProjectRepository = Depends(get_project_repository),
    conversations: ConversationRepository = Depends(get_conversation_repository),
) -> list[ConversationResponse]:
    await require_owned_project(projects, project_id, current_user["id"])
    rows = await _run_service_call(
        "list",
        "Failed to load conversations",
        conversations.get_conversations_by_project_id(project_id, current_user["id"]),
    )
    return [ConversationResponse(**c) for c in rows]


@router.post("", response_model=ConversationResponse, status_code=status.HTTP_201_CREATED)
async def create_conversation(
    project_id: str,
    body: ConversationCreate,
    current_user: dict = Depends(get_current_user),
    projects: ProjectRepository = Depends(get_project_repository),
    conversations: ConversationRepository = Depends(get_conversation_repository),
) -> ConversationResponse:
    await require_owned_project(projects, project_id, current_user["id"])
    conversation = await _run_service_call(
        "create",
        "Failed to create conversation",
        conversations.create_conversation(
            current_user["id"],
            project_id,
            [m.model_dump() for m in body.messages],
            description=body.description,
        ),
    )
    if conversation is None:
        raise NotFoundError("Project not found")
    return ConversationResponse(**conversation)


@router.post("/search", response_model=list[ConversationResponse])
async def search_conversations(
    project_id: str,
    body: SimilaritySearchRequest,
    current_user: dict = Depends(get_current_user),
    projects: ProjectRepository = Depends(get_project_repository),
    conversations: ConversationRepository = Depends(get_conversation_repository),
) -> list[ConversationResponse]:
    await require_owned_project(projects, project_id, current_user["id"])
    rows = await _run_service_call(
        "search",
        "Failed to search conversations",
        conversations.find_similar_conversations(
            project_id,
            body.embedding,
            limit=body.limit,
            similarity_threshold=body.similarity_threshold,
        ),
    )
    return [ConversationResponse(**c) for c in rows]


@router.get("/{conversation_id}", response_model=ConversationResponse)
async def get_conversation(
    project_id: str,
    conversation_id: str,
    current_user: dict = Depends(get_current_user),
    projects: ProjectRepository = Depends(get_project_repository),
    conversations: ConversationRepository = Depends(get_conversation_repository),
) -> ConversationResponse:
    await require_owned_project(projects, project_id, current_user["id"])
    conversation = await conversations.get_conversation_by_id(conversation_id, current_user["id"])
    return ConversationResponse(**_in_project(conversation, project_id))


@router.put("/{conversation_id}", response_model=ConversationResponse)
async def replace_conversation_messages(
    project_id: str,
    conversation_id: str,
    body: ConversationMessagesUpdate,
    current_user: dict = Depends(get_current_user),
    projects: ProjectRepository = Depends(get_project_repository),
    conversations: ConversationRepository = Depends(get_conversation_repository),
) -> ConversationResponse:
    await require_owned_project(projects, project_id, current_user["id"])
    _in_project(await conversations.get_conversation_by_id(conversation_id, current_user["id"]), project_id)
    conversation = await _run_service_call(
        "update_messages",
        "Failed to update conversation",
        conversations.update_conversation_messages(
            conversation_id,
            current_user["id"],
            [m.model_dump() for m in body.messages],
        ),
    )
    return ConversationResponse(**_in_project(conversation, project_id))


@router.put("/{conversation_id}/embedding", response_model=ConversationResponse)
async def update_conversation_embedding(
    project_id: str,
    conversation_id: str,
    body: EmbeddingUpdate,
    current_user: dict = Depends(get_current_user),
    projects: ProjectRepository = Depends(get_project_repository),
    conversations: ConversationRepository = Depends(get_conversation_repository),
) -> ConversationResponse:
    await require_owned_project(projects, project_id, current_user["id"])
    _in_project(await conversations.get_conversation_by_id(conversation_id, current_user["id"]), project_id)
    conversation = await _run_service_call(
        "update_embedding",
        "Failed to update conversation embedding",
        conversations.update_conversation_embedding(conversation_id, current_user["id"], body.embedding),
    )
    return ConversationResponse(**_in_project(conversation, project_id))


@router.delete("/{conversation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_conversation(
    project_id: str,
    conversation_id: str,
    current_user: dict = Depends(get_current_user),
    projects: ProjectRepository = Depends(get_project_repository),
    conversations: ConversationRepository = Depends(get_conversation_repository),
) -> Response:
    await require_owned_project(projects, project_id, current_user["id"])
    _in_project(await conversations.get_conversation_by_id(conversation_id, current_user["id"]), project_id)
    result = await conversations.delete_conversation(conversation_id, current_user["id"])
    if not result.success:
        if result.message == CONVERSATION_DELETE_FAILED:
            raise InfrastructureError(result.message)
        raise NotFoundError("Conversation not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
