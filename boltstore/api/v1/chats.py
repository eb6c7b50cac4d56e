"""Chats router: chat history, lineage (duplicate/fork) and snapshots.

Rule: No business logic here. Validate input, call ChatService, return
response. ChatService raises BoltstoreError subclasses; the app-level
exception handlers turn them into status codes.
"""

from fastapi import APIRouter, Depends, Response, status

from boltstore.api.dependencies import get_chat_service
from boltstore.core.auth import get_current_user
from boltstore.core.errors import NotFoundError, ValidationError
from boltstore.models.schemas import (
    ChatCreateRequest,
    ChatDetail,
    ChatIdResponse,
    ChatSaveRequest,
    ChatSummary,
    ChatUpdate,
    DeletedCount,
    ForkRequest,
    SnapshotRequest,
    SnapshotResponse,
)
from boltstore.services.chat import ChatService

router = APIRouter()


async def _chat_detail(chats: ChatService, chat_id: str, user_id: str) -> ChatDetail:
    chat = await chats.get_chat_details(chat_id, user_id)
    if chat is None:
        raise NotFoundError("Chat not found")
    return ChatDetail(**chat)


@router.get("", response_model=list[ChatSummary])
async def list_chats(
    current_user: dict = Depends(get_current_user),
    chats: ChatService = Depends(get_chat_service),
) -> list[ChatSummary]:
    return [ChatSummary(**c) for c in await chats.get_all_chats(current_user["id"])]


@router.post("", response_model=ChatIdResponse, status_code=status.HTTP_201_CREATED)
async def create_chat(
    body: ChatCreateRequest,
    current_user: dict = Depends(get_current_user),
    chats: ChatService = Depends(get_chat_service),
) -> ChatIdResponse:
    chat_id = await chats.create_chat(
        current_user["id"],
        body.description,
        [m.model_dump() for m in body.messages],
        metadata=body.metadata,
    )
    return ChatIdResponse(chat_id=chat_id)


@router.delete("", response_model=DeletedCount)
async def delete_all_chats(
    current_user: dict = Depends(get_current_user),
    chats: ChatService = Depends(get_chat_service),
) -> DeletedCount:
    deleted = await chats.delete_all_chat_data_for_user(current_user["id"])
    return DeletedCount(deleted=deleted)


@router.get("/{chat_id}", response_model=ChatDetail)
async def get_chat(
    chat_id: str,
    current_user: dict = Depends(get_current_user),
    chats: ChatService = Depends(get_chat_service),
) -> ChatDetail:
    return await _chat_detail(chats, chat_id, current_user["id"])


@router.patch("/{chat_id}", response_model=ChatDetail)
async def update_chat(
    chat_id: str,
    body: ChatUpdate,
    current_user: dict = Depends(get_current_user),
    chats: ChatService = Depends(get_chat_service),
) -> ChatDetail:
    changes = body.model_dump(exclude_unset=True)
    if not changes:
        raise ValidationError("Nothing to update")
    if not await chats.update_chat(chat_id, current_user["id"], changes):
        raise NotFoundError("Chat not found")
    return await _chat_detail(chats, chat_id, current_user["id"])


@router.delete("/{chat_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_chat(
    chat_id: str,
    current_user: dict = Depends(get_current_user),
    chats: ChatService = Depends(get_chat_service),
) -> Response:
    if not await chats.delete_chat(chat_id, current_user["id"]):
        raise NotFoundError("Chat not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{chat_id}/messages", response_model=ChatIdResponse)
async def append_messages(
    chat_id: str,
    body: ChatSaveRequest,
    current_user: dict = Depends(get_current_user),
    chats: ChatService = Depends(get_chat_service),
) -> ChatIdResponse:
    saved = await chats.save_chat_messages(
        current_user["id"],
        [m.model_dump() for m in body.messages],
        chat_id=chat_id,
        description=body.description,
        metadata=body.metadata,
    )
    return ChatIdResponse(chat_id=saved)


@router.post("/{chat_id}/duplicate", response_model=ChatIdResponse, status_code=status.HTTP_201_CREATED)
async def duplicate_chat(
    chat_id: str,
    current_user: dict = Depends(get_current_user),
    chats: ChatService = Depends(get_chat_service),
) -> ChatIdResponse:
    return ChatIdResponse(chat_id=await chats.duplicate_chat(chat_id, current_user["id"]))


@router.post("/{chat_id}/fork", response_model=ChatIdResponse, status_code=status.HTTP_201_CREATED)
async def fork_chat(
    chat_id: str,
    body: ForkRequest,
    current_user: dict = Depends(get_current_user),
    chats: ChatService = Depends(get_chat_service),
) -> ChatIdResponse:
    return ChatIdResponse(chat_id=await chats.fork_chat(chat_id, body.message_id, current_user["id"]))


@router.get("/{chat_id}/snapshot", response_model=SnapshotResponse)
async def get_snapshot(
    chat_id: str,
    current_user: dict = Depends(get_current_user),
    chats: ChatService = Depends(get_chat_service),
) -> SnapshotResponse:
    snapshot = await chats.get_snapshot(chat_id, current_user["id"])
    if snapshot is None:
        raise NotFoundError("Snapshot not found")
    return SnapshotResponse(**snapshot)


@router.put("/{chat_id}/snapshot", response_model=SnapshotResponse)
async def set_snapshot(
    chat_id: str,
    body: SnapshotRequest,
    current_user: dict = Depends(get_current_user),
    chats: ChatService = Depends(get_chat_service),
) -> SnapshotResponse:
    snapshot = await chats.set_snapshot(chat_id, body.snapshot_data, current_user["id"])
    return SnapshotResponse(**snapshot)


@router.delete("/{chat_id}/snapshot", response_model=DeletedCount)
async def delete_snapshot(
    chat_id: str,
    current_user: dict = Depends(get_current_user),
    chats: ChatService = Depends(get_chat_service),
) -> DeletedCount:
    return DeletedCount(deleted=await chats.delete_snapshot(chat_id, current_user["id"]))


@router.get("/{chat_id}/snapshots", response_model=list[SnapshotResponse])
async def list_snapshots(
    chat_id: str,
    current_user: dict = Depends(get_current_user),
    chats: ChatService = Depends(get_chat_service),
) -> list[SnapshotResponse]:
    return [SnapshotResponse(**s) for s in await chats.list_snapshots(chat_id, current_user["id"])]
