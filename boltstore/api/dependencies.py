"""FastAPI dependency providers.

The Database is created in the lifespan and stored on app.state; every
repository and service is built per request on top of it, so tests can swap
any layer with `app.dependency_overrides`.
"""

from fastapi import Depends, Request

from boltstore.core.db import Database
from boltstore.core.errors import InfrastructureError
from boltstore.repositories.conversation import ConversationRepository
from boltstore.repositories.project import ProjectRepository
from boltstore.repositories.user import UserRepository
from boltstore.services.chat import ChatService


def get_database(request: Request) -> Database:
    db = getattr(request.app.state, "db", None)
    if db is None:
        raise InfrastructureError("Database is not configured")
    return db


def get_user_repository(db: Database = Depends(get_database)) -> UserRepository:
    return UserRepository(db)


def get_project_repository(db: Database = Depends(get_database)) -> ProjectRepository:
    return ProjectRepository(db)


def get_conversation_repository(db: Database = Depends(get_database)) -> ConversationRepository:
    return ConversationRepository(db)


def get_chat_service(db: Database = Depends(get_database)) -> ChatService:
    return ChatService(db)
