"""Repositories package."""

from roomrag.repositories.conversation import ConversationRepository
from roomrag.repositories.rag import RAGRepository

__all__ = [
    "ConversationRepository",
    "RAGRepository",
]
