from fastapi import Request

from kbrag.services.chat_service import ChatService
from kbrag.services.document_service import DocumentService


def get_document_service(request: Request) -> DocumentService:
    return request.app.state.document_service


def get_chat_service(request: Request) -> ChatService:
    return request.app.state.chat_service
