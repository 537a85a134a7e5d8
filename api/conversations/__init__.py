"""Conversation and messaging API endpoints."""

from fastapi import APIRouter, Depends, Query, status
from typing import Optional, List
from decimal import Decimal
from pydantic import BaseModel
from uuid import UUID
from datetime import datetime

from auth import get_current_user
from api.services import Services, get_services

router = APIRouter(
    prefix="/communities/{community_id}/conversations",
    tags=["Conversations"]
)

class StartConversationRequest(BaseModel):
    """Request model for opening a conversation about a listing."""
    listing_id: UUID

class SendMessageRequest(BaseModel):
    """Request model for sending a message."""
    content: str
    message_type: str = 'text'
    offer_amount: Optional[Decimal] = None

class ConversationResponse(BaseModel):
    id: UUID
    community_id: UUID
    listing_id: UUID
    buyer_id: UUID
    seller_id: UUID
    status: str
    last_message_at: datetime
    buyer_unread_count: int
    seller_unread_count: int
    created_at: datetime

class MessageResponse(BaseModel):
    id: UUID
    conversation_id: UUID
    sender_id: UUID
    content: str
    message_type: str
    offer_amount: Optional[Decimal] = None
    is_read: bool
    read_at: Optional[datetime] = None
    created_at: datetime

class ReadResponse(BaseModel):
    marked_read: int

@router.get("", response_model=List[ConversationResponse])
async def list_conversations(
    community_id: UUID,
    include_archived: bool = Query(False),
    user_id: UUID = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """The caller's conversations, most recent first."""
    return await services.conversations.list_conversations(community_id, user_id, include_archived)

@router.post("", response_model=ConversationResponse)
async def start_conversation(
    community_id: UUID,
    request: StartConversationRequest,
    user_id: UUID = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Get or create the caller's conversation about a listing."""
    return await services.conversations.get_or_create_conversation(
        community_id, request.listing_id, user_id
    )

@router.get("/{conversation_id}", response_model=ConversationResponse)
async def get_conversation(
    community_id: UUID,
    conversation_id: UUID,
    user_id: UUID = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    return await services.conversations.get_conversation(community_id, conversation_id, user_id)

@router.get("/{conversation_id}/messages", response_model=List[MessageResponse])
async def get_messages(
    community_id: UUID,
    conversation_id: UUID,
    before: Optional[datetime] = Query(None),
    limit: int = Query(50),
    user_id: UUID = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Messages in the order they were sent."""
    return await services.conversations.get_messages(
        community_id, conversation_id, user_id, before=before, limit=limit
    )

@router.post(
    "/{conversation_id}/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED
)
async def send_message(
    community_id: UUID,
    conversation_id: UUID,
    request: SendMessageRequest,
    user_id: UUID = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    return await services.conversations.send_message(
        community_id,
        conversation_id,
        user_id,
        request.content,
        message_type=request.message_type,
        offer_amount=request.offer_amount
    )

@router.post("/{conversation_id}/read", response_model=ReadResponse)
async def mark_read(
    community_id: UUID,
    conversation_id: UUID,
    user_id: UUID = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    marked = await services.conversations.mark_read(community_id, conversation_id, user_id)
    return {'marked_read': marked}

@router.post("/{conversation_id}/archive", response_model=ConversationResponse)
async def archive_conversation(
    community_id: UUID,
    conversation_id: UUID,
    user_id: UUID = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    return await services.conversations.archive_conversation(community_id, conversation_id, user_id)

@router.post("/{conversation_id}/block", response_model=ConversationResponse)
async def block_conversation(
    community_id: UUID,
    conversation_id: UUID,
    user_id: UUID = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    return await services.conversations.block_conversation(community_id, conversation_id, user_id)
