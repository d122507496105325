"""
Pydantic schemas for the chat document and the HTTP contract.

This module contains:
- Message / ChatDocument: the persisted record types
- Request models for incoming data validation
- Response models for API responses

Wire field names (name, message, timestamp, editedAt, messageId, userName)
are used end to end: in storage, in responses and in requests.
"""

from typing import Optional

from pydantic import BaseModel, Field


# =============================================================================
# Persisted Records
# =============================================================================

class Message(BaseModel):
    """
    A single chat message.

    Invariants kept by calcchat.store:
    - id is unique within the document
    - a reactions entry is never an empty list
    - edited_at is None while edited is False
    """
    id: str = Field(..., min_length=1, description="Time-derived unique message id")
    name: str = Field(..., description="Author display name")
    message: str = Field(..., description="Message text")
    timestamp: str = Field(..., description="Creation time, ISO-8601 UTC")
    reactions: dict[str, list[str]] = Field(
        default_factory=dict,
        description="Reaction symbol -> names of users who applied it"
    )
    edited: bool = Field(default=False, description="True once the message was edited")
    edited_at: Optional[str] = Field(
        None,
        alias="editedAt",
        serialization_alias="editedAt",
        description="Time of the latest edit, ISO-8601 UTC"
    )

    model_config = {
        "populate_by_name": True,
        "json_schema_extra": {
            "examples": [
                {
                    "id": "1736935200000",
                    "name": "Al",
                    "message": "hi",
                    "timestamp": "2025-01-15T10:00:00.000Z",
                    "reactions": {"👍": ["Bo"]},
                    "edited": False,
                }
            ]
        }
    }


class ChatDocument(BaseModel):
    """The whole message collection, stored and replaced as one unit."""
    messages: list[Message] = Field(default_factory=list)


# =============================================================================
# Pydantic Request Models
# =============================================================================
# Fields are optional here so that missing values reach the store and are
# reported as 400 with the same wording as empty values.

class CreateMessageRequest(BaseModel):
    """Body of POST /api/chat."""
    name: Optional[str] = None
    message: Optional[str] = None


class EditMessageRequest(BaseModel):
    """Body of PATCH /api/chat."""
    id: Optional[str] = None
    message: Optional[str] = None
    name: Optional[str] = None


class ReactionRequest(BaseModel):
    """Body of POST /api/chat/reactions."""
    message_id: Optional[str] = Field(None, alias="messageId")
    reaction: Optional[str] = None
    user_name: Optional[str] = Field(None, alias="userName")

    model_config = {"populate_by_name": True}


# =============================================================================
# Pydantic Response Models
# =============================================================================

class MessagesListResponse(BaseModel):
    """Response model for GET /api/chat."""
    messages: list[Message] = Field(default_factory=list)


class MessageResponse(BaseModel):
    """Response model for create and edit."""
    success: bool = True
    message: Message


class SuccessResponse(BaseModel):
    """Response model for delete and clear."""
    success: bool = True
    message: Optional[str] = Field(None, description="Human readable outcome")


class ReactionsResponse(BaseModel):
    """Response model for POST /api/chat/reactions."""
    success: bool = True
    reactions: dict[str, list[str]] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    """Response model for error responses."""
    error: str = Field(..., description="Error description")


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
