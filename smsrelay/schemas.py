"""
Pydantic schemas for request/response validation.

This module contains:
- Request models for incoming data validation
- Response models for API responses
"""

from typing import Any, Optional

from pydantic import BaseModel, Field


# =============================================================================
# Pydantic Request Models
# =============================================================================

class SendRequest(BaseModel):
    """
    Body of POST /api/send.

    Both fields default to empty so that a missing value reaches the send
    coordinator and is reported as a 400 rather than a schema error.
    """
    to: Optional[str] = Field(
        default="",
        description="Recipient phone number in E.164 format"
    )
    body: Optional[str] = Field(
        default="",
        description="Message text"
    )

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"to": "+15559876543", "body": "Hello"}
            ]
        }
    }


# =============================================================================
# Pydantic Response Models
# =============================================================================

class SendResponse(BaseModel):
    """Response model for an accepted outbound message."""
    ok: bool = Field(default=True)
    id: Optional[str] = Field(None, description="Provider message id")
    status: str = Field(..., description="Status reported by the carrier")


class WebhookResponse(BaseModel):
    """Acknowledgement returned to the carrier."""
    received: bool = Field(default=True)


class ErrorResponse(BaseModel):
    """Response model for error responses."""
    error: str = Field(..., description="Error description")
    detail: Optional[Any] = Field(None, description="Raw provider or payload detail")


class MessageResponse(BaseModel):
    """
    A single message record as returned by GET /api/messages.
    Column names are exposed as stored.
    """
    id: int
    direction: str = Field(..., description="'out' for sent, 'in' for received")
    from_number: str
    to_number: str
    body: Optional[str] = None
    status: Optional[str] = None
    provider_message_id: Optional[str] = None
    created_at: str = Field(..., description="Server insertion time (ISO-8601 UTC)")

    model_config = {"from_attributes": True}


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
