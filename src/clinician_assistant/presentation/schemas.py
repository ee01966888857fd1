"""HTTP request/response schemas (Pydantic models) for the REST API.

Every field is exposed in camelCase on the wire; Python code uses the
snake_case attribute names.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from clinician_assistant.domain import models


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class CreateConversationRequest(CamelModel):
    """Request body for POST /conversations."""

    name: str = Field(default="New conversation", min_length=1, max_length=200)


class PostMessageRequest(CamelModel):
    """Request body for POST /conversations/{id}/messages."""

    message: str = Field(min_length=1, max_length=4000, description="The clinician's question")


# ---------------------------------------------------------------------------
# Query results
# ---------------------------------------------------------------------------


class QueryMetadataSchema(CamelModel):
    query_text: str | None = None
    row_count: int | None = None
    execution_time: float | None = Field(default=None, description="Milliseconds")


class QueryResultSchema(CamelModel):
    """Tabular payload for the visualization client."""

    columns: list[str]
    rows: list[dict[str, str | int | float | None]]
    metadata: QueryMetadataSchema | None = None

    @classmethod
    def from_domain(cls, result: models.QueryResult) -> QueryResultSchema:
        return cls.model_validate(result.to_wire())


# ---------------------------------------------------------------------------
# Conversations
# ---------------------------------------------------------------------------


class MessageSchema(CamelModel):
    id: str
    role: str
    content: str
    created_at: str
    query_result: QueryResultSchema | None = None

    @classmethod
    def from_domain(cls, message: models.Message) -> MessageSchema:
        return cls(
            id=message.id,
            role=message.role,
            content=message.content,
            created_at=message.created_at,
            query_result=(
                QueryResultSchema.from_domain(message.query_result)
                if message.query_result is not None
                else None
            ),
        )


class ConversationSchema(CamelModel):
    id: str
    name: str
    created_at: str
    updated_at: str
    last_message_at: str
    pending: bool = False
    messages: list[MessageSchema] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, conversation: models.Conversation) -> ConversationSchema:
        return cls(
            id=conversation.id,
            name=conversation.name,
            created_at=conversation.created_at,
            updated_at=conversation.updated_at,
            last_message_at=conversation.last_message_at,
            pending=conversation.pending,
            messages=[MessageSchema.from_domain(m) for m in conversation.messages],
        )


class ConversationListResponse(CamelModel):
    conversations: list[ConversationSchema]


# ---------------------------------------------------------------------------
# Status
# ---------------------------------------------------------------------------


class StatusResponse(CamelModel):
    """Response from GET /status."""

    is_configured: bool
    connection_valid: bool


class ErrorResponse(CamelModel):
    """Error envelope shared by every non-2xx response."""

    error: bool = True
    message: str
    status_code: int
