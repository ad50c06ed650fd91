from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class ChatOptions(BaseModel):
    """
    Generation options sent by the client.

    retryCount / fallbackMessage only steer the client and are never
    forwarded upstream; temperature and max_tokens are clamped by the
    gateway whatever the client sends.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    model: str | None = None
    temperature: float | None = Field(default=None, ge=0)
    top_p: float | None = Field(default=None, ge=0, le=1)
    max_tokens: int | None = Field(default=None, ge=1)
    response_format: dict[str, Any] | None = None
    retry_count: int | None = Field(default=None, alias="retryCount", ge=1)
    fallback_message: str | None = Field(default=None, alias="fallbackMessage")


class ChatRequest(BaseModel):
    messages: list[ChatMessage] = Field(..., min_length=1)
    options: ChatOptions = Field(default_factory=ChatOptions)


class SessionInitResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    token: str
    expires_in: int = Field(..., alias="expiresIn", description="Seconds until expiry")


class UsageStatsResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    request_count: int = Field(..., alias="requestCount")
    daily_usage: int = Field(..., alias="dailyUsage")
    session_age: int = Field(..., alias="sessionAge", description="Session age in minutes")


class HealthResponse(BaseModel):
    status: str = "healthy"
    timestamp: str
    environment: str
    version: str


__all__ = [
    "ChatMessage",
    "ChatOptions",
    "ChatRequest",
    "HealthResponse",
    "SessionInitResponse",
    "UsageStatsResponse",
]
