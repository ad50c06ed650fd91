from pydantic import BaseModel, Field


class Session(BaseModel):
    """
    One authorised chat client for a bounded time window.
    """

    token: str = Field(..., description="Opaque random session token (hex)")
    created_at: float = Field(..., description="Creation timestamp (epoch seconds)")
    request_count: int = Field(
        default=0, description="Accepted chat calls made under this session", ge=0
    )
    daily_usage: int = Field(
        default=0, description="Accepted chat calls during usage_day", ge=0
    )
    usage_day: str = Field(..., description="ISO date that daily_usage belongs to")

    def age_seconds(self, now: float) -> float:
        return max(0.0, now - self.created_at)

    def is_expired(self, now: float, duration_seconds: float) -> bool:
        return now - self.created_at >= duration_seconds


__all__ = ["Session"]
