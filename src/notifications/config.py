"""Configuration for push notification delivery."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class NotificationConfig(BaseSettings):
    """Settings for the Expo push client and the new-item trigger."""

    model_config = SettingsConfigDict(
        env_prefix="NOTIFICATIONS_",
        case_sensitive=False,
        extra="ignore",
    )

    enabled: bool = Field(default=True, description="Master switch for push delivery")
    push_endpoint: str = Field(
        default="https://exp.host/--/api/v2/push/send",
        description="Expo push send endpoint",
    )
    request_timeout_seconds: float = Field(default=10.0, gt=0)
    chunk_size: int = Field(
        default=100,
        ge=1,
        le=100,
        description="Messages per Expo request",
    )
    max_video_notifications: int = Field(
        default=3,
        ge=0,
        description="New videos of one poll that produce notifications",
    )
    retry_max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Maximum send attempts per chunk",
    )
    retry_delays: list[float] = Field(
        default=[1.0, 5.0, 30.0],
        description="Per-attempt delay in seconds before each retry",
    )
