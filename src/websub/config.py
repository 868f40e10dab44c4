"""Configuration for WebSub (PubSubHubbub) push subscriptions."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class WebSubConfig(BaseSettings):
    """Hub endpoint and lease handling."""

    model_config = SettingsConfigDict(
        env_prefix="WEBSUB_",
        case_sensitive=False,
        extra="ignore",
    )

    hub_url: str = Field(default="https://pubsubhubbub.appspot.com/subscribe")
    topic_template: str = Field(
        default="https://www.youtube.com/xml/feeds/videos.xml?channel_id={channel_id}",
        description="Topic URL for a channel id",
    )
    lease_seconds: int = Field(default=864_000, ge=60, description="Requested lease (10 days)")
    renew_window_seconds: int = Field(
        default=3600,
        ge=60,
        description="Leases ending within this window are renewed",
    )
    request_timeout_seconds: float = Field(default=10.0, gt=0)
    subscribe_batch_size: int = Field(default=20, ge=1)
    subscribe_delay_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Pause between hub requests",
    )
