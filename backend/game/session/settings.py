"""Client-side session configuration via environment variables."""

from pydantic import Field
from pydantic_settings import BaseSettings


class GameClientSettings(BaseSettings):
    model_config = {"env_prefix": "GAME_"}

    heartbeat_interval_seconds: float = Field(default=10, gt=0)
    staleness_check_interval_seconds: float = Field(default=15, gt=0)
    stale_after_seconds: float = Field(default=30, gt=0)
    online_window_seconds: float = Field(default=15, gt=0)
    away_window_seconds: float = Field(default=60, gt=0)
    session_key_attempts: int = Field(default=5, ge=1)
