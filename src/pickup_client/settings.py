from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_token_file() -> Path:
    return Path.home() / ".pickup-client" / "tokens.json"


class ClientSettings(BaseSettings):
    """Settings for the pickup API client."""

    model_config = SettingsConfigDict(env_prefix="PICKUP_")

    # API settings
    api_url: str = "http://localhost:3000"
    refresh_path: str = "/auth/refresh"
    timeout: float = Field(30.0, gt=0, description="HTTP timeout in seconds for API and refresh calls")

    # Token persistence; None keeps tokens in memory only
    token_file: Path | None = Field(default_factory=_default_token_file)

    @property
    def refresh_url(self) -> str:
        return f"{self.api_url.rstrip('/')}/{self.refresh_path.lstrip('/')}"
