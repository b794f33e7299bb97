"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from .env or BRK_* environment variables."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "env_prefix": "BRK_"}

    # Backend API
    backend_api_url: str = "http://localhost:3000"
    api_token: str = ""
    request_timeout: float = 15.0

    # Acting user, used to tag outgoing mutations
    actor_id: str = ""

    # Document reconciliation: always enrich the contract's own document list
    # instead of using it only when the document service returns nothing.
    merge_embedded_documents: bool = False

    # Push Notifications
    pushover_user_key: str = ""
    pushover_api_token: str = ""
    ntfy_topic: str = ""
    ntfy_server: str = "https://ntfy.sh"

    # Application
    log_level: str = "WARNING"
    labels_file: str = ""

    def has_token(self) -> bool:
        return bool(self.api_token)

    def has_pushover(self) -> bool:
        return bool(self.pushover_user_key and self.pushover_api_token)

    def has_ntfy(self) -> bool:
        return bool(self.ntfy_topic)


def get_settings() -> Settings:
    return Settings()
