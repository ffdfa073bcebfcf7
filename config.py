"""
Application settings for the ResolveNow backend.

All values can be overridden through environment variables or a local .env file.
"""
import json
from functools import lru_cache
from typing import Annotated, Any, List, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


# Operations that can be listed in UNGUARDED_OPERATIONS.
OPERATIONS = (
    "complaint_create",
    "complaint_list",
    "complaint_get",
    "complaint_update",
    "complaint_delete",
    "assignment_create",
    "assignment_list",
    "message_create",
    "message_list",
    "feedback_create",
    "feedback_read",
)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_name: str = "ResolveNow"
    log_level: str = "INFO"
    port: int = 8000

    database_url: Optional[str] = None
    database_name: Optional[str] = None

    # Token signing. Tokens issued with one key are rejected after a restart with another.
    secret_key: str = "change-me-resolvenow-secret"
    token_ttl_seconds: int = 3600

    upload_dir: str = "uploads"
    max_complaint_attachment_bytes: int = 5 * 1024 * 1024

    max_active_assignments: int = 3

    cors_origins: Annotated[List[str], NoDecode] = ["*"]

    # Operations reachable without a bearer token. From the environment either
    # comma-separated (complaint_update,message_create) or a JSON list.
    unguarded_operations: Annotated[List[str], NoDecode] = ["complaint_update", "message_create"]

    @field_validator("cors_origins", "unguarded_operations", mode="before")
    @classmethod
    def _split_list(cls, value: Any) -> Any:
        if not isinstance(value, str):
            return value
        if value.strip().startswith("["):
            return json.loads(value)
        return [item.strip() for item in value.split(",") if item.strip()]

    @field_validator("unguarded_operations")
    @classmethod
    def _known_operations(cls, value: List[str]) -> List[str]:
        unknown = sorted(set(value) - set(OPERATIONS))
        if unknown:
            raise ValueError(f"Unknown operations: {', '.join(unknown)}")
        return value

    def is_guarded(self, operation: str) -> bool:
        return operation not in self.unguarded_operations


@lru_cache
def get_settings() -> Settings:
    return Settings()
