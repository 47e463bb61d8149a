"""
Server configuration
"""

import os
import warnings
from dataclasses import dataclass
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


@dataclass(frozen=True)
class EngineOptions:
    """Behaviour switches passed explicitly to every engine and gate call"""

    enable_document_scope_fail: bool = False  # strict: reject instead of filter/redact
    enable_soft_delete: bool = True
    enable_created_at: bool = True
    enable_updated_at: bool = True


class Settings(BaseSettings):
    """Server configuration settings"""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Server
    host: str = "0.0.0.0"
    port: int = 8080
    environment: str = "development"
    log_level: str = "INFO"

    # Authentication
    jwt_secret: str = "your-secret-key-change-in-production"
    jwt_algorithm: str = "HS256"
    jwt_expiration_hours: int = 24

    @field_validator("jwt_secret")
    @classmethod
    def validate_jwt_secret(cls, v: str, info) -> str:
        """Reject the development secret and short secrets in production"""
        env = (info.data or {}).get("environment", os.environ.get("ENVIRONMENT", "development"))
        if v == "your-secret-key-change-in-production" and env == "production":
            raise ValueError(
                "JWT_SECRET environment variable must be set in production. "
                "Do not use the default development secret."
            )
        if len(v) < 32:
            if env == "production":
                raise ValueError(
                    "JWT secret must be at least 32 characters in production."
                )
            warnings.warn(
                "JWT secret should be at least 32 characters for security.",
                UserWarning,
            )
        return v

    # Database (optional, memory-only mode when unset)
    database_url: str | None = None
    database_pool_min: int = 2
    database_pool_max: int = 10

    # Document engine
    enable_document_scope_fail: bool = False
    enable_soft_delete: bool = True
    enable_created_at: bool = True
    enable_updated_at: bool = True

    # CORS
    cors_origins: list[str] = ["*"]

    def engine_options(self) -> EngineOptions:
        """Snapshot the engine switches as an immutable options value"""
        return EngineOptions(
            enable_document_scope_fail=self.enable_document_scope_fail,
            enable_soft_delete=self.enable_soft_delete,
            enable_created_at=self.enable_created_at,
            enable_updated_at=self.enable_updated_at,
        )


settings = Settings()
