"""Application configuration using Pydantic Settings."""
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_SECRETS = ("change-me-in-production", "")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # App
    app_name: str = "AttendGuard"
    debug: bool = False

    # MongoDB
    mongodb_url: str = "mongodb://localhost:27017"
    mongodb_db_name: str = "attendguard"

    # JWT (tokens are issued by the auth service, only verified here)
    jwt_secret_key: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"

    # Receipts
    receipt_secret_key: str = "change-me-in-production"

    # Submission policy
    persist_rejected_attempts: bool = True  # store out-of-range attempts as status=rejected

    # Sessions
    default_radius_m: int = 100
    default_session_minutes: int = 60
    session_code_attempts: int = 20

    # CORS (comma-separated origins)
    cors_origins: str = "http://localhost:5173"

    @model_validator(mode="after")
    def _validate_production_secrets(self):
        if not self.debug:
            if self.jwt_secret_key in _DEFAULT_SECRETS:
                raise ValueError(
                    "JWT_SECRET_KEY must be set to a strong secret when DEBUG is not enabled. "
                    "Generate one with: python -c \"import secrets; print(secrets.token_hex(32))\""
                )
            if self.receipt_secret_key in _DEFAULT_SECRETS:
                raise ValueError("RECEIPT_SECRET_KEY must be set when DEBUG is not enabled.")
        return self


settings = Settings()
