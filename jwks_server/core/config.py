from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Application
    APP_NAME: str = "JWKS Server"
    HOST: str = "0.0.0.0"
    PORT: int = 8080
    LOG_LEVEL: str = "INFO"

    # Key lifecycle
    ACTIVE_KEY_TTL_SECONDS: int = 15 * 60
    EXPIRED_KEY_OFFSET_SECONDS: int = -5 * 60  # expired five minutes ago
    KEY_SWEEP_INTERVAL_MS: int = 2000
    RSA_KEY_SIZE: int = 2048

    # Demo token subject
    TOKEN_SUBJECT: str = "user-123"
    TOKEN_NAME: str = "Demo User"

    @field_validator("ACTIVE_KEY_TTL_SECONDS", "KEY_SWEEP_INTERVAL_MS")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be greater than zero")
        return v

    @field_validator("EXPIRED_KEY_OFFSET_SECONDS")
    @classmethod
    def validate_offset(cls, v: int) -> int:
        if v > 0:
            raise ValueError("expired key offset must not be in the future")
        return v

    @field_validator("RSA_KEY_SIZE")
    @classmethod
    def validate_key_size(cls, v: int) -> int:
        if v < 2048:
            raise ValueError("RSA keys must be at least 2048 bits")
        return v

settings = Settings()
