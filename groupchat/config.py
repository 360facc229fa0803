from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Follows 12-factor app configuration principles.
    """

    # env_file is only used as fallback, env vars take precedence
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Database Configuration - required from .env
    DATABASE_URL: str

    # Logging Configuration - required from .env
    LOG_LEVEL: str

    # Credential signing - required from .env
    JWT_SECRET: str
    JWT_ALGORITHM: str = "HS256"
    TOKEN_TTL_SECONDS: int = 7 * 24 * 60 * 60

    # Cookie carrying the credential for both HTTP and the socket handshake
    COOKIE_NAME: str = "token"
    COOKIE_SECURE: bool = True

    # Realtime transport
    SOCKETIO_PATH: str = "socket.io"
    CORS_ALLOWED_ORIGINS: str = "*"

    # Chat limits
    MAX_MESSAGE_LENGTH: int = 4096

    @property
    def cors_origins(self) -> list[str] | str:
        """Socket.IO accepts either '*' or an explicit list of origins."""
        if self.CORS_ALLOWED_ORIGINS.strip() == "*":
            return "*"
        return [o.strip() for o in self.CORS_ALLOWED_ORIGINS.split(",") if o.strip()]


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()


# Global settings instance
settings = get_settings()
