"""
Application Configuration
"""
from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Database
    DATABASE_CLIENT: str = "postgres"
    DATABASE_HOST: str
    DATABASE_PORT: int = 5432
    DATABASE_NAME: str
    DATABASE_USERNAME: str
    DATABASE_PASSWORD: str
    DATABASE_SSL: bool = False
    DATABASE_ECHO: bool = False

    @property
    def DATABASE_URL(self) -> str:
        """Construct database URL from components"""
        url = (
            f"postgresql://{self.DATABASE_USERNAME}:{self.DATABASE_PASSWORD}"
            f"@{self.DATABASE_HOST}:{self.DATABASE_PORT}/{self.DATABASE_NAME}"
        )
        if self.DATABASE_SSL:
            url += "?sslmode=require"
        return url

    # JWT
    JWT_SECRET_KEY: str
    JWT_REFRESH_SECRET_KEY: str = ""
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    JWT_REFRESH_TOKEN_EXPIRE_DAYS: int = 30

    @property
    def REFRESH_SECRET(self) -> str:
        """Refresh tokens fall back to the access secret when no dedicated key is set"""
        return self.JWT_REFRESH_SECRET_KEY or self.JWT_SECRET_KEY

    # API
    API_V1_PREFIX: str = "/api/v1"
    PROJECT_NAME: str = "Device Subscription API"
    DEBUG: bool = True
    ALLOWED_ORIGINS: str = "*"
    FRONTEND_URL: str = "http://localhost:3000"

    @property
    def CORS_ORIGINS(self) -> List[str]:
        """Parse CORS origins from string"""
        if self.ALLOWED_ORIGINS == "*":
            return ["*"]
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",")]

    # Email verification
    EMAIL_VERIFICATION_EXPIRE_HOURS: int = 24

    # Device onboarding (TOTP)
    OTP_ISSUER_NAME: str = "SecureComms"
    OTP_VALID_WINDOW: int = 2  # steps accepted before/after the current one

    # Encryption card uploads (FileRunner external storage)
    FILERUNNER_BASE_URL: str = "https://files.example.com/filerunner"
    FILERUNNER_API_KEY: str = ""
    FILERUNNER_CARDS_FOLDER: str = "encryption_cards"
    MAX_FILE_SIZE: int = 10485760  # 10MB
    ALLOWED_EXTENSIONS: str = "jpg,jpeg,png,pdf"

    @property
    def ALLOWED_FILE_EXTENSIONS(self) -> List[str]:
        """Parse allowed file extensions"""
        return [ext.strip().lower() for ext in self.ALLOWED_EXTENSIONS.split(",")]

    # Email Configuration (empty SMTP_HOST = log-only mode)
    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_USE_TLS: bool = True
    SMTP_TIMEOUT_SECONDS: int = 10
    SMTP_FROM_EMAIL: str = "no-reply@example.com"
    SMTP_FROM_NAME: str = "SecureComms"

    # Scheduler
    SCHEDULER_ENABLED: bool = True

    # Rate limiting
    RATE_LIMIT_ENABLED: bool = True
    AUTH_RATE_LIMIT: str = "10/minute"
    UPLOAD_RATE_LIMIT: str = "20/minute"

    # Admin Panel Configuration
    ADMIN_EMAIL: str
    ADMIN_USERNAME: str = "admin"
    ADMIN_PASSWORD: str

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8001

    class Config:
        env_file = ".env"
        case_sensitive = True


# Global settings instance
settings = Settings()
