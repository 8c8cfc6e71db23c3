"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"
    VERSION: str = "0.3.0"
    LOG_LEVEL: str = "INFO"

    # Database (flash records)
    DATABASE_URL: str = "sqlite:///./formstage.db"

    # Filesystem roots used to resolve destination tokens
    ROOT_DIR: str = "."
    USER_ROOT: str = "./user"
    PAGES_ROOT: str = "./user/pages"

    # Staging area for uploads that are not committed yet
    FLASH_TMP_DIR: str = "./tmp/forms"

    # Upload defaults (per field values in the form schema win)
    FORM_FILES_DESTINATION: str = "self@"
    FORM_FILES_AVOID_OVERWRITING: bool = False
    FORM_FILES_RANDOM_NAME: bool = False
    FORM_FILES_ACCEPT: list[str] = ["image/*"]
    FORM_FILES_LIMIT: int = 10
    FORM_FILES_FILESIZE: float = 0  # MB, 0 = use the system ceiling
    FORM_FILES_ACCEPT_CASE_INSENSITIVE: bool = False

    # System wide upload ceiling in bytes (0 = unlimited)
    SYSTEM_UPLOAD_LIMIT: int = 2 * 1024 * 1024

    UPLOADS_DANGEROUS_EXTENSIONS: list[str] = [
        "php",
        "php2",
        "php3",
        "php4",
        "php5",
        "phar",
        "phtml",
        "html",
        "htm",
        "shtml",
        "sh",
        "js",
    ]

    # Anti-forgery nonces
    NONCE_SECRET: str = "change-this-in-production"
    NONCE_TTL_HOURS: int = 12

    # Session cookie carrying the nonce binding
    SESSION_COOKIE_NAME: str = "form_session"

    # Rate limiting (requests per minute)
    RATE_LIMIT_FORM_UPLOADS: int = 60
    RATE_LIMIT_STORAGE_URI: str = "memory://"

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS into a list."""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def cookie_secure(self) -> bool:
        """Secure cookies only in production."""
        return self.ENV != "dev"


settings = Settings()
