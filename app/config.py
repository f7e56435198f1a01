import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


def _resolve_database_url() -> str:
    database_url = os.getenv("DATABASE_URL")
    if database_url:
        return database_url

    environment = os.getenv("ENVIRONMENT", "").strip().lower()
    if environment == "development":
        return "postgresql+psycopg://localhost:5434/mbee"

    raise ValueError(
        "DATABASE_URL is not set. Set DATABASE_URL for non-development "
        "environments or set ENVIRONMENT=development for local defaults."
    )


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    database_url: str = _resolve_database_url()
    db_pool_size: int = int(os.getenv("DB_POOL_SIZE", "5"))
    db_max_overflow: int = int(os.getenv("DB_MAX_OVERFLOW", "10"))
    db_pool_timeout: int = int(os.getenv("DB_POOL_TIMEOUT", "30"))
    db_pool_recycle: int = int(os.getenv("DB_POOL_RECYCLE", "1800"))

    # Containment tree
    default_org_id: str = os.getenv("DEFAULT_ORG_ID", "default")
    default_org_name: str = os.getenv("DEFAULT_ORG_NAME", "Default Organization")
    default_branch_id: str = os.getenv("DEFAULT_BRANCH_ID", "master")

    # Composite IDs
    id_delimiter: str = os.getenv("ID_DELIMITER", ":")
    id_min_length: int = int(os.getenv("ID_MIN_LENGTH", "2"))
    id_max_length: int = int(os.getenv("ID_MAX_LENGTH", "36"))
    id_pattern: str = os.getenv("ID_PATTERN", r"^[a-z0-9_][a-z0-9_\-.]*$")
    username_pattern: str = os.getenv("USERNAME_PATTERN", r"^[a-z][a-z0-9_]*$")

    # Page size for every bulk find/insert/delete issued to the store
    batch_size: int = int(os.getenv("BATCH_SIZE", "100000"))

    # Auth
    bcrypt_rounds: int = int(os.getenv("BCRYPT_ROUNDS", "12"))
    admin_username: str | None = os.getenv("ADMIN_USERNAME") or None
    admin_password: str | None = os.getenv("ADMIN_PASSWORD") or None

    # Celery / webhooks
    celery_broker_url: str = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0")
    celery_result_backend: str = os.getenv(
        "CELERY_RESULT_BACKEND", "redis://localhost:6379/1"
    )
    celery_task_always_eager: bool = _env_bool("CELERY_TASK_ALWAYS_EAGER")
    webhook_timeout_seconds: float = float(os.getenv("WEBHOOK_TIMEOUT_SECONDS", "30"))

    # Artifact blobs
    artifact_storage: str = os.getenv("ARTIFACT_STORAGE", "local")
    artifact_path: str = os.getenv("ARTIFACT_PATH", "data")
    s3_endpoint_url: str = os.getenv("S3_ENDPOINT_URL", "")
    s3_access_key: str = os.getenv("S3_ACCESS_KEY", "")
    s3_secret_key: str = os.getenv("S3_SECRET_KEY", "")
    s3_bucket_name: str = os.getenv("S3_BUCKET_NAME", "mbee-artifacts")
    s3_region: str = os.getenv("S3_REGION", "us-east-1")

    log_level: str = os.getenv("LOG_LEVEL", "INFO")


settings = Settings()
