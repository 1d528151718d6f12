import logging
import os
from dataclasses import dataclass

from dotenv import load_dotenv

# Load the appropriate .env file on module import
env = os.environ.get("DOCBASE_ENV", "development").lower()
env_file = f".env.{env}"
if os.path.exists(env_file):
    load_dotenv(env_file)
else:
    # Fall back to the default .env file
    load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class Config:
    environment: str
    store_backend: str
    database_url: str | None
    mongodb_url: str
    mongodb_database: str
    default_page_limit: int
    max_page_limit: int
    versioning: bool
    log_level: str

    @classmethod
    def from_env(cls) -> "Config":
        return cls(
            environment=env,
            store_backend=os.environ.get("DOCBASE_STORE", "memory").lower(),
            database_url=os.environ.get("DATABASE_URL"),
            mongodb_url=os.environ.get("MONGODB_URL", "mongodb://localhost:27017"),
            mongodb_database=os.environ.get("MONGODB_DATABASE", "docbase"),
            default_page_limit=int(os.environ.get("DOCBASE_DEFAULT_PAGE_LIMIT", "20")),
            max_page_limit=int(os.environ.get("DOCBASE_MAX_PAGE_LIMIT", "100")),
            versioning=_env_bool("DOCBASE_VERSIONING", True),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        )


config = Config.from_env()


def configure_logging(level: str = None) -> None:
    """Configure root logging for entry points (CLI, HTTP app)."""
    logging.basicConfig(
        level=level or config.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
