import os
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass
class Settings:
    host: str = "0.0.0.0"
    port: int = 3001
    admin_key: Optional[str] = None
    section_capacity: int = 50
    log_capacity: int = 50
    text_max_length: int = 280
    author_max_length: int = 50
    default_author: str = "Anonim"
    client_queue_size: int = 100
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "Settings":
        load_dotenv(env_file)
        origins = os.getenv("CORS_ORIGINS", "*")
        return cls(
            host=os.getenv("HOST", "0.0.0.0"),
            port=_env_int("PORT", 3001),
            admin_key=os.getenv("ADMIN_KEY") or None,
            section_capacity=_env_int("SECTION_CAPACITY", 50),
            log_capacity=_env_int("LOG_CAPACITY", 50),
            text_max_length=_env_int("TEXT_MAX_LENGTH", 280),
            author_max_length=_env_int("AUTHOR_MAX_LENGTH", 50),
            default_author=os.getenv("DEFAULT_AUTHOR", "Anonim"),
            client_queue_size=_env_int("CLIENT_QUEUE_SIZE", 100),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()] or ["*"],
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )


def configure_logging(level: str = "INFO") -> None:
    """Attach a single stream handler to the root logger."""
    root = logging.getLogger()
    root.setLevel(level)
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))
        root.addHandler(handler)
