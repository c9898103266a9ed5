import logging
import os
from typing import List, Optional

from pydantic import BaseModel, Field


class Settings(BaseModel):
    database_url: str = "mongodb://localhost:27017"
    database_name: str = "task_management"
    session_ttl_days: int = 7
    master_admin_email: Optional[str] = None
    master_admin_password: Optional[str] = None
    master_admin_name: str = "Master Admin"
    upload_dir: str = "uploads"
    max_file_size: int = Field(10 * 1024 * 1024, description="Upload limit in bytes")
    environment: str = "production"
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])
    log_level: str = "INFO"
    port: int = 8000

    @property
    def debug(self) -> bool:
        return self.environment == "development"

    @classmethod
    def from_env(cls) -> "Settings":
        env = os.environ
        values = {
            "database_url": env.get("DATABASE_URL"),
            "database_name": env.get("DATABASE_NAME"),
            "session_ttl_days": env.get("SESSION_TTL_DAYS"),
            "master_admin_email": env.get("MASTER_ADMIN_EMAIL"),
            "master_admin_password": env.get("MASTER_ADMIN_PASSWORD"),
            "master_admin_name": env.get("MASTER_ADMIN_NAME"),
            "upload_dir": env.get("UPLOAD_DIR"),
            "max_file_size": env.get("MAX_FILE_SIZE"),
            "environment": env.get("ENVIRONMENT"),
            "log_level": env.get("LOG_LEVEL"),
            "port": env.get("PORT"),
        }
        if env.get("CORS_ORIGINS"):
            values["cors_origins"] = [o.strip() for o in env["CORS_ORIGINS"].split(",") if o.strip()]
        # unset variables fall back to the field defaults
        return cls(**{k: v for k, v in values.items() if v is not None})


_handler: Optional[logging.Handler] = None


def configure_logging(level: str = "INFO") -> None:
    global _handler
    root = logging.getLogger()
    if _handler is None or _handler not in root.handlers:
        _handler = logging.StreamHandler()
        _handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        root.addHandler(_handler)
    root.setLevel(level.upper())
